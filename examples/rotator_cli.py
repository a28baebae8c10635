from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

if __package__ in (None, ""):
    repo_src = Path(__file__).resolve().parents[1] / "src"
    if str(repo_src) not in sys.path:
        sys.path.insert(0, str(repo_src))

try:
    from cert_rotator import (
        CertRotatorError,
        DirectoryArtifactStore,
        ResourcePatcher,
        RotationEngine,
        RotationPolicy,
        RotatorConfig,
        WebhookInfo,
        WebhookReconciler,
        WebhookType,
        configure_logging,
        ensure_certs_mounted,
        load_bundle,
        service_dns_name,
    )
    from cert_rotator.issuer import ValidityWindow
    from cert_rotator.pem_codec import load_certificate
except ModuleNotFoundError as exc:
    if exc.name in ("cryptography", "asn1crypto"):
        raise SystemExit(
            f"Missing dependency: {exc.name}\n"
            "Install it with:\n"
            "  python3 -m pip install -e ."
        ) from exc
    raise

_logger = logging.getLogger("cert_rotator.cli")


class _HelpFormatter(
    argparse.RawTextHelpFormatter,
    argparse.ArgumentDefaultsHelpFormatter,
):
    """Keep multiline examples readable and include defaults."""


CLI_HELP_EPILOG = """Environment:
  CERT_ROTATOR_CA_NAME, CERT_ROTATOR_CA_ORGANIZATION, CERT_ROTATOR_CERT_DIR
  CERT_ROTATOR_LOOKAHEAD_DAYS, CERT_ROTATOR_VALIDITY_DAYS, CERT_ROTATOR_KEY_SIZE
  CERT_ROTATOR_CHECK_INTERVAL_HOURS, CERT_ROTATOR_RESTART_ON_REFRESH
  CERT_ROTATOR_VERIFY_CA_HOSTNAME, CERT_ROTATOR_LOG_FILE, CERT_ROTATOR_LOG_LEVEL

Examples:
  # Rotate certificates for webhook-svc.system.svc if needed
  python3 examples/rotator_cli.py rotate --service webhook-svc --namespace system --cert-dir ./certs

  # Rotate and inject the CA bundle into a CRD conversion webhook manifest
  python3 examples/rotator_cli.py rotate --service webhook-svc --namespace system \\
      --resource-file crd.json --webhook-type crd_conversion --out crd.patched.json

  # Report the state of stored certificates
  python3 examples/rotator_cli.py check --service webhook-svc --namespace system

  # Check every CERT_ROTATOR_CHECK_INTERVAL_HOURS until a restart is requested
  python3 examples/rotator_cli.py watch --service webhook-svc --namespace system
"""


def _write_json_output(payload: Any, out_path: str | None, label: str) -> None:
    text = json.dumps(payload, indent=2, sort_keys=True)
    if out_path is None:
        print(text)
        return
    target = Path(out_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")
    print(f"Wrote {label} to: {target}")


def _read_resource(path: str) -> dict[str, Any]:
    source = Path(path)
    if not source.exists():
        raise ValueError(f"File does not exist: {source}")
    if not source.is_file():
        raise ValueError(f"Path is not a file: {source}")
    try:
        resource = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Resource file is not valid JSON: {exc}") from exc
    if not isinstance(resource, dict):
        raise ValueError("Resource file must contain a JSON object.")
    return resource


def _add_target_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--service", required=True, help="Name of the service fronting the webhook.")
    parser.add_argument("--namespace", required=True, help="Namespace of the service.")
    parser.add_argument(
        "--cert-dir",
        default=None,
        help="Certificate directory. Defaults to CERT_ROTATOR_CERT_DIR.",
    )


def _add_resource_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--resource-file",
        default=None,
        help="JSON manifest of the resource that should trust the CA.",
    )
    parser.add_argument(
        "--webhook-type",
        choices=[webhook_type.value for webhook_type in WebhookType],
        default=WebhookType.CRD_CONVERSION.value,
        help="Kind of webhook configured by --resource-file.",
    )
    parser.add_argument("--out", default=None, help="Write the patched resource here.")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Issue and rotate the CA and serving certificate of a webhook.",
        formatter_class=_HelpFormatter,
        epilog=CLI_HELP_EPILOG,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    rotate = subparsers.add_parser(
        "rotate",
        help="Run one rotation pass.",
        formatter_class=_HelpFormatter,
    )
    _add_target_args(rotate)
    _add_resource_args(rotate)

    check = subparsers.add_parser(
        "check",
        help="Report whether the stored certificates are valid.",
        formatter_class=_HelpFormatter,
    )
    _add_target_args(check)

    watch = subparsers.add_parser(
        "watch",
        help="Run rotation passes periodically.",
        formatter_class=_HelpFormatter,
    )
    _add_target_args(watch)
    _add_resource_args(watch)
    watch.add_argument(
        "--interval-hours",
        type=float,
        default=None,
        help="Hours between passes. Defaults to CERT_ROTATOR_CHECK_INTERVAL_HOURS.",
    )
    return parser


def _store_for(args: argparse.Namespace, config: RotatorConfig) -> DirectoryArtifactStore:
    return DirectoryArtifactStore(args.cert_dir or config.cert_dir)


def _run_pass(args: argparse.Namespace, config: RotatorConfig) -> bool:
    store = _store_for(args, config)
    engine = RotationEngine(RotationPolicy.from_config(config))

    if args.resource_file is None:
        rotation = engine.rotate(load_bundle(store), service_dns_name(args.service, args.namespace))
        if rotation.changed:
            store.save(rotation.bundle)
        print(f"Rotation outcome: {rotation.outcome.value}")
        return rotation.restart_requested

    resource = _read_resource(args.resource_file)
    metadata = resource.get("metadata") or {}
    info = WebhookInfo(name=str(metadata.get("name", "")), type=WebhookType(args.webhook_type))
    reconciler = WebhookReconciler(store, engine, ResourcePatcher([info]))
    result = reconciler.reconcile(args.service, args.namespace, resource)
    if result.rotation is not None:
        print(f"Rotation outcome: {result.rotation.outcome.value}")
    _write_json_output(result.resource, out_path=args.out, label="patched resource")
    return result.restart_requested


def _certificate_report(blob: bytes) -> dict[str, Any] | None:
    if not blob:
        return None
    window = ValidityWindow.of(load_certificate(blob))
    return {
        "not_before": window.not_before.isoformat(),
        "not_after": window.not_after.isoformat(),
    }


def _run_check(args: argparse.Namespace, config: RotatorConfig) -> int:
    store = _store_for(args, config)
    engine = RotationEngine(RotationPolicy.from_config(config))
    bundle = load_bundle(store)
    now = datetime.now(timezone.utc)
    ca_valid = engine.ca_valid(bundle, now)
    leaf_valid = ca_valid and engine.leaf_valid(
        bundle, service_dns_name(args.service, args.namespace), now
    )
    _write_json_output(
        {
            "cert_dir": str(store.cert_dir),
            "mounted": ensure_certs_mounted(store.cert_dir),
            "lookahead_days": config.lookahead_days,
            "ca_valid": ca_valid,
            "leaf_valid": leaf_valid,
            "ca_certificate": _certificate_report(bundle.ca_cert),
            "leaf_certificate": _certificate_report(bundle.leaf_cert),
        },
        out_path=None,
        label="certificate report",
    )
    return 0 if leaf_valid else 1


def _run_watch(args: argparse.Namespace, config: RotatorConfig) -> int:
    interval_hours = args.interval_hours or config.check_interval_hours
    if interval_hours <= 0:
        raise ValueError("--interval-hours must be > 0.")
    while True:
        try:
            if _run_pass(args, config):
                _logger.info("Certificates were refreshed; exiting so the process can be restarted.")
                return 0
        except CertRotatorError:
            # Retried on the next tick.
            _logger.exception("Rotation pass failed")
        time.sleep(interval_hours * 3600)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        configure_logging()
        config = RotatorConfig.from_env()

        if args.command == "rotate":
            _run_pass(args, config)
            return 0

        if args.command == "check":
            return _run_check(args, config)

        if args.command == "watch":
            return _run_watch(args, config)

        raise ValueError("Unsupported command.")
    except (CertRotatorError, ValueError) as exc:
        print(f"Rotator CLI error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
