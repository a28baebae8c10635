from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta

from .exceptions import ConfigurationError

DEFAULT_CERT_DIR = "/tmp/k8s-webhook-server/serving-certs"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got: {raw}") from exc
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got: {raw}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got: {raw}")


@dataclass(frozen=True)
class RotatorConfig:
    """Runtime configuration for certificate rotation."""

    ca_name: str = "cert-rotator-ca"
    ca_organization: str = "cert-rotator"
    cert_dir: str = DEFAULT_CERT_DIR
    lookahead_days: int = 90
    validity_days: int = 3650
    check_interval_hours: int = 12
    key_size: int = 2048
    restart_on_refresh: bool = False
    verify_ca_hostname: bool = True

    @classmethod
    def from_env(cls) -> "RotatorConfig":
        ca_name = os.environ.get("CERT_ROTATOR_CA_NAME", cls.ca_name).strip()
        ca_organization = os.environ.get(
            "CERT_ROTATOR_CA_ORGANIZATION", cls.ca_organization
        ).strip()
        cert_dir = os.environ.get("CERT_ROTATOR_CERT_DIR", cls.cert_dir)

        if not ca_name:
            raise ConfigurationError("CERT_ROTATOR_CA_NAME must not be empty.")
        if not cert_dir.strip():
            raise ConfigurationError("CERT_ROTATOR_CERT_DIR must not be empty.")

        key_size = _env_int("CERT_ROTATOR_KEY_SIZE", cls.key_size)
        if key_size < 2048:
            raise ConfigurationError(
                f"CERT_ROTATOR_KEY_SIZE must be >= 2048, got: {key_size}"
            )

        config = cls(
            ca_name=ca_name,
            ca_organization=ca_organization,
            cert_dir=cert_dir,
            lookahead_days=_env_int("CERT_ROTATOR_LOOKAHEAD_DAYS", cls.lookahead_days, minimum=0),
            validity_days=_env_int("CERT_ROTATOR_VALIDITY_DAYS", cls.validity_days),
            check_interval_hours=_env_int(
                "CERT_ROTATOR_CHECK_INTERVAL_HOURS", cls.check_interval_hours
            ),
            key_size=key_size,
            restart_on_refresh=_env_bool(
                "CERT_ROTATOR_RESTART_ON_REFRESH", cls.restart_on_refresh
            ),
            verify_ca_hostname=_env_bool(
                "CERT_ROTATOR_VERIFY_CA_HOSTNAME", cls.verify_ca_hostname
            ),
        )
        if config.lookahead_days >= config.validity_days:
            raise ConfigurationError(
                "CERT_ROTATOR_LOOKAHEAD_DAYS must be shorter than CERT_ROTATOR_VALIDITY_DAYS."
            )
        return config

    @property
    def lookahead(self) -> timedelta:
        return timedelta(days=self.lookahead_days)

    @property
    def validity(self) -> timedelta:
        return timedelta(days=self.validity_days)

    @property
    def check_interval(self) -> timedelta:
        return timedelta(hours=self.check_interval_hours)
