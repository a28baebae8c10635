"""
Certificate chain validation against a single trusted CA.

Validation runs at a caller supplied instant. Rotation checks pass a
lookahead instant (now plus a margin) so that certificates about to expire
are already reported as invalid.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from asn1crypto import x509
from cryptography.exceptions import InvalidSignature

from . import pem_codec
from .exceptions import (
    CertRotatorError,
    ChainVerificationError,
    EmptyArtifactError,
)
from .issuer import ValidityWindow
from .x509_ops import keys_match, verify_directly_issued_by

DEFAULT_LOOKAHEAD = timedelta(days=90)

_SERVER_AUTH_USAGES = {"server_auth", "any_extended_key_usage"}

_logger = logging.getLogger("cert_rotator.validator")


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def lookahead_time(
    now: datetime | None = None,
    lookahead: timedelta = DEFAULT_LOOKAHEAD,
) -> datetime:
    return _utc(now or datetime.now(timezone.utc)) + lookahead


def dns_names(certificate: x509.Certificate) -> list[str]:
    san = certificate.subject_alt_name_value
    if san is None:
        return []
    return [name.native for name in san if name.name == "dns_name"]


def hostname_matches(pattern: str, hostname: str) -> bool:
    pattern = pattern.rstrip(".").lower()
    hostname = hostname.rstrip(".").lower()
    if pattern.startswith("*."):
        label, _, rest = hostname.partition(".")
        return bool(label) and bool(rest) and rest == pattern[2:]
    return pattern == hostname


def _check_trust_anchor(
    certificate: x509.Certificate,
    anchor: x509.Certificate,
    at: datetime,
) -> None:
    if certificate.dump() == anchor.dump():
        return
    if certificate.issuer != anchor.subject:
        raise ChainVerificationError(
            f"Certificate issuer '{certificate.issuer.human_friendly}' is not the "
            f"trusted CA '{anchor.subject.human_friendly}'."
        )
    if not anchor.ca:
        raise ChainVerificationError("Trust anchor is not a certificate authority.")
    key_usage = anchor.key_usage_value
    if key_usage is not None and "key_cert_sign" not in key_usage.native:
        raise ChainVerificationError("Trust anchor is not allowed to sign certificates.")
    anchor_window = ValidityWindow.of(anchor)
    if not anchor_window.contains(at):
        raise ChainVerificationError(
            f"Trust anchor is not valid at {at.isoformat()} "
            f"(window {anchor_window.not_before.isoformat()} .. "
            f"{anchor_window.not_after.isoformat()})."
        )
    try:
        verify_directly_issued_by(certificate, anchor)
    except InvalidSignature as exc:
        raise ChainVerificationError("Certificate signature does not verify under the CA key.") from exc
    except (TypeError, ValueError) as exc:
        raise ChainVerificationError(f"Certificate signature cannot be checked: {exc}") from exc


def verify_certificate(
    ca_cert_pem: bytes,
    cert_pem: bytes,
    key_pem: bytes,
    hostname: str | None,
    at: datetime,
) -> None:
    """
    Verify that cert_pem/key_pem form a pair trusted by ca_cert_pem for hostname at `at`.

    The CA certificate may also be passed as cert_pem to check the CA on its
    own. A hostname of None skips the name check.

    Raises EmptyArtifactError, MalformedArtifactError or ChainVerificationError.
    """
    if not ca_cert_pem or not cert_pem or not key_pem:
        raise EmptyArtifactError("Certificate, key or CA certificate is empty.")

    anchor = pem_codec.load_certificate(ca_cert_pem)

    private_key = pem_codec.load_private_key(key_pem)
    certificate = pem_codec.load_certificate(cert_pem)
    if not keys_match(certificate, private_key):
        raise ChainVerificationError("Private key does not match the certificate public key.")

    at = _utc(at)
    window = ValidityWindow.of(certificate)
    if not window.contains(at):
        raise ChainVerificationError(
            f"Certificate is not valid at {at.isoformat()} "
            f"(window {window.not_before.isoformat()} .. {window.not_after.isoformat()})."
        )

    if hostname is not None:
        names = dns_names(certificate)
        if not any(hostname_matches(name, hostname) for name in names):
            raise ChainVerificationError(
                f"Certificate is valid for {names or 'no DNS names'}, not {hostname}."
            )

    extended_key_usage = certificate.extended_key_usage_value
    if extended_key_usage is not None and not _SERVER_AUTH_USAGES.intersection(
        extended_key_usage.native
    ):
        raise ChainVerificationError("Certificate is not valid for server authentication.")

    _check_trust_anchor(certificate, anchor, at)


def is_valid(
    ca_cert_pem: bytes,
    cert_pem: bytes,
    key_pem: bytes,
    hostname: str | None,
    at: datetime,
) -> bool:
    try:
        verify_certificate(ca_cert_pem, cert_pem, key_pem, hostname, at)
    except CertRotatorError as exc:
        _logger.debug("Certificate not valid for host=%s: %s", hostname, exc)
        return False
    return True
