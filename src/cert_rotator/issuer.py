from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from asn1crypto import x509
from cryptography.hazmat.primitives.asymmetric import rsa

from . import pem_codec
from .exceptions import CryptoGenerationError, MalformedArtifactError
from .x509_ops import (
    DistinguishedName,
    build_ca_extensions,
    build_leaf_extensions,
    build_validity,
    create_certificate,
    keys_match,
    private_key_public_info,
    rsa_tbs_signer,
)

DEFAULT_KEY_SIZE = 2048
DEFAULT_VALIDITY = timedelta(days=3650)
DEFAULT_CLOCK_SKEW = timedelta(hours=1)

_logger = logging.getLogger("cert_rotator.issuer")


def _format_exception(exc: Exception) -> str:
    details = str(exc).strip()
    if details:
        return f"{type(exc).__name__}: {details}"
    return type(exc).__name__


@dataclass(frozen=True)
class ValidityWindow:
    """Inclusive not_before/not_after bounds of an issued certificate."""

    not_before: datetime
    not_after: datetime

    @classmethod
    def starting_at(
        cls,
        now: datetime,
        duration: timedelta = DEFAULT_VALIDITY,
        clock_skew: timedelta = DEFAULT_CLOCK_SKEW,
    ) -> "ValidityWindow":
        return cls(not_before=now - clock_skew, not_after=now + duration)

    @classmethod
    def of(cls, certificate: x509.Certificate) -> "ValidityWindow":
        validity = certificate["tbs_certificate"]["validity"]
        return cls(
            not_before=validity["not_before"].native,
            not_after=validity["not_after"].native,
        )

    def contains(self, at: datetime) -> bool:
        return self.not_before <= at <= self.not_after


@dataclass(frozen=True)
class KeyPairArtifacts:
    """
    A certificate with its private key, in parsed and PEM form.

    Build instances through from_pem() or the issue_* helpers so the PEM
    bytes are always the canonical encoding of the parsed objects.
    """

    certificate: x509.Certificate
    private_key: rsa.RSAPrivateKey
    certificate_pem: bytes
    private_key_pem: bytes

    @classmethod
    def from_parsed(
        cls,
        certificate: x509.Certificate,
        private_key: rsa.RSAPrivateKey,
    ) -> "KeyPairArtifacts":
        certificate_pem, private_key_pem = pem_codec.encode(certificate.dump(), private_key)
        return cls(
            certificate=certificate,
            private_key=private_key,
            certificate_pem=certificate_pem,
            private_key_pem=private_key_pem,
        )

    @classmethod
    def from_pem(cls, certificate_pem: bytes, private_key_pem: bytes) -> "KeyPairArtifacts":
        """Re-derive CA artifacts from stored blobs."""
        if not certificate_pem:
            raise MalformedArtifactError("CA certificate blob is missing.")
        if not private_key_pem:
            raise MalformedArtifactError("CA private key blob is missing.")
        certificate = pem_codec.load_certificate(certificate_pem)
        private_key = pem_codec.load_private_key(private_key_pem)
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise MalformedArtifactError(
                f"CA private key must be RSA, got {type(private_key).__name__}."
            )
        if not keys_match(certificate, private_key):
            raise MalformedArtifactError("CA private key does not match the CA certificate.")
        return cls.from_parsed(certificate, private_key)

    @property
    def subject(self) -> x509.Name:
        return self.certificate.subject

    @property
    def validity(self) -> ValidityWindow:
        return ValidityWindow.of(self.certificate)


def generate_private_key(key_size: int = DEFAULT_KEY_SIZE) -> rsa.RSAPrivateKey:
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    except Exception as exc:
        _logger.exception("Failed to generate RSA key (key_size=%d)", key_size)
        raise CryptoGenerationError(
            f"Failed to generate RSA key: {_format_exception(exc)}"
        ) from exc


def issue_ca(
    not_before: datetime,
    not_after: datetime,
    common_name: str,
    organization: str | None = None,
    *,
    key_size: int = DEFAULT_KEY_SIZE,
    serial_number: int | None = None,
) -> KeyPairArtifacts:
    """Create a self-signed CA whose only DNS name is its own common name."""
    subject = DistinguishedName(common_name=common_name, organization=organization).to_asn1()
    validity = build_validity(not_before, not_after)
    private_key = generate_private_key(key_size)
    subject_public_key_info = private_key_public_info(private_key)

    try:
        certificate = create_certificate(
            subject=subject,
            issuer=subject,
            subject_public_key_info=subject_public_key_info,
            validity=validity,
            extensions=build_ca_extensions(
                subject_public_key_info=subject_public_key_info,
                dns_names=[common_name],
            ),
            sign_tbs=rsa_tbs_signer(private_key),
            serial_number=serial_number,
        )
    except Exception as exc:
        _logger.exception("Failed to sign CA certificate cn=%s", common_name)
        raise CryptoGenerationError(
            f"Failed to sign CA certificate: {_format_exception(exc)}"
        ) from exc

    artifacts = KeyPairArtifacts.from_parsed(certificate, private_key)
    _logger.info(
        "Issued CA certificate cn=%s serial=%x not_after=%s",
        common_name,
        certificate.serial_number,
        not_after.isoformat(),
    )
    return artifacts


def issue_leaf(
    ca: KeyPairArtifacts,
    not_before: datetime,
    not_after: datetime,
    hostname: str,
    *,
    key_size: int = DEFAULT_KEY_SIZE,
    serial_number: int | None = None,
) -> tuple[bytes, bytes]:
    """Create a server certificate for hostname signed by ca; returns PEM cert and key."""
    subject = DistinguishedName(common_name=hostname).to_asn1()
    validity = build_validity(not_before, not_after)
    private_key = generate_private_key(key_size)
    subject_public_key_info = private_key_public_info(private_key)

    try:
        certificate = create_certificate(
            subject=subject,
            issuer=ca.subject,
            subject_public_key_info=subject_public_key_info,
            validity=validity,
            extensions=build_leaf_extensions(
                subject_public_key_info=subject_public_key_info,
                issuer_public_key_info=ca.certificate.public_key,
                dns_names=[hostname],
            ),
            sign_tbs=rsa_tbs_signer(ca.private_key),
            serial_number=serial_number,
        )
    except Exception as exc:
        _logger.exception("Failed to sign leaf certificate host=%s", hostname)
        raise CryptoGenerationError(
            f"Failed to sign leaf certificate: {_format_exception(exc)}"
        ) from exc

    certificate_pem, private_key_pem = pem_codec.encode(certificate.dump(), private_key)
    _logger.info(
        "Issued leaf certificate host=%s serial=%x not_after=%s",
        hostname,
        certificate.serial_number,
        not_after.isoformat(),
    )
    return certificate_pem, private_key_pem
