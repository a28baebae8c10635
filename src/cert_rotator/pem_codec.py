"""PEM armor for certificates and private keys."""

from __future__ import annotations

from asn1crypto import pem, x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from .exceptions import CryptoGenerationError, MalformedArtifactError

CERTIFICATE_PEM_TYPE = "CERTIFICATE"
RSA_PRIVATE_KEY_PEM_TYPE = "RSA PRIVATE KEY"
PRIVATE_KEY_PEM_TYPE = "PRIVATE KEY"


def encode(
    certificate_der: bytes,
    private_key: PrivateKeyTypes,
) -> tuple[bytes, bytes]:
    """
    Armor a DER certificate and its private key.

    RSA keys are written as PKCS#1, anything else as unencrypted PKCS#8.
    """
    if isinstance(private_key, rsa.RSAPrivateKey):
        key_format = serialization.PrivateFormat.TraditionalOpenSSL
        key_type = RSA_PRIVATE_KEY_PEM_TYPE
    else:
        key_format = serialization.PrivateFormat.PKCS8
        key_type = PRIVATE_KEY_PEM_TYPE

    try:
        key_der = private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=key_format,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return (
            pem.armor(CERTIFICATE_PEM_TYPE, certificate_der),
            pem.armor(key_type, key_der),
        )
    except (TypeError, ValueError) as exc:
        raise CryptoGenerationError(f"Failed to PEM-encode artifacts: {exc}") from exc


def decode(pem_bytes: bytes, expected_type: str | None = None) -> bytes:
    """Return the DER payload of the first PEM block in pem_bytes."""
    if not pem_bytes or not pem.detect(pem_bytes):
        raise MalformedArtifactError("No PEM block found.")
    try:
        pem_type, _headers, der_bytes = pem.unarmor(pem_bytes)
    except ValueError as exc:
        raise MalformedArtifactError(f"Invalid PEM block: {exc}") from exc
    if expected_type is not None and pem_type != expected_type:
        raise MalformedArtifactError(
            f"Expected PEM type '{expected_type}', received '{pem_type}'."
        )
    return der_bytes


def load_certificate(pem_bytes: bytes) -> x509.Certificate:
    der_bytes = decode(pem_bytes, CERTIFICATE_PEM_TYPE)
    try:
        certificate = x509.Certificate.load(der_bytes)
        # asn1crypto parses lazily; force the full structure now.
        certificate.native
    except (TypeError, ValueError) as exc:
        raise MalformedArtifactError(f"Unparsable certificate: {exc}") from exc
    return certificate


def load_private_key(pem_bytes: bytes) -> PrivateKeyTypes:
    der_bytes = decode(pem_bytes)
    try:
        return serialization.load_der_private_key(der_bytes, password=None)
    except (TypeError, ValueError, UnsupportedAlgorithm) as exc:
        raise MalformedArtifactError(f"Unparsable private key: {exc}") from exc
