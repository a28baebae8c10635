from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

from asn1crypto import algos, keys, x509
from cryptography import x509 as crypto_x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.types import (
    PrivateKeyTypes,
    PublicKeyTypes,
)

# RFC 5280 4.1.2.5: UTCTime through 2049, GeneralizedTime from 2050 on.
_UTC_TIME_CUTOFF_YEAR = 2050

_HASH_ALGORITHMS: dict[str, Callable[[], hashes.HashAlgorithm]] = {
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
}


@dataclass(frozen=True)
class DistinguishedName:
    """
    Distinguished Name values used in issued certificates.
    """

    common_name: str
    organization: str | None = None

    def to_asn1(self) -> x509.Name:
        if not self.common_name.strip():
            raise ValueError("common_name is required for DistinguishedName.")

        fields: dict[str, str] = {"common_name": self.common_name.strip()}
        if self.organization and self.organization.strip():
            fields["organization_name"] = self.organization.strip()
        return x509.Name.build(fields)


def _normalize_algorithm_name(algorithm: str) -> str:
    return algorithm.strip().lower().replace("-", "_")


def signature_algorithm_identifier(algorithm: str) -> algos.SignedDigestAlgorithm:
    normalized = _normalize_algorithm_name(algorithm)
    if normalized == "rsa_pkcs1v15_sha256":
        return algos.SignedDigestAlgorithm({"algorithm": "sha256_rsa"})
    if normalized == "rsa_pkcs1v15_sha384":
        return algos.SignedDigestAlgorithm({"algorithm": "sha384_rsa"})

    raise ValueError(
        f"Unsupported X.509 signing algorithm '{algorithm}'. "
        "Use one of: rsa_pkcs1v15_sha256, rsa_pkcs1v15_sha384."
    )


def rsa_tbs_signer(
    private_key: rsa.RSAPrivateKey,
    algorithm: str = "rsa_pkcs1v15_sha256",
) -> Callable[[bytes], bytes]:
    """Return a sign_tbs callable backed by an in-memory RSA key."""
    normalized = _normalize_algorithm_name(algorithm)
    hash_name = normalized.rsplit("_", 1)[-1]
    if not normalized.startswith("rsa_pkcs1v15_") or hash_name not in _HASH_ALGORITHMS:
        raise ValueError(f"Unsupported RSA signing algorithm '{algorithm}'.")

    def sign_tbs(tbs: bytes) -> bytes:
        return private_key.sign(tbs, padding.PKCS1v15(), _HASH_ALGORITHMS[hash_name]())

    return sign_tbs


def generate_serial_number() -> int:
    # Positive 159-bit serial to satisfy common X.509 constraints.
    return int.from_bytes(os.urandom(20), byteorder="big") >> 1


def public_key_info(public_key: PublicKeyTypes) -> keys.PublicKeyInfo:
    return keys.PublicKeyInfo.load(_spki_der(public_key))


def private_key_public_info(private_key: PrivateKeyTypes) -> keys.PublicKeyInfo:
    return public_key_info(private_key.public_key())


def certificate_public_key(certificate: x509.Certificate) -> PublicKeyTypes:
    return serialization.load_der_public_key(certificate.public_key.dump())


def _spki_der(public_key: PublicKeyTypes) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def keys_match(certificate: x509.Certificate, private_key: PrivateKeyTypes) -> bool:
    return _spki_der(certificate_public_key(certificate)) == _spki_der(
        private_key.public_key()
    )


def validity_time(value: datetime) -> x509.Time:
    if value.tzinfo is None:
        raise ValueError("Certificate validity times must be timezone aware.")
    value = value.astimezone(timezone.utc).replace(microsecond=0)
    if value.year < _UTC_TIME_CUTOFF_YEAR:
        return x509.Time({"utc_time": value})
    return x509.Time({"general_time": value})


def build_validity(not_before: datetime, not_after: datetime) -> x509.Validity:
    if not_after <= not_before:
        raise ValueError("not_after must be later than not_before.")
    return x509.Validity(
        {
            "not_before": validity_time(not_before),
            "not_after": validity_time(not_after),
        }
    )


def _build_dns_san_extension(dns_names: Iterable[str]) -> x509.Extension:
    normalized_names = [name.strip() for name in dns_names if name and name.strip()]
    if not normalized_names:
        raise ValueError("At least one non-empty DNS name is required for SAN extension.")
    general_names = x509.GeneralNames(
        [x509.GeneralName(name="dns_name", value=name) for name in normalized_names]
    )
    return x509.Extension(
        {
            "extn_id": "subject_alt_name",
            "critical": False,
            "extn_value": general_names,
        }
    )


def _key_identifier_extensions(
    subject_public_key_info: keys.PublicKeyInfo,
    issuer_public_key_info: keys.PublicKeyInfo,
) -> list[x509.Extension]:
    return [
        x509.Extension(
            {
                "extn_id": "key_identifier",
                "critical": False,
                "extn_value": subject_public_key_info.sha1,
            }
        ),
        x509.Extension(
            {
                "extn_id": "authority_key_identifier",
                "critical": False,
                "extn_value": x509.AuthorityKeyIdentifier(
                    {"key_identifier": issuer_public_key_info.sha1}
                ),
            }
        ),
    ]


def build_ca_extensions(
    *,
    subject_public_key_info: keys.PublicKeyInfo,
    dns_names: Iterable[str],
) -> x509.Extensions:
    return x509.Extensions(
        [
            x509.Extension(
                {
                    "extn_id": "basic_constraints",
                    "critical": True,
                    "extn_value": x509.BasicConstraints({"ca": True}),
                }
            ),
            x509.Extension(
                {
                    "extn_id": "key_usage",
                    "critical": True,
                    "extn_value": x509.KeyUsage(
                        {"digital_signature", "key_encipherment", "key_cert_sign"}
                    ),
                }
            ),
            *_key_identifier_extensions(subject_public_key_info, subject_public_key_info),
            _build_dns_san_extension(dns_names),
        ]
    )


def build_leaf_extensions(
    *,
    subject_public_key_info: keys.PublicKeyInfo,
    issuer_public_key_info: keys.PublicKeyInfo,
    dns_names: Iterable[str],
) -> x509.Extensions:
    return x509.Extensions(
        [
            x509.Extension(
                {
                    "extn_id": "basic_constraints",
                    "critical": True,
                    "extn_value": x509.BasicConstraints({"ca": False}),
                }
            ),
            x509.Extension(
                {
                    "extn_id": "key_usage",
                    "critical": True,
                    "extn_value": x509.KeyUsage({"digital_signature", "key_encipherment"}),
                }
            ),
            x509.Extension(
                {
                    "extn_id": "extended_key_usage",
                    "critical": False,
                    "extn_value": x509.ExtKeyUsageSyntax(["server_auth"]),
                }
            ),
            *_key_identifier_extensions(subject_public_key_info, issuer_public_key_info),
            _build_dns_san_extension(dns_names),
        ]
    )


def create_certificate(
    *,
    subject: x509.Name,
    issuer: x509.Name,
    subject_public_key_info: keys.PublicKeyInfo,
    validity: x509.Validity,
    extensions: x509.Extensions,
    sign_tbs: Callable[[bytes], bytes],
    signing_algorithm: str = "rsa_pkcs1v15_sha256",
    serial_number: int | None = None,
) -> x509.Certificate:
    resolved_serial = serial_number if serial_number is not None else generate_serial_number()
    signature_id = signature_algorithm_identifier(signing_algorithm)

    tbs_certificate = x509.TbsCertificate(
        {
            "version": "v3",
            "serial_number": resolved_serial,
            "signature": signature_id,
            "issuer": issuer,
            "validity": validity,
            "subject": subject,
            "subject_public_key_info": subject_public_key_info,
            "extensions": extensions,
        }
    )
    return x509.Certificate(
        {
            "tbs_certificate": tbs_certificate,
            "signature_algorithm": signature_id,
            "signature_value": sign_tbs(tbs_certificate.dump()),
        }
    )


def verify_directly_issued_by(certificate: x509.Certificate, issuer: x509.Certificate) -> None:
    """
    Check that issuer's subject and public key signed certificate.

    Raises cryptography.exceptions.InvalidSignature on a bad signature,
    ValueError when the names differ or the signature scheme is unsupported and
    TypeError for unsupported issuer key types.
    """
    issued = crypto_x509.load_der_x509_certificate(certificate.dump())
    issued.verify_directly_issued_by(crypto_x509.load_der_x509_certificate(issuer.dump()))
