"""
CA and leaf rotation decisions.

Each pass starts from a bundle snapshot and returns a new bundle; the engine
keeps no state between passes. Two passes against the same store target must
not run concurrently: both would decide to rotate and race on the final save.
Callers serialize passes per target.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping

from .config import RotatorConfig
from .issuer import (
    DEFAULT_CLOCK_SKEW,
    DEFAULT_KEY_SIZE,
    DEFAULT_VALIDITY,
    KeyPairArtifacts,
    ValidityWindow,
    issue_ca,
    issue_leaf,
)
from .validator import DEFAULT_LOOKAHEAD, is_valid, lookahead_time

CA_CERT_NAME = "ca.crt"
CA_KEY_NAME = "ca.key"
LEAF_CERT_NAME = "tls.crt"
LEAF_KEY_NAME = "tls.key"
ARTIFACT_NAMES = (CA_CERT_NAME, CA_KEY_NAME, LEAF_CERT_NAME, LEAF_KEY_NAME)

_logger = logging.getLogger("cert_rotator.rotation")


@dataclass(frozen=True)
class ArtifactBundle:
    """The four stored blobs: CA cert, CA key, leaf cert, leaf key."""

    ca_cert: bytes = b""
    ca_key: bytes = b""
    leaf_cert: bytes = b""
    leaf_key: bytes = b""

    @classmethod
    def from_mapping(cls, data: Mapping[str, bytes] | None) -> "ArtifactBundle":
        data = data or {}
        return cls(
            ca_cert=bytes(data.get(CA_CERT_NAME) or b""),
            ca_key=bytes(data.get(CA_KEY_NAME) or b""),
            leaf_cert=bytes(data.get(LEAF_CERT_NAME) or b""),
            leaf_key=bytes(data.get(LEAF_KEY_NAME) or b""),
        )

    def to_mapping(self) -> dict[str, bytes]:
        return {
            CA_CERT_NAME: self.ca_cert,
            CA_KEY_NAME: self.ca_key,
            LEAF_CERT_NAME: self.leaf_cert,
            LEAF_KEY_NAME: self.leaf_key,
        }

    @property
    def is_empty(self) -> bool:
        return not any((self.ca_cert, self.ca_key, self.leaf_cert, self.leaf_key))


class RotationOutcome(enum.Enum):
    NONE = "none"
    LEAF = "leaf"
    CA = "ca"


@dataclass(frozen=True)
class RotationResult:
    bundle: ArtifactBundle
    outcome: RotationOutcome
    restart_requested: bool = False

    @property
    def changed(self) -> bool:
        return self.outcome is not RotationOutcome.NONE


@dataclass(frozen=True)
class RotationPolicy:
    """
    Issuance and rotation parameters.

    verify_ca_hostname keeps the CA self-check against ca_name as a DNS name;
    when disabled the CA is checked for key match, validity and self-trust only.
    """

    ca_name: str
    ca_organization: str | None = None
    lookahead: timedelta = DEFAULT_LOOKAHEAD
    validity: timedelta = DEFAULT_VALIDITY
    clock_skew: timedelta = DEFAULT_CLOCK_SKEW
    key_size: int = DEFAULT_KEY_SIZE
    verify_ca_hostname: bool = True
    restart_on_refresh: bool = False

    def __post_init__(self) -> None:
        ca_name = (self.ca_name or "").strip()
        if not ca_name:
            raise ValueError("ca_name is required for RotationPolicy.")
        object.__setattr__(self, "ca_name", ca_name)

    @classmethod
    def from_config(cls, config: RotatorConfig) -> "RotationPolicy":
        return cls(
            ca_name=config.ca_name,
            ca_organization=config.ca_organization or None,
            lookahead=config.lookahead,
            validity=config.validity,
            key_size=config.key_size,
            verify_ca_hostname=config.verify_ca_hostname,
            restart_on_refresh=config.restart_on_refresh,
        )


class RotationEngine:
    """Decides between CA rotation, leaf rotation and no-op for one bundle."""

    def __init__(
        self,
        policy: RotationPolicy,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._policy = policy
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def policy(self) -> RotationPolicy:
        return self._policy

    def ca_valid(self, bundle: ArtifactBundle, now: datetime) -> bool:
        hostname = self._policy.ca_name if self._policy.verify_ca_hostname else None
        return is_valid(
            bundle.ca_cert,
            bundle.ca_cert,
            bundle.ca_key,
            hostname,
            lookahead_time(now, self._policy.lookahead),
        )

    def leaf_valid(self, bundle: ArtifactBundle, hostname: str, now: datetime) -> bool:
        return is_valid(
            bundle.ca_cert,
            bundle.leaf_cert,
            bundle.leaf_key,
            hostname,
            lookahead_time(now, self._policy.lookahead),
        )

    def rotate(
        self,
        bundle: ArtifactBundle,
        hostname: str,
        now: datetime | None = None,
    ) -> RotationResult:
        """
        Run one rotation pass for hostname.

        Raises MalformedArtifactError when the stored CA cannot be rebuilt for
        a leaf-only rotation and CryptoGenerationError on issuance failures.
        Nothing is returned in either case, so the caller saves nothing.
        """
        hostname = (hostname or "").strip()
        if not hostname:
            raise ValueError("hostname is required for rotation.")
        now = now or self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        if not self.ca_valid(bundle, now):
            _logger.info("Refreshing CA and server certificates for host=%s", hostname)
            window = self._window(now)
            ca = issue_ca(
                window.not_before,
                window.not_after,
                self._policy.ca_name,
                self._policy.ca_organization,
                key_size=self._policy.key_size,
            )
            ca_bundle = ArtifactBundle(ca_cert=ca.certificate_pem, ca_key=ca.private_key_pem)
            return self._result(ca, ca_bundle, hostname, window, RotationOutcome.CA)

        if not self.leaf_valid(bundle, hostname, now):
            _logger.info("Refreshing server certificate for host=%s", hostname)
            ca = KeyPairArtifacts.from_pem(bundle.ca_cert, bundle.ca_key)
            # Stored CA blobs are kept byte for byte.
            return self._result(ca, bundle, hostname, self._window(now), RotationOutcome.LEAF)

        _logger.info("No certificate refresh needed for host=%s", hostname)
        return RotationResult(bundle=bundle, outcome=RotationOutcome.NONE)

    def _window(self, now: datetime) -> ValidityWindow:
        return ValidityWindow.starting_at(now, self._policy.validity, self._policy.clock_skew)

    def _result(
        self,
        ca: KeyPairArtifacts,
        base: ArtifactBundle,
        hostname: str,
        window: ValidityWindow,
        outcome: RotationOutcome,
    ) -> RotationResult:
        leaf_cert, leaf_key = issue_leaf(
            ca,
            window.not_before,
            window.not_after,
            hostname,
            key_size=self._policy.key_size,
        )
        restart = self._policy.restart_on_refresh
        if restart:
            _logger.info("Certificates refreshed; restart requested by policy.")
        return RotationResult(
            bundle=replace(base, leaf_cert=leaf_cert, leaf_key=leaf_key),
            outcome=outcome,
            restart_requested=restart,
        )
