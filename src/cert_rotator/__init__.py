"""Self-signed CA and webhook serving certificate rotation."""

from .config import RotatorConfig
from .exceptions import (
    ArtifactNotFoundError,
    CertRotatorError,
    ChainVerificationError,
    ConfigurationError,
    CryptoGenerationError,
    EmptyArtifactError,
    FieldNotFoundError,
    MalformedArtifactError,
    StoreError,
)
from .issuer import KeyPairArtifacts, ValidityWindow, issue_ca, issue_leaf
from .logging_utils import configure_logging
from .patcher import ResourcePatcher, WebhookInfo, WebhookType, crd_webhook_infos
from .reconciler import ReconcileResult, WebhookReconciler, service_dns_name
from .rotation import (
    ArtifactBundle,
    RotationEngine,
    RotationOutcome,
    RotationPolicy,
    RotationResult,
)
from .store import (
    ArtifactStore,
    DirectoryArtifactStore,
    MemoryArtifactStore,
    ensure_certs_mounted,
    load_bundle,
)
from .validator import is_valid, lookahead_time, verify_certificate

__all__ = [
    "ArtifactBundle",
    "ArtifactNotFoundError",
    "ArtifactStore",
    "CertRotatorError",
    "ChainVerificationError",
    "ConfigurationError",
    "CryptoGenerationError",
    "DirectoryArtifactStore",
    "EmptyArtifactError",
    "FieldNotFoundError",
    "KeyPairArtifacts",
    "MalformedArtifactError",
    "MemoryArtifactStore",
    "ReconcileResult",
    "ResourcePatcher",
    "RotationEngine",
    "RotationOutcome",
    "RotationPolicy",
    "RotationResult",
    "RotatorConfig",
    "StoreError",
    "ValidityWindow",
    "WebhookInfo",
    "WebhookReconciler",
    "WebhookType",
    "configure_logging",
    "crd_webhook_infos",
    "ensure_certs_mounted",
    "is_valid",
    "issue_ca",
    "issue_leaf",
    "load_bundle",
    "lookahead_time",
    "service_dns_name",
    "verify_certificate",
]
