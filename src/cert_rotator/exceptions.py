class CertRotatorError(RuntimeError):
    """Base rotator error."""


class ConfigurationError(CertRotatorError):
    """Configuration is invalid or incomplete."""


class EmptyArtifactError(CertRotatorError):
    """A required artifact blob is missing or zero-length."""


class MalformedArtifactError(CertRotatorError):
    """An artifact blob could not be decoded or parsed."""


class ChainVerificationError(CertRotatorError):
    """A certificate did not verify against its trust anchor."""


class FieldNotFoundError(CertRotatorError):
    """A target resource lacks the expected nested field."""


class CryptoGenerationError(CertRotatorError):
    """Key generation or signing failed."""


class StoreError(CertRotatorError):
    """The artifact store could not be read or written."""


class ArtifactNotFoundError(StoreError):
    """The artifact store has no blob under the requested name."""
