"""Error taxonomy for the retrieval engine.

Every failure the core can produce maps to one of these types. Callers
(the HTTP layer, the reindex script) show ``user_message`` to people and
log the rest.
"""
from enum import Enum
from typing import List, Optional, Tuple


class VaultRagError(Exception):
    """Base class for all vault-rag errors."""


class ConfigurationError(VaultRagError, ValueError):
    """Invalid settings, rejected before any processing starts."""


class ProviderErrorKind(str, Enum):
    """Distinguishable failure kinds for embedding/generation calls."""

    AUTH = "auth"
    RATE_LIMITED = "rate-limited"
    TRANSIENT_UNAVAILABLE = "transient-unavailable"
    SERVICE_UNAVAILABLE = "service-unavailable"
    OTHER = "other"


USER_MESSAGES = {
    ProviderErrorKind.AUTH: (
        "The model provider rejected the credentials. Check the API key in settings."
    ),
    ProviderErrorKind.RATE_LIMITED: (
        "The model provider's rate limit was reached. Please wait and try again."
    ),
    ProviderErrorKind.TRANSIENT_UNAVAILABLE: (
        "The model provider is temporarily overloaded. Please try again."
    ),
    ProviderErrorKind.SERVICE_UNAVAILABLE: (
        "The model provider is unavailable right now, even after retrying. "
        "Please try again later."
    ),
    ProviderErrorKind.OTHER: (
        "The model provider returned an unexpected error. Check the logs for details."
    ),
}


class ProviderError(VaultRagError):
    """A remote embedding or generation call failed.

    Attributes:
        kind: Failure classification
        model: Model id the call was made against, if known
        status_code: HTTP status from the provider, if any
    """

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str = "",
        model: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message or kind.value)
        self.kind = kind
        self.model = model
        self.status_code = status_code

    @property
    def user_message(self) -> str:
        """Fixed, user-facing description of this failure kind."""
        return USER_MESSAGES[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind is ProviderErrorKind.TRANSIENT_UNAVAILABLE


class ServiceUnavailableError(ProviderError):
    """Generation kept failing with transient errors until retries ran out."""

    def __init__(self, message: str = "", model: Optional[str] = None, attempts: int = 0):
        super().__init__(ProviderErrorKind.SERVICE_UNAVAILABLE, message, model=model)
        self.attempts = attempts


class SourceReadError(VaultRagError):
    """A single source could not be read."""

    def __init__(self, source_id: str, message: str = ""):
        super().__init__(message or f"Could not read source: {source_id}")
        self.source_id = source_id


class IngestionPartialFailure(VaultRagError):
    """One or more sources were skipped during ingestion.

    Never raised by the pipeline itself; it is attached to the
    ingestion report so callers can inspect or re-raise it.
    """

    def __init__(self, failures: List[Tuple[str, str]]):
        self.failures = list(failures)
        super().__init__(f"{len(self.failures)} source(s) failed to ingest")

    @property
    def count(self) -> int:
        return len(self.failures)

    @property
    def source_ids(self) -> List[str]:
        return [source_id for source_id, _ in self.failures]


class CacheCorruptError(VaultRagError):
    """The persisted cache could not be used; the cache was reset to empty."""


class CacheSaveError(VaultRagError):
    """Writing the cache to disk failed."""
