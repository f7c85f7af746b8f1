"""Custom exception hierarchy for Croupier."""

from typing import List, Optional, Sequence


class CroupierError(Exception):
    """Base exception for all Croupier errors."""


class ConfigurationError(CroupierError):
    """Raised when configuration is invalid or inconsistent."""


class EmbeddingError(CroupierError):
    """Raised when embedding generation fails."""


class EmbeddingUnavailable(EmbeddingError):
    """Raised when the embedding backend failed and no previous vector exists."""


class CacheError(CroupierError):
    """Raised by the semantic cache. Never fatal for a request."""


class StorageError(CacheError):
    """Raised when the cache storage backend encounters an error."""


class StorageInitializationError(StorageError):
    """Raised when collection creation or storage initialization fails."""


class MetadataUnavailable(CroupierError):
    """Raised when the metadata collaborator cannot serve the catalog."""


class TemplateError(CroupierError):
    """Raised when a prompt template cannot be found or loaded."""


class ExtractionError(CroupierError):
    """Raised when a question is empty or cannot be analysed."""


class SchemaResolutionError(CroupierError):
    """Raised when no relevant schema exists or tables cannot be joined."""

    NO_RELEVANT_SCHEMA = "no_relevant_schema"
    AMBIGUOUS_JOIN = "ambiguous_join"

    def __init__(
        self,
        message: str,
        reason: str = NO_RELEVANT_SCHEMA,
        ambiguities: Optional[Sequence[str]] = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.ambiguities: List[str] = list(ambiguities or [])


class PromptValidationError(CroupierError):
    """Raised when a prompt cannot be assembled without unresolved placeholders."""

    def __init__(
        self,
        message: str,
        missing: Optional[Sequence[str]] = None,
        over_budget: bool = False,
        size: Optional[int] = None,
    ):
        super().__init__(message)
        self.missing: List[str] = list(missing or [])
        self.over_budget = over_budget
        self.size = size


class ProviderError(CroupierError):
    """Raised when an LLM provider call fails.

    ``transient`` errors are retried against the same provider; all others
    move the orchestrator on to the next provider.
    """

    transient = False
    outcome = "error"

    def __init__(self, message: str, provider_id: Optional[str] = None):
        super().__init__(message)
        self.provider_id = provider_id


class ProviderTimeout(ProviderError):
    transient = True
    outcome = "timeout"


class ProviderRateLimited(ProviderError):
    transient = True
    outcome = "rate_limited"


class ProviderServerError(ProviderError):
    """5xx-class or connection failure."""

    transient = True


class ProviderAuthError(ProviderError):
    """Authentication or permission failure. Never retried."""


class ProviderResponseError(ProviderError):
    """Malformed or empty response, or a rejected request."""


class ProvidersExhausted(ProviderError):
    """Raised when every eligible provider failed or was rejected."""

    def __init__(self, message: str, attempts=None, best_rejected=None):
        super().__init__(message)
        self.attempts = list(attempts or [])
        self.best_rejected = best_rejected


class QualityGateFailure(CroupierError):
    """Raised when a generated response scores below the configured thresholds."""

    def __init__(self, message: str, quality=None):
        super().__init__(message)
        self.quality = quality
