"""
Exception hierarchy for sfdocpipe.

Every pipeline error derives from PipelineError, which optionally records the
component that raised it so log lines can be attributed:

    PipelineError
    +-- ConfigError               (invalid configuration, fatal before any URL)
    +-- FetchError                (network / timeout / HTTP status, retryable)
    +-- EmbeddingError            (embedding service failure)
    |   +-- EmbeddingAuthError        (fatal, aborts the run)
    |   +-- EmbeddingRateLimitError   (retryable with backoff)
    |   +-- EmbeddingTransientError   (network fault, retryable with backoff)
    +-- StorageError              (vector store connectivity / write failure)
    +-- NotificationError         (best-effort notifier failure, never propagated)
    +-- RunAbortedError           (run-wide fault, carries the partial RunSummary)
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for all sfdocpipe errors."""

    def __init__(self, message: str, component: Optional[str] = None):
        self.message = message
        self.component = component
        super().__init__(message)

    def __str__(self) -> str:
        if self.component:
            return f"[{self.component}] {self.message}"
        return self.message


class ConfigError(PipelineError):
    """Raised when configuration or chunking parameters are invalid."""


class FetchError(PipelineError):
    """Raised when a source URL cannot be retrieved or parsed."""

    def __init__(
        self,
        message: str,
        url: str,
        status_code: Optional[int] = None,
        component: Optional[str] = None,
    ):
        super().__init__(message, component=component)
        self.url = url
        self.status_code = status_code


class EmbeddingError(PipelineError):
    """Raised when the embedding service returns an unusable response."""


class EmbeddingAuthError(EmbeddingError):
    """The embedding service rejected the credentials. Not retryable."""


class EmbeddingRateLimitError(EmbeddingError):
    """The embedding service throttled the request."""


class EmbeddingTransientError(EmbeddingError):
    """A network or server-side fault that is worth retrying."""


class StorageError(PipelineError):
    """Raised when the vector store is unreachable or a write fails."""


class NotificationError(PipelineError):
    """Raised by notifiers; the error reporter logs and discards it."""


class RunAbortedError(PipelineError):
    """
    Raised when a run-wide fault stops the pipeline.

    The partial RunSummary is attached so callers still see the counts
    accumulated before the abort.
    """

    def __init__(self, message: str, summary=None):
        super().__init__(message, component="pipeline")
        self.summary = summary


# Errors the orchestrator retries with backoff before giving up on a URL.
RETRYABLE_FETCH_ERRORS = (FetchError,)
RETRYABLE_EMBEDDING_ERRORS = (EmbeddingRateLimitError, EmbeddingTransientError)
RETRYABLE_STORAGE_ERRORS = (StorageError,)
