"""
Error taxonomy for catalog resolution.

Every failure the resolution engine surfaces derives from
ResolutionError, so callers can catch the whole family at the
edge and still branch on the concrete type when they care.
"""

from datetime import datetime, timezone


class ResolutionError(Exception):
    """Base exception for resolution errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        source: str | None = None,
        endpoint: str | None = None,
        status_code: int | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.source = source
        self.endpoint = endpoint
        self.status_code = status_code
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)


class ParseError(ResolutionError):
    """Raised when an upstream response is malformed. Permanent."""

    pass


class UpstreamError(ResolutionError):
    """Raised when the catalog API call fails."""

    def __init__(self, message: str, *, transient: bool = False, **kwargs: object) -> None:
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.transient = transient
        self.retryable = transient


class UpstreamTransientError(UpstreamError):
    """Network failure, 5xx or upstream 429. Retried with backoff."""

    def __init__(self, message: str, **kwargs: object) -> None:
        super().__init__(message, transient=True, **kwargs)


class RateLimitedError(ResolutionError):
    """Raised when the admission gate cannot admit a call within the bounded wait."""

    retryable = True

    def __init__(self, message: str, *, caller_class: str | None = None, **kwargs: object) -> None:
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.caller_class = caller_class


class StorageError(ResolutionError):
    """Raised when the persistence layer fails. Treated as transient."""

    retryable = True


class IndexStaleError(ResolutionError):
    """Raised when a rebuild is rejected and the prior generation stays live."""

    def __init__(
        self,
        message: str,
        *,
        family: str | None = None,
        received: int | None = None,
        minimum: int | None = None,
        **kwargs: object,
    ) -> None:
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.family = family
        self.received = received
        self.minimum = minimum


class ResolutionTimeoutError(ResolutionError):
    """Raised when a resolution does not complete within its deadline."""

    retryable = True
