from typing import Optional


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class APIClientError(AppError):
    """Raised when an external API call fails."""
    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, original_error)
        self.status_code = status_code


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass


class RateLimitError(APIClientError):
    """Raised when a provider rate-limits a call without reporting quota exhaustion."""
    pass


class ServiceUnavailableError(APIClientError):
    """Raised when a provider is temporarily unavailable."""
    pass


class QuotaExceededError(APIClientError):
    """Raised when a provider reports that the account's usage allowance is consumed.

    Never retried.
    """
    def __init__(
        self,
        provider: str,
        message: str,
        original_error: Optional[Exception] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(
            f"{provider} quota exceeded: {message}",
            original_error=original_error,
            status_code=status_code,
        )
        self.provider = provider


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    pass


class ValidationError(AppError):
    """Raised when input validation fails."""
    pass


class NotFoundError(AppError):
    """Raised when a requested job, item or entity does not exist."""
    pass


class ConflictError(AppError):
    """Raised when an operation conflicts with current state."""
    pass


class RelationshipConflictError(ConflictError):
    """Raised when an edge (or its logical inverse) already exists in the graph."""
    pass


class EnrichmentInProgressError(ConflictError):
    """Raised when an enrichment run is already in flight for a job."""
    pass
