"""Custom exceptions for the admission service."""


class QuotaGateException(Exception):
    """Base class for caller-visible exceptions with HTTP status code.

    All rejection exceptions inherit from this class and define their
    specific status_code and error code for consistent HTTP responses.
    """
    status_code: int = 500
    code: str = "INTERNAL"

    def __init__(self, message: str = "Something went wrong"):
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to API error body."""
        return {"error": {"code": self.code, "message": self.message}}


class RateLimitedError(QuotaGateException):
    """Raised when a client identity has no tokens left in its bucket.

    Maps to HTTP 429 Too Many Requests. Retry after the refill interval.
    """
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, retry_after: int = 60, message: str = "Too many requests"):
        self.retry_after = retry_after
        super().__init__(message)


class BudgetExceededError(QuotaGateException):
    """Raised when a precharge would push a principal past its daily token limit.

    Maps to HTTP 429 Too Many Requests. Retry on the next UTC day.
    """
    status_code = 429
    code = "TOKEN_LIMIT_EXCEEDED"

    def __init__(
        self,
        used: int,
        limit: int,
        requested: int,
        retry_after: int | None = None,
    ):
        self.used = used
        self.limit = limit
        self.requested = requested
        self.retry_after = retry_after
        super().__init__(
            f"Daily token limit exceeded. "
            f"Limit: {limit}, Used: {used}, Requested: {requested}"
        )


class AuthenticationError(QuotaGateException):
    """Raised when the upstream auth layer supplied no principal.

    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "User ID is required"):
        super().__init__(message)


class StoreError(Exception):
    """Counter store failure (network, auth, quota or timeout at the store).

    Never surfaced to callers; the quota guard absorbs it and fails open.
    """

    def __init__(self, operation: str, key: str, cause: BaseException | None = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Counter store {operation} failed for {key}{detail}")
