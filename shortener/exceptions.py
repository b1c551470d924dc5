"""Error taxonomy for the URL shortener service.

Every error raised by the workflows derives from ShortenerError and carries an
``error_code``. The HTTP layer maps them to status codes in ``shortener.main``:

    InvalidInputError               -> 400
    NotFoundError                   -> 404
    RateLimitExceededError          -> 429
    IdentifierSpaceExhaustedError   -> 500
    StorageError / CacheError       -> 500

DuplicateKeyError never reaches a client; the shorten workflow treats it as an
identifier collision and retries with a fresh identifier.
"""

__all__ = [
    "ShortenerError",
    "InvalidInputError",
    "NotFoundError",
    "DuplicateKeyError",
    "IdentifierSpaceExhaustedError",
    "StorageError",
    "CacheError",
    "RateLimitExceededError",
]


class ShortenerError(Exception):
    """Base exception for all application-specific errors."""

    error_code = "app:shortener_error"


class InvalidInputError(ShortenerError):
    """Raised when a shorten request carries a missing or malformed URL."""

    error_code = "app:invalid_input_error"


class NotFoundError(ShortenerError):
    """Raised when a short identifier does not map to a live record."""

    error_code = "app:not_found_error"


class DuplicateKeyError(ShortenerError):
    """Raised when inserting a record whose short identifier already exists."""

    error_code = "store:duplicate_key_error"


class IdentifierSpaceExhaustedError(ShortenerError):
    """Raised when every identifier generated within the retry budget collided."""

    error_code = "app:identifier_space_exhausted_error"


class StorageError(ShortenerError):
    """Raised when the durable store fails.

    Examples include connection issues, timeouts, and failed commits.
    """

    error_code = "store:storage_error"


class CacheError(ShortenerError):
    """Raised when the lookup cache backend fails."""

    error_code = "cache:cache_error"


class RateLimitExceededError(ShortenerError):
    """Raised when a client exceeds its request budget for the current window."""

    error_code = "app:rate_limit_exceeded_error"

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"Too many requests, retry after {retry_after:.1f}s")
        self.retry_after = retry_after
