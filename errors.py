"""Error taxonomy shared by the services and the HTTP adapter.

Every error carries the HTTP status it maps to and a stable ``kind`` string
that clients can switch on.
"""

from typing import Optional


class SpendwiseError(Exception):
    """Base class for expected, caller-facing failures."""

    status_code = 500
    kind = "internal_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(SpendwiseError, ValueError):
    """Bad input shape or range."""

    status_code = 400
    kind = "validation_error"


class ConfirmationRequired(SpendwiseError):
    """A destructive operation was called without the exact confirmation text."""

    status_code = 400
    kind = "confirmation_required"

    def __init__(self, expected: str, message: Optional[str] = None) -> None:
        self.expected = expected
        super().__init__(
            message
            or f'Explicit confirmation required. Send "confirmation": "{expected}".'
        )


class AuthenticationRequired(SpendwiseError):
    status_code = 401
    kind = "authentication_required"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class NotAuthorizedError(SpendwiseError):
    """Authenticated, but not allowed to do this."""

    status_code = 403
    kind = "not_authorized"

    def __init__(self, message: str = "Not authorized") -> None:
        super().__init__(message)


class NotFoundError(SpendwiseError, LookupError):
    """Entity is absent or not owned by the caller."""

    status_code = 404
    kind = "not_found"

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message)


class RateLimitExceeded(SpendwiseError):
    status_code = 429
    kind = "rate_limited"

    def __init__(self, message: str, retry_after_secs: int) -> None:
        self.retry_after_secs = retry_after_secs
        super().__init__(message)


class DependencyUnavailable(SpendwiseError):
    """A backing store could not be reached."""

    status_code = 500
    kind = "dependency_unavailable"

    def __init__(self, dependency: str, message: Optional[str] = None) -> None:
        self.dependency = dependency
        super().__init__(message or f"{dependency} is unavailable")
