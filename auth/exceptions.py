"""Typed exceptions for auth failures.

Each error carries the code and HTTP status it is surfaced with, so the
boundary layer can pass typed errors through verbatim.
"""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(AuthError):
    """Malformed credentials, unverified user or missing fields."""

    code = "BAD_REQUEST"
    status_code = 400
    default_message = "Bad request"


class UnauthorizedError(AuthError):
    """Missing or invalid credentials."""

    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Unauthorized"


class InvalidTokenError(UnauthorizedError):
    """
    Token is invalid, expired, or malformed.

    Used for access tokens and two-factor challenge tokens.
    """

    default_message = "Invalid or expired token"


class SessionExpiredError(UnauthorizedError):
    """Session record is missing from the store or unreadable."""

    default_message = "Session has expired or user doesn't exist"


class ForbiddenError(AuthError):
    """Authenticated (or anonymous) caller may not perform this action."""

    code = "FORBIDDEN"
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AuthError):
    """Referenced user or API key does not exist."""

    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class ConflictError(AuthError):
    """Resource already exists."""

    code = "CONFLICT"
    status_code = 409
    default_message = "Conflict"


class RateLimitedError(AuthError):
    """Too many attempts. Client should wait before retrying."""

    code = "TOO_MANY_REQUESTS"
    status_code = 429

    def __init__(self, retry_after_seconds: int, message: str | None = None):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message or f"Rate limited. Retry after {retry_after_seconds} seconds.")


class InternalServerError(AuthError):
    """Infrastructure failure the caller can't fix (hashing, signing, storage)."""


class DuplicateKeyError(Exception):
    """
    Unique constraint violated on insert.

    Raised only by the repository layer. Not an AuthError: services decide
    how a duplicate is reported.
    """

    def __init__(self, constraint: str | None = None):
        self.constraint = constraint
        super().__init__(f"Duplicate key violates {constraint or 'unique constraint'}")
