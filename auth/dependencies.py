"""FastAPI dependencies for per-route auth gates.

Dependencies raise typed AuthErrors and never write responses themselves;
the registered exception handler renders each error exactly once.
"""

import logging

from fastapi import Depends, Request

from auth.csrf import CSRF_COOKIE, CSRF_HEADER, SAFE_METHODS, CsrfProtector
from auth.exceptions import ForbiddenError, UnauthorizedError
from auth.rate_limiter import RateLimiter
from auth.types import Role, User
from utils.client_ip import get_client_ip

logger = logging.getLogger(__name__)


def require_user(request: Request) -> User:
    """Return the user AuthMiddleware attached, or reject the request."""
    user = getattr(request.state, "user", None)
    if user is None:
        raise UnauthorizedError("Session has expired or user doesn't exist")
    return user


class RequireRole:
    """Dependency admitting only authenticated users holding role."""

    def __init__(self, role: Role):
        self._role = role

    def __call__(self, user: User = Depends(require_user)) -> User:
        if user.role != self._role:
            logger.info(f"User {user.id} ({user.role.value}) denied {self._role.value} route")
            raise ForbiddenError("You do not have permission to perform this action")
        return user


class RateLimit:
    """Dependency applying a RateLimiter to the client IP."""

    def __init__(self, limiter: RateLimiter):
        self._limiter = limiter

    def __call__(self, request: Request) -> None:
        client_ip = get_client_ip(request)
        if client_ip is None:
            return
        self._limiter.check_rate_limit(client_ip)


class CsrfProtect:
    """Dependency enforcing the double-submit check on unsafe methods."""

    def __init__(self, protector: CsrfProtector):
        self._protector = protector

    def __call__(self, request: Request) -> None:
        if request.method in SAFE_METHODS:
            return

        cookie_value = request.cookies.get(CSRF_COOKIE)
        header_token = request.headers.get(CSRF_HEADER)
        if not self._protector.is_valid(cookie_value, header_token):
            logger.info(f"CSRF check failed for {request.method} {request.url.path}")
            raise ForbiddenError("Invalid CSRF token. Please try again.")
