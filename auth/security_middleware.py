"""Security middleware for FastAPI - IP blocking and access-token deserialization."""

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from api.base import ErrorCodes, error_json
from auth.exceptions import UnauthorizedError
from auth.ip_blocking import IpBlocker
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.service import AuthService
from utils.client_ip import get_client_ip

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "access_token"

BLOCKED_MESSAGES = {
    "failed_logins": "Your IP has been blocked due to suspicious activity. Please try again later.",
    "suspicious_activity": "Your IP has been blocked due to excessive requests. Please try again later.",
}


class IpBlockingMiddleware(BaseHTTPMiddleware):
    """Rejects requests from blocked IPs and counts every request toward a block.

    Store failures inside IpBlocker fail open, so an unreachable Valkey
    lets traffic through.
    """

    def __init__(self, app, ip_blocker: IpBlocker, security_logger: SecurityLogger | None = None):
        super().__init__(app)
        self._ip_blocker = ip_blocker
        self._security_logger = security_logger

    def _blocked(self, request: Request, reason: str | None):
        message = BLOCKED_MESSAGES.get(reason or "", BLOCKED_MESSAGES["failed_logins"])
        return error_json(request, 403, ErrorCodes.FORBIDDEN, message)

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        ip = get_client_ip(request)
        if ip is None:
            return await call_next(request)

        if self._ip_blocker.is_blocked(ip):
            return self._blocked(request, self._ip_blocker.block_reason(ip))

        if self._ip_blocker.track_request(ip):
            if self._security_logger:
                self._security_logger.log(
                    SecurityEvent.IP_BLOCKED,
                    ip_address=ip,
                    details={"reason": "suspicious_activity"},
                )
            return self._blocked(request, "suspicious_activity")

        return await call_next(request)


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that deserializes the access-token cookie into a user.

    For protected routes:
    1. Extracts the access token from the 'access_token' cookie
    2. Verifies it and loads the session and live user via AuthService
    3. Sets the user in request.state.user

    Every failure after the cookie check gets the same 401 message; the
    cause is only logged. Public paths bypass authentication entirely.
    """

    PUBLIC_PATHS = [
        "/api/auth/register",
        "/api/auth/login",
        "/api/auth/verify-2fa",
        "/api/auth/csrf-token",
        "/api/auth/refresh",
        "/api/auth/verifyemail/",
        "/api/api-keys/verify",
        "/api/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(self, app, auth_service: AuthService):
        super().__init__(app)
        self._auth_service = auth_service

    def _is_public_path(self, path: str) -> bool:
        """Check if path is in public paths list."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path):
                return True
        return False

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        path = request.url.path

        # Skip auth for public paths
        if self._is_public_path(path):
            return await call_next(request)

        access_token = request.cookies.get(ACCESS_TOKEN_COOKIE)

        if not access_token:
            return error_json(request, 401, ErrorCodes.UNAUTHORIZED, "You are not logged in")

        try:
            user = self._auth_service.authenticate_access_token(access_token)
        except UnauthorizedError as e:
            logger.info(f"Access token rejected on {path}: {e.message}")
            return error_json(request, 401, ErrorCodes.UNAUTHORIZED, "Invalid token or session has expired")

        request.state.user = user
        return await call_next(request)
