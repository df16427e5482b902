"""Authentication and authorization modules."""

from auth.exceptions import (
    AuthError,
    BadRequestError,
    UnauthorizedError,
    InvalidTokenError,
    SessionExpiredError,
    ForbiddenError,
    NotFoundError,
    ConflictError,
    RateLimitedError,
    InternalServerError,
    DuplicateKeyError,
)
from auth.types import (
    Role,
    User,
    PublicUser,
    SessionRecord,
    ApiKey,
    LoginResult,
    RegistrationResult,
    TokenPair,
    TwoFactorSetup,
    UserPage,
)
from auth.config import AuthConfig, RateLimitRule, TokenKeys
from auth.database import AuthDatabase, ApiKeyDatabase
from auth.tokens import KeyRole, TokenCodec
from auth.passwords import PasswordHasher
from auth.rate_limiter import RateLimiter
from auth.ip_blocking import IpBlocker
from auth.csrf import CsrfProtector
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.session import SessionManager
from auth.two_factor import TwoFactorService
from auth.api_keys import ApiKeyService, ApiKeyAuth
from auth.service import AuthService
from auth.dependencies import CsrfProtect, RateLimit, RequireRole, require_user
from auth.security_middleware import AuthMiddleware, IpBlockingMiddleware
from auth.api import create_auth_router, create_user_router, create_api_keys_router, create_admin_router
