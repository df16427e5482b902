"""FastAPI application factory.

Builds every auth component from explicitly passed clients so tests can
hand in fakes and main.py can hand in Vault-configured ones.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

import redis
from fastapi import APIRouter, Depends, FastAPI, Request

from api.base import success_response, error_json, request_id_of, ErrorCodes
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from auth.api import create_admin_router, create_api_keys_router, create_auth_router, create_user_router
from auth.api_keys import ApiKeyService
from auth.config import AuthConfig, TokenKeys
from auth.csrf import CsrfProtector
from auth.database import ApiKeyDatabase, AuthDatabase
from auth.dependencies import RateLimit
from auth.ip_blocking import IpBlocker
from auth.passwords import PasswordHasher
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger
from auth.security_middleware import AuthMiddleware, IpBlockingMiddleware
from auth.service import AuthService
from auth.session import SessionManager
from auth.tokens import TokenCodec
from auth.two_factor import TwoFactorService
from clients.email_client import EmailGatewayClient
from clients.valkey_client import ValkeyClient, ValkeySupervisor

logger = logging.getLogger(__name__)


def create_health_router(valkey: ValkeyClient) -> APIRouter:
    """Create router exposing the store health check."""
    router = APIRouter(prefix="/api", tags=["health"])

    @router.get("/health")
    def health(request: Request):
        try:
            valkey.ping()
        except redis.RedisError as e:
            logger.error(f"Health check failed: {e}")
            return error_json(request, 503, ErrorCodes.SERVICE_UNAVAILABLE, "Session store unavailable")
        return success_response({"status": "ok"}, request_id=request_id_of(request))

    return router


def create_app(
    config: AuthConfig,
    valkey: ValkeyClient,
    auth_db: AuthDatabase,
    api_key_db: ApiKeyDatabase,
    email_client: EmailGatewayClient,
    security_logger: SecurityLogger,
    token_keys: TokenKeys,
    csrf_secret: str,
    supervisor: ValkeySupervisor | None = None,
) -> FastAPI:
    """Wire services, middleware and routers into a FastAPI app."""
    session_manager = SessionManager(valkey, config)
    token_codec = TokenCodec(token_keys)
    password_hasher = PasswordHasher(config.bcrypt_rounds)
    two_factor = TwoFactorService(auth_db, config, security_logger)
    auth_service = AuthService(
        config=config,
        auth_db=auth_db,
        session_manager=session_manager,
        token_codec=token_codec,
        password_hasher=password_hasher,
        two_factor=two_factor,
        email_client=email_client,
        security_logger=security_logger,
    )
    api_key_service = ApiKeyService(api_key_db, auth_db, security_logger)
    ip_blocker = IpBlocker(valkey, config)
    csrf_protector = CsrfProtector(csrf_secret)

    auth_rate_limit = RateLimit(
        RateLimiter(
            valkey,
            "auth",
            config.auth_rate_limit,
            message="Too many authentication attempts, please try again later.",
        )
    )
    email_rate_limit = RateLimit(
        RateLimiter(
            valkey,
            "verify_email",
            config.email_verification_rate_limit,
            message="Too many verification attempts, please try again later.",
        )
    )
    api_rate_limit = RateLimit(RateLimiter(valkey, "api", config.api_rate_limit))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        """Start the store supervisor; cancel it on shutdown."""
        task = asyncio.create_task(supervisor.run()) if supervisor else None
        logger.info("Auth API started")

        yield

        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Auth API stopped")

    app = FastAPI(
        title="Flashcards Auth API",
        lifespan=lifespan,
        dependencies=[Depends(api_rate_limit)],
    )

    # Middleware runs in reverse order of registration:
    # RequestID -> IP blocking -> access-token deserialization
    app.add_middleware(AuthMiddleware, auth_service=auth_service)
    app.add_middleware(IpBlockingMiddleware, ip_blocker=ip_blocker, security_logger=security_logger)
    app.add_middleware(RequestIDMiddleware)

    register_error_handlers(app, config)

    app.include_router(create_health_router(valkey))
    app.include_router(
        create_auth_router(
            auth_service,
            ip_blocker,
            csrf_protector,
            config,
            auth_rate_limit,
            email_rate_limit,
            security_logger,
        )
    )
    app.include_router(create_user_router(two_factor))
    app.include_router(create_api_keys_router(api_key_service, csrf_protector))
    app.include_router(create_admin_router(auth_db))

    return app
