"""HTTP routes for authentication, two-factor setup and API keys.

Handlers are plain functions: services block on bcrypt, Valkey and
PostgreSQL, so FastAPI runs them in its threadpool.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse

from api.base import success_response, error_json, request_id_of, ErrorCodes
from auth.api_keys import ApiKeyAuth, ApiKeyService
from auth.config import AuthConfig
from auth.csrf import CSRF_COOKIE, CSRF_HEADER, CsrfProtector
from auth.database import AuthDatabase
from auth.dependencies import CsrfProtect, RateLimit, RequireRole, require_user
from auth.exceptions import BadRequestError, UnauthorizedError
from auth.ip_blocking import IpBlocker
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.service import AuthService
from auth.two_factor import TwoFactorService
from auth.types import (
    ApiKeyValidation,
    CreateApiKeyRequest,
    LoginRequest,
    LoginResult,
    RegisterRequest,
    Role,
    TwoFactorCodeRequest,
    User,
    UserPage,
    VerifyTwoFactorLoginRequest,
)
from utils.client_ip import get_client_ip

ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"
LOGGED_IN_COOKIE = "logged_in"

USER_PAGE_DEFAULT_TAKE = 10
USER_PAGE_MAX_TAKE = 100


def _set_token_cookies(
    response: Response,
    config: AuthConfig,
    access_token: str,
    refresh_token: str | None = None,
) -> None:
    """Set httpOnly token cookies plus the readable logged_in flag."""
    access_max_age = config.access_token_expires_minutes * 60

    response.set_cookie(
        key=ACCESS_TOKEN_COOKIE,
        value=access_token,
        httponly=True,
        secure=config.cookie_secure,
        samesite="lax",
        max_age=access_max_age,
    )
    if refresh_token is not None:
        response.set_cookie(
            key=REFRESH_TOKEN_COOKIE,
            value=refresh_token,
            httponly=True,
            secure=config.cookie_secure,
            samesite="lax",
            max_age=config.refresh_token_expires_minutes * 60,
        )
    response.set_cookie(
        key=LOGGED_IN_COOKIE,
        value="true",
        httponly=False,
        secure=config.cookie_secure,
        samesite="lax",
        max_age=access_max_age,
    )


def _clear_token_cookies(response: Response, config: AuthConfig) -> None:
    for key in (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, LOGGED_IN_COOKIE):
        response.delete_cookie(key=key, secure=config.cookie_secure, samesite="lax")


def create_auth_router(
    auth_service: AuthService,
    ip_blocker: IpBlocker,
    csrf_protector: CsrfProtector,
    config: AuthConfig,
    auth_rate_limit: RateLimit,
    email_rate_limit: RateLimit,
    security_logger: SecurityLogger,
) -> APIRouter:
    """Create auth router with injected services."""
    router = APIRouter(prefix="/api/auth", tags=["auth"])
    csrf_protect = CsrfProtect(csrf_protector)

    def _record_failed_login(ip_address: str | None) -> None:
        if ip_address and ip_blocker.record_failed_login(ip_address):
            security_logger.log(
                SecurityEvent.IP_BLOCKED,
                ip_address=ip_address,
                details={"reason": "failed_logins"},
            )

    def _login_response(request: Request, response: Response, result: LoginResult, ip_address: str | None):
        if result.requires_two_factor:
            return success_response(
                {"requires_two_factor": True, "two_factor_token": result.two_factor_token},
                request_id=request_id_of(request),
            )

        if ip_address:
            ip_blocker.reset_failed_logins(ip_address)
        _set_token_cookies(response, config, result.tokens.access_token, result.tokens.refresh_token)
        return success_response(
            {
                "user": result.user.model_dump(mode="json"),
                "access_token": result.tokens.access_token,
                "refresh_token": result.tokens.refresh_token,
            },
            request_id=request_id_of(request),
        )

    @router.post("/register", dependencies=[Depends(auth_rate_limit), Depends(csrf_protect)])
    def register(request: Request, body: RegisterRequest):
        """Register a user and send the verification email.

        Returns:
            - 201 with a "check your email" message
            - 500 EMAIL_SEND_FAILED if the user was created but the email failed
        """
        result = auth_service.register_user(
            body,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )

        if not result.email_sent:
            return error_json(request, 500, ErrorCodes.EMAIL_SEND_FAILED, result.message)

        return JSONResponse(
            status_code=status.HTTP_201_CREATED,
            content=success_response(
                {"message": result.message},
                request_id=request_id_of(request),
            ).model_dump(mode="json"),
        )

    @router.post("/login", dependencies=[Depends(auth_rate_limit)])
    def login(request: Request, response: Response, body: LoginRequest):
        """Log in with email and password.

        Returns either the user with tokens (cookies set) or a two-factor
        challenge token with no cookies.
        """
        ip_address = get_client_ip(request)

        try:
            result = auth_service.login_user(
                email=body.email,
                password=body.password,
                ip_address=ip_address,
                user_agent=request.headers.get("User-Agent"),
            )
        except BadRequestError:
            _record_failed_login(ip_address)
            raise

        return _login_response(request, response, result, ip_address)

    @router.post("/verify-2fa", dependencies=[Depends(auth_rate_limit)])
    def verify_two_factor(request: Request, response: Response, body: VerifyTwoFactorLoginRequest):
        """Complete a login that required two-factor authentication."""
        ip_address = get_client_ip(request)

        try:
            result = auth_service.verify_two_factor_login(
                two_factor_token=body.two_factor_token,
                code=body.code,
                ip_address=ip_address,
                user_agent=request.headers.get("User-Agent"),
            )
        except UnauthorizedError:
            _record_failed_login(ip_address)
            raise

        return _login_response(request, response, result, ip_address)

    @router.api_route("/logout", methods=["GET", "POST"], dependencies=[Depends(csrf_protect)])
    def logout(request: Request, response: Response, user: User = Depends(require_user)):
        """Logout - delete the session and clear token cookies."""
        auth_service.logout_user(user.id, ip_address=get_client_ip(request))
        _clear_token_cookies(response, config)
        return success_response({"message": "Logged out successfully"}, request_id=request_id_of(request))

    @router.get("/csrf-token")
    def csrf_token(request: Request, response: Response):
        """Issue a CSRF cookie and return the matching token."""
        token, cookie_value = csrf_protector.issue()

        response.set_cookie(
            key=CSRF_COOKIE,
            value=cookie_value,
            httponly=True,
            secure=config.cookie_secure,
            samesite="lax",
        )
        response.headers[CSRF_HEADER] = token
        response.headers["Cache-Control"] = "no-store"

        return success_response({"csrf_token": token}, request_id=request_id_of(request))

    @router.get("/refresh")
    def refresh(request: Request, response: Response):
        """Issue a new access token from the refresh_token cookie."""
        access_token = auth_service.refresh_access_token(
            request.cookies.get(REFRESH_TOKEN_COOKIE),
            ip_address=get_client_ip(request),
        )
        _set_token_cookies(response, config, access_token)
        return success_response({"access_token": access_token}, request_id=request_id_of(request))

    @router.get("/verifyemail/{code}", dependencies=[Depends(email_rate_limit)])
    def verify_email(request: Request, code: str):
        """Verify email with the code from the registration email."""
        auth_service.verify_email(code, ip_address=get_client_ip(request))
        return success_response({"message": "Email verified successfully"}, request_id=request_id_of(request))

    return router


def create_user_router(two_factor: TwoFactorService) -> APIRouter:
    """Create router for the current user and two-factor management."""
    router = APIRouter(prefix="/api/user", tags=["user"])

    @router.get("/me")
    @router.get("/profile")
    def get_me(request: Request, user: User = Depends(require_user)):
        """Get current authenticated user."""
        return success_response(user.public().model_dump(mode="json"), request_id=request_id_of(request))

    @router.post("/2fa/setup")
    def setup_two_factor(request: Request, user: User = Depends(require_user)):
        """Generate a new secret and QR code. 2FA stays off until /2fa/verify."""
        setup = two_factor.generate_secret(user.id)
        return success_response(setup.model_dump(mode="json"), request_id=request_id_of(request))

    @router.post("/2fa/verify")
    def verify_two_factor_setup(request: Request, body: TwoFactorCodeRequest, user: User = Depends(require_user)):
        """Confirm the pending secret and enable 2FA."""
        two_factor.verify_and_enable(user.id, body.token)
        return success_response({"success": True}, request_id=request_id_of(request))

    @router.post("/2fa/validate")
    def validate_two_factor(request: Request, body: TwoFactorCodeRequest, user: User = Depends(require_user)):
        """Check a code against the enabled secret."""
        verified = two_factor.verify(user.id, body.token)
        return success_response({"verified": verified}, request_id=request_id_of(request))

    @router.post("/2fa/disable")
    def disable_two_factor(request: Request, user: User = Depends(require_user)):
        """Turn 2FA off and clear the secret."""
        two_factor.disable(user.id)
        return success_response({"success": True}, request_id=request_id_of(request))

    return router


def create_api_keys_router(api_key_service: ApiKeyService, csrf_protector: CsrfProtector) -> APIRouter:
    """Create router for API key management and API-key authentication."""
    router = APIRouter(prefix="/api/api-keys", tags=["api-keys"])
    csrf_protect = CsrfProtect(csrf_protector)
    api_key_auth = ApiKeyAuth(api_key_service)

    @router.post("", dependencies=[Depends(csrf_protect)])
    def create_api_key(request: Request, body: CreateApiKeyRequest, user: User = Depends(require_user)):
        """Create an API key. The plaintext key is only ever returned here."""
        created = api_key_service.create_api_key(user.id, body.name, body.scopes)
        return JSONResponse(
            status_code=status.HTTP_201_CREATED,
            content=success_response(
                created.model_dump(mode="json"),
                request_id=request_id_of(request),
            ).model_dump(mode="json"),
        )

    @router.get("")
    def list_api_keys(request: Request, user: User = Depends(require_user)):
        """List the caller's active API keys (no key material)."""
        keys = api_key_service.list_api_keys(user.id)
        return success_response([key.model_dump(mode="json") for key in keys], request_id=request_id_of(request))

    @router.get("/verify")
    def verify_api_key(request: Request, result: ApiKeyValidation = Depends(api_key_auth)):
        """Authenticate with the X-API-Key header and echo the key's owner and scopes."""
        return success_response(result.model_dump(mode="json"), request_id=request_id_of(request))

    @router.delete("/{key_id}", dependencies=[Depends(csrf_protect)])
    def revoke_api_key(request: Request, key_id: UUID, user: User = Depends(require_user)):
        """Revoke one of the caller's API keys."""
        api_key_service.revoke_api_key(key_id, user.id)
        return success_response({"success": True}, request_id=request_id_of(request))

    return router


def create_admin_router(auth_db: AuthDatabase) -> APIRouter:
    """Create router for admin-only user management."""
    router = APIRouter(
        prefix="/api/admin",
        tags=["admin"],
        dependencies=[Depends(RequireRole(Role.ADMIN))],
    )

    @router.get("/users")
    def list_users(
        request: Request,
        skip: int = Query(0, ge=0),
        take: int = Query(USER_PAGE_DEFAULT_TAKE, ge=1),
        search: str | None = None,
    ):
        """Page through users. take is capped at USER_PAGE_MAX_TAKE."""
        take = min(take, USER_PAGE_MAX_TAKE)
        search = search.strip() if search else None
        users, total = auth_db.list_users(skip=skip, take=take, search=search or "")
        page = UserPage(
            users=[user.public() for user in users],
            skip=skip,
            take=take,
            total=total,
            search=search or None,
        )
        return success_response(page.model_dump(mode="json"), request_id=request_id_of(request))

    return router
