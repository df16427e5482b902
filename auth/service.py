"""Authentication service - orchestrates registration, login and token flows."""

import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict
from uuid import UUID

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.exceptions import (
    BadRequestError,
    ConflictError,
    DuplicateKeyError,
    ForbiddenError,
    InvalidTokenError,
    NotFoundError,
    SessionExpiredError,
    UnauthorizedError,
)
from auth.passwords import PasswordHasher
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.session import SessionManager
from auth.tokens import KeyRole, TokenCodec
from auth.two_factor import TwoFactorService
from auth.types import LoginResult, RegisterRequest, RegistrationResult, TokenPair, User
from clients.email_client import EmailGatewayClient, EmailGatewayError

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
NOT_VERIFIED = "You are not verified"
REFRESH_FAILED = "Could not refresh access token"
EMAIL_SEND_FAILED = "Could not send verification email; please try again."
REGISTERED = "Registration successful! Check your email."

# "typ" claim of the login challenge token; access tokens carry none
TWO_FACTOR_TOKEN_TYPE = "2fa"


def hash_verification_code(raw_code: str) -> str:
    return hashlib.sha256(raw_code.encode("utf-8")).hexdigest()


def _subject(claims: Dict[str, Any] | None) -> UUID | None:
    """User ID from the "sub" claim, or None if absent or not a UUID."""
    if claims is None:
        return None
    try:
        return UUID(claims["sub"])
    except (KeyError, ValueError):
        return None


class AuthService:
    """Orchestrates password authentication.

    Handles:
    - Registration with email verification
    - Login, with a two-factor challenge step when enabled
    - Access token refresh gated by the session record
    - Logout (session revocation)
    """

    def __init__(
        self,
        config: AuthConfig,
        auth_db: AuthDatabase,
        session_manager: SessionManager,
        token_codec: TokenCodec,
        password_hasher: PasswordHasher,
        two_factor: TwoFactorService,
        email_client: EmailGatewayClient,
        security_logger: SecurityLogger,
    ):
        self._config = config
        self._auth_db = auth_db
        self._session_manager = session_manager
        self._token_codec = token_codec
        self._password_hasher = password_hasher
        self._two_factor = two_factor
        self._email_client = email_client
        self._security_logger = security_logger

    def register_user(
        self,
        request: RegisterRequest,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RegistrationResult:
        """Create an unverified user and email the verification link.

        Flow:
        1. Generate raw code, store only its SHA-256
        2. Insert user (duplicate email reported by the database)
        3. Send email with the raw code in the link
        4. On send failure clear the stored code so it can never be used

        Returns:
            RegistrationResult with email_sent=False if the email could not be sent.

        Raises:
            ConflictError: Email already registered.
        """
        raw_code = secrets.token_hex(32)
        password_hash = self._password_hasher.hash(request.password)

        try:
            user = self._auth_db.create_user(
                name=request.name,
                email=request.email.lower(),
                password_hash=password_hash,
                verification_code=hash_verification_code(raw_code),
            )
        except DuplicateKeyError:
            raise ConflictError("User with that email already exists")

        self._security_logger.log(
            SecurityEvent.USER_REGISTERED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        verify_url = f"{self._config.origin}/verifyemail/{raw_code}"
        try:
            self._email_client.send_verification_email(user.email, user.name, verify_url)
        except EmailGatewayError as e:
            logger.error(f"Verification email to user {user.id} failed: {e}")
            self._auth_db.update_user(user.id, {"verification_code": None})
            self._security_logger.log(
                SecurityEvent.VERIFICATION_EMAIL_FAILED,
                email=user.email,
                user_id=user.id,
                ip_address=ip_address,
            )
            return RegistrationResult(user_id=user.id, email_sent=False, message=EMAIL_SEND_FAILED)

        return RegistrationResult(user_id=user.id, email_sent=True, message=REGISTERED)

    def login_user(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        """Check credentials and either complete login or issue a 2FA challenge.

        Raises:
            BadRequestError: Unknown email, wrong password (same message) or unverified user.
        """
        email = email.lower().strip()
        user = self._auth_db.get_user_by_email(email)

        if user is None:
            self._password_hasher.burn(password)
            self._log_login_failure(email, None, ip_address, user_agent, "user_not_found")
            raise BadRequestError(INVALID_CREDENTIALS)

        if not user.verified:
            self._log_login_failure(email, user.id, ip_address, user_agent, "not_verified")
            raise BadRequestError(NOT_VERIFIED)

        if not self._password_hasher.compare(password, user.password):
            self._log_login_failure(email, user.id, ip_address, user_agent, "wrong_password")
            raise BadRequestError(INVALID_CREDENTIALS)

        if user.two_factor_enabled:
            token = self._token_codec.sign(
                {"sub": str(user.id), "typ": TWO_FACTOR_TOKEN_TYPE},
                KeyRole.ACCESS,
                timedelta(minutes=self._config.two_factor_token_expires_minutes),
            )
            self._security_logger.log(
                SecurityEvent.TWO_FACTOR_CHALLENGE_ISSUED,
                email=user.email,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return LoginResult(requires_two_factor=True, two_factor_token=token)

        return self._complete_login(user, ip_address, user_agent)

    def verify_two_factor_login(
        self,
        two_factor_token: str,
        code: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        """Finish a 2FA-gated login. The only path that creates its session.

        Raises:
            InvalidTokenError: Challenge token invalid or expired.
            NotFoundError: User no longer exists.
            UnauthorizedError: Wrong code.
        """
        claims = self._token_codec.verify(two_factor_token, KeyRole.ACCESS)
        user_id = _subject(claims)
        if user_id is None or claims.get("typ") != TWO_FACTOR_TOKEN_TYPE:
            raise InvalidTokenError("Invalid or expired token")

        user = self._auth_db.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")

        if not self._two_factor.verify(user.id, code):
            self._security_logger.log(
                SecurityEvent.TWO_FACTOR_FAILED,
                email=user.email,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise UnauthorizedError("Invalid verification code")

        return self._complete_login(user, ip_address, user_agent)

    def _complete_login(self, user: User, ip_address: str | None, user_agent: str | None) -> LoginResult:
        """Create the session and sign access and refresh tokens."""
        self._session_manager.create_session(user)
        tokens = self._sign_tokens(user.id)

        self._security_logger.log(
            SecurityEvent.LOGIN_SUCCEEDED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return LoginResult(user=user.public(), tokens=tokens)

    def _sign_tokens(self, user_id: UUID) -> TokenPair:
        payload = {"sub": str(user_id)}
        return TokenPair(
            access_token=self._token_codec.sign(
                payload,
                KeyRole.ACCESS,
                timedelta(minutes=self._config.access_token_expires_minutes),
            ),
            refresh_token=self._token_codec.sign(
                payload,
                KeyRole.REFRESH,
                timedelta(minutes=self._config.refresh_token_expires_minutes),
            ),
        )

    def _log_login_failure(
        self,
        email: str,
        user_id: UUID | None,
        ip_address: str | None,
        user_agent: str | None,
        reason: str,
    ) -> None:
        self._security_logger.log(
            SecurityEvent.LOGIN_FAILED,
            email=email,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"reason": reason},
        )

    def logout_user(self, user_id: UUID, ip_address: str | None = None) -> bool:
        """Delete the user's session. Idempotent."""
        self._session_manager.revoke_session(user_id)
        self._security_logger.log(
            SecurityEvent.SESSION_REVOKED,
            user_id=user_id,
            ip_address=ip_address,
        )
        return True

    def refresh_access_token(self, refresh_token: str | None, ip_address: str | None = None) -> str:
        """Sign a new access token if the refresh token and its session are live.

        Every failure raises the same ForbiddenError; the cause is only logged.
        """
        if not refresh_token:
            raise ForbiddenError(REFRESH_FAILED)

        user_id = _subject(self._token_codec.verify(refresh_token, KeyRole.REFRESH))
        if user_id is None:
            raise self._refresh_denied(None, ip_address, "invalid_token")

        session = self._session_manager.get_session(user_id)
        if session is None:
            raise self._refresh_denied(user_id, ip_address, "no_session")

        user = self._auth_db.get_user_by_id(session.id)
        if user is None:
            raise self._refresh_denied(user_id, ip_address, "user_missing")

        return self._token_codec.sign(
            {"sub": str(user.id)},
            KeyRole.ACCESS,
            timedelta(minutes=self._config.access_token_expires_minutes),
        )

    def _refresh_denied(self, user_id: UUID | None, ip_address: str | None, reason: str) -> ForbiddenError:
        logger.info(f"Refresh denied ({reason}) for user {user_id}")
        self._security_logger.log(
            SecurityEvent.TOKEN_REFRESH_FAILED,
            user_id=user_id,
            ip_address=ip_address,
            details={"reason": reason},
        )
        return ForbiddenError(REFRESH_FAILED)

    def verify_email(self, raw_code: str, ip_address: str | None = None) -> bool:
        """Mark the user holding this code verified. Codes are single-use.

        Raises:
            UnauthorizedError: No user holds this code.
        """
        user = self._auth_db.get_user_by_verification_code(hash_verification_code(raw_code))
        if user is None:
            self._security_logger.log(SecurityEvent.EMAIL_VERIFICATION_FAILED, ip_address=ip_address)
            raise UnauthorizedError("Could not verify email")

        user.verified = True
        user.verification_code = None
        self._auth_db.save_user(user)

        self._security_logger.log(
            SecurityEvent.EMAIL_VERIFIED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
        )
        return True

    def authenticate_access_token(self, access_token: str) -> User:
        """Resolve an access token to the live user behind it.

        Raises:
            InvalidTokenError: Token invalid, expired or not an access token.
            SessionExpiredError: Session record gone or user no longer exists.
        """
        claims = self._token_codec.verify(access_token, KeyRole.ACCESS)
        user_id = _subject(claims)
        if user_id is None or claims.get("typ") is not None:
            raise InvalidTokenError()

        session = self._session_manager.get_session(user_id)
        if session is None:
            raise SessionExpiredError()

        user = self._auth_db.get_user_by_id(session.id)
        if user is None:
            raise SessionExpiredError()

        return user
