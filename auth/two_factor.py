"""TOTP two-factor authentication.

Per-user state lives on the user row:
    DISABLED       secret None, enabled False
    PENDING_SETUP  secret set,  enabled False (generate_secret)
    ENABLED        secret set,  enabled True  (verify_and_enable)
disable() returns to DISABLED from any state.
"""

import base64
import io
import logging
from uuid import UUID

import pyotp
import qrcode

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.exceptions import BadRequestError, NotFoundError, UnauthorizedError
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.types import TwoFactorSetup, User

logger = logging.getLogger(__name__)

# Accept the previous and next 30s step as well as the current one
VALID_WINDOW = 1


def _qr_data_uri(content: str) -> str:
    image = qrcode.make(content)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


class TwoFactorService:
    """Generate, enable, verify and disable TOTP for a user."""

    def __init__(self, db: AuthDatabase, config: AuthConfig, security_logger: SecurityLogger):
        self._db = db
        self._config = config
        self._security_logger = security_logger

    def _get_user(self, user_id: UUID) -> User:
        user = self._db.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def generate_secret(self, user_id: UUID) -> TwoFactorSetup:
        """Start setup. Replaces any pending secret and leaves 2FA disabled."""
        user = self._get_user(user_id)

        secret = pyotp.random_base32()
        uri = pyotp.TOTP(secret).provisioning_uri(name=user.email, issuer_name=self._config.app_name)

        user.two_factor_enabled = False
        user.two_factor_secret = secret
        self._db.save_user(user)

        logger.info(f"2FA setup started for user {user_id}")
        return TwoFactorSetup(secret=secret, qr_code=_qr_data_uri(uri))

    def verify_and_enable(self, user_id: UUID, token: str) -> bool:
        """Confirm the pending secret with a code and turn 2FA on.

        Raises:
            BadRequestError: No secret has been generated.
            UnauthorizedError: Code doesn't match. The secret is kept for retry.
        """
        user = self._get_user(user_id)
        if not user.two_factor_secret:
            raise BadRequestError("Two-factor authentication not set up")

        if not pyotp.TOTP(user.two_factor_secret).verify(token, valid_window=VALID_WINDOW):
            self._security_logger.log(SecurityEvent.TWO_FACTOR_FAILED, email=user.email, user_id=user.id)
            raise UnauthorizedError("Invalid verification code")

        user.two_factor_enabled = True
        self._db.save_user(user)

        self._security_logger.log(SecurityEvent.TWO_FACTOR_ENABLED, email=user.email, user_id=user.id)
        logger.info(f"2FA enabled for user {user_id}")
        return True

    def verify(self, user_id: UUID, token: str) -> bool:
        """Check a code for a user with 2FA on. A wrong code returns False.

        Raises:
            BadRequestError: 2FA is not enabled for this user.
        """
        user = self._get_user(user_id)
        if not user.two_factor_enabled or not user.two_factor_secret:
            raise BadRequestError("Two-factor authentication not enabled")

        return pyotp.TOTP(user.two_factor_secret).verify(token, valid_window=VALID_WINDOW)

    def disable(self, user_id: UUID) -> bool:
        """Clear the secret and turn 2FA off. Idempotent."""
        user = self._get_user(user_id)
        if not user.two_factor_enabled and user.two_factor_secret is None:
            return True

        user.two_factor_enabled = False
        user.two_factor_secret = None
        self._db.save_user(user)

        self._security_logger.log(SecurityEvent.TWO_FACTOR_DISABLED, email=user.email, user_id=user.id)
        logger.info(f"2FA disabled for user {user_id}")
        return True
