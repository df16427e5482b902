"""RS256 JWT signing and verification.

Key material arrives base64-encoded (one PEM per role) so it can live in a
single Vault field. verify() never raises: any failure decodes to None.
"""

import base64
import logging
from datetime import timedelta
from enum import Enum
from typing import Any, Dict

import jwt

from auth.config import TokenKeys
from auth.exceptions import InternalServerError
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

ALGORITHM = "RS256"


class KeyRole(Enum):
    ACCESS = "access"
    REFRESH = "refresh"


def _decode_pem(value: str) -> bytes:
    return base64.b64decode(value)


class TokenCodec:
    """Sign and verify JWTs with the key pair selected by KeyRole."""

    def __init__(self, keys: TokenKeys):
        self._private = {
            KeyRole.ACCESS: _decode_pem(keys.access_private_key),
            KeyRole.REFRESH: _decode_pem(keys.refresh_private_key),
        }
        self._public = {
            KeyRole.ACCESS: _decode_pem(keys.access_public_key),
            KeyRole.REFRESH: _decode_pem(keys.refresh_public_key),
        }

    def sign(self, payload: Dict[str, Any], role: KeyRole, expires_in: timedelta) -> str:
        """Sign payload (must contain "sub") with the role's private key.

        Raises:
            InternalServerError: The role's private key is unusable.
        """
        now = now_utc()
        claims = {**payload, "iat": now, "exp": now + expires_in}
        try:
            return jwt.encode(claims, self._private[role], algorithm=ALGORITHM)
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            logger.error(f"Could not sign {role.value} token: {e}")
            raise InternalServerError("Could not issue token") from e

    def verify(self, token: str, role: KeyRole) -> Dict[str, Any] | None:
        """Return decoded claims, or None if expired, malformed or mis-signed."""
        try:
            claims = jwt.decode(
                token,
                self._public[role],
                algorithms=[ALGORITHM],
                options={"require": ["exp", "sub"]},
            )
        except jwt.PyJWTError as e:
            logger.debug(f"{role.value} token rejected: {e}")
            return None

        if not isinstance(claims.get("sub"), str):
            return None
        return claims
