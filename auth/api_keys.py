"""Long-lived API keys, hashed at rest.

The plaintext key is returned once by create_api_key and never stored.
"""

import hashlib
import logging
import secrets
from typing import List
from uuid import UUID

from fastapi import Request

from auth.database import ApiKeyDatabase, AuthDatabase
from auth.exceptions import ForbiddenError, NotFoundError, UnauthorizedError
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.types import (
    ApiKeyInfo,
    ApiKeyOwner,
    ApiKeySummary,
    ApiKeyValidation,
    CreatedApiKey,
)

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


class ApiKeyService:
    """Create, validate, list and revoke API keys."""

    def __init__(self, keys: ApiKeyDatabase, users: AuthDatabase, security_logger: SecurityLogger):
        self._keys = keys
        self._users = users
        self._security_logger = security_logger

    def create_api_key(self, user_id: UUID, name: str, scopes: List[str] | None = None) -> CreatedApiKey:
        user = self._users.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")

        raw_key = secrets.token_hex(32)
        api_key = self._keys.create_api_key(user_id, name, hash_api_key(raw_key), scopes or [])

        self._security_logger.log(
            SecurityEvent.API_KEY_CREATED,
            email=user.email,
            user_id=user_id,
            details={"api_key_id": str(api_key.id), "prefix": raw_key[:8]},
        )
        logger.info(f"API key {raw_key[:8]}... created for user {user_id}")

        return CreatedApiKey(
            id=api_key.id,
            name=api_key.name,
            key=raw_key,
            scopes=api_key.scopes,
            created_at=api_key.created_at,
        )

    def validate_api_key(self, raw_key: str) -> ApiKeyValidation:
        api_key = self._keys.get_active_api_key_by_hash(hash_api_key(raw_key))
        if api_key is None:
            logger.info(f"Rejected API key {raw_key[:8]}...")
            raise UnauthorizedError("Invalid API key")

        user = self._users.get_user_by_id(api_key.user_id)
        if user is None:
            logger.warning(f"API key {api_key.id} belongs to missing user {api_key.user_id}")
            raise UnauthorizedError("User not found for API key")

        return ApiKeyValidation(
            api_key=ApiKeySummary(id=api_key.id, name=api_key.name, scopes=api_key.scopes),
            user=ApiKeyOwner(id=user.id, name=user.name, email=user.email, role=user.role),
        )

    def revoke_api_key(self, key_id: UUID, user_id: UUID) -> bool:
        """Revoke a key owned by user_id. Admins can't revoke other users' keys."""
        api_key = self._keys.get_api_key_by_id(key_id)
        if api_key is None:
            raise NotFoundError("API key not found")

        if api_key.user_id != user_id:
            raise ForbiddenError("You do not have permission to revoke this API key")

        self._keys.revoke_api_key(key_id)
        self._security_logger.log(
            SecurityEvent.API_KEY_REVOKED,
            user_id=user_id,
            details={"api_key_id": str(key_id)},
        )
        return True

    def list_api_keys(self, user_id: UUID) -> List[ApiKeyInfo]:
        return [
            ApiKeyInfo(
                id=key.id,
                name=key.name,
                scopes=key.scopes,
                revoked=key.revoked,
                created_at=key.created_at,
            )
            for key in self._keys.list_active_api_keys(user_id)
        ]


class ApiKeyAuth:
    """Dependency authenticating a request by its X-API-Key header.

    With required_scopes, the key must also carry every listed scope.
    The validation result is stored on request.state.api_key.
    """

    def __init__(self, service: ApiKeyService, required_scopes: List[str] | None = None):
        self._service = service
        self._required_scopes = list(required_scopes or [])

    def __call__(self, request: Request) -> ApiKeyValidation:
        raw_key = request.headers.get(API_KEY_HEADER)
        if not raw_key:
            raise UnauthorizedError("API key is required")

        result = self._service.validate_api_key(raw_key)

        missing = [scope for scope in self._required_scopes if scope not in result.api_key.scopes]
        if missing:
            logger.info(f"API key {result.api_key.id} missing scopes: {', '.join(missing)}")
            raise ForbiddenError("API key does not have required scopes")

        request.state.api_key = result
        return result
