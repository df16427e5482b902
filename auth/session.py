"""Session record lifecycle.

One record per user, keyed by user ID, holding a user snapshot with no
credentials. Its presence gates refresh tokens and access-token
deserialization, so deleting it revokes every outstanding token for the user.
"""

import logging
from uuid import UUID

from pydantic import ValidationError

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.types import SessionRecord, User

logger = logging.getLogger(__name__)


class SessionManager:
    """Session records stored in Valkey with TTL session_expires_minutes."""

    KEY_PREFIX = "session:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config

    def _key(self, user_id: UUID | str) -> str:
        """Generate Valkey key for a user's session."""
        return f"{self.KEY_PREFIX}{user_id}"

    def create_session(self, user: User) -> SessionRecord:
        """Write (or overwrite) the session record for user."""
        record = SessionRecord(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            created_at=user.created_at,
        )
        self._valkey.set_json(
            self._key(user.id),
            record.model_dump(mode="json"),
            expire_seconds=self._config.session_expires_minutes * 60,
        )
        return record

    def get_session(self, user_id: UUID | str) -> SessionRecord | None:
        """Return the live session record, or None if absent or unreadable."""
        key = self._key(user_id)
        try:
            data = self._valkey.get_json(key)
        except ValueError as e:
            logger.warning(f"Discarding malformed session {key}: {e}")
            return None

        if data is None:
            return None

        try:
            return SessionRecord.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Discarding malformed session {key}: {e}")
            return None

    def revoke_session(self, user_id: UUID | str) -> None:
        """Delete the session (logout).

        Safe to call when no session exists.
        """
        self._valkey.delete(self._key(user_id))
