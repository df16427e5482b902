"""Security event logging for auth audit trail.

Append-only log to security_events table.
"""

import logging
from enum import Enum
from typing import Any
from uuid import UUID

import psycopg2
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SecurityEvent(Enum):
    """Auth security event types."""

    USER_REGISTERED = "user_registered"
    VERIFICATION_EMAIL_FAILED = "verification_email_failed"
    EMAIL_VERIFIED = "email_verified"
    EMAIL_VERIFICATION_FAILED = "email_verification_failed"
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    TWO_FACTOR_CHALLENGE_ISSUED = "two_factor_challenge_issued"
    TWO_FACTOR_FAILED = "two_factor_failed"
    TWO_FACTOR_ENABLED = "two_factor_enabled"
    TWO_FACTOR_DISABLED = "two_factor_disabled"
    SESSION_REVOKED = "session_revoked"
    TOKEN_REFRESH_FAILED = "token_refresh_failed"
    API_KEY_CREATED = "api_key_created"
    API_KEY_REVOKED = "api_key_revoked"
    IP_BLOCKED = "ip_blocked"


class SecurityLogger:
    """Append-only security event logger."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def log(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log security event to database.

        An audit write failure is logged and does not fail the request.
        """
        try:
            self._db.execute_update(
                """INSERT INTO security_events
                   (event_type, email, user_id, ip_address, user_agent, details, created_at)
                   VALUES (%s, %s, %s, %s, %s, %s, %s)""",
                (
                    event.value,
                    email,
                    str(user_id) if user_id else None,
                    ip_address,
                    user_agent,
                    Json(details) if details else None,
                    now_utc(),
                ),
            )
        except psycopg2.Error as e:
            logger.error(f"Failed to record security event {event.value}: {e}")
