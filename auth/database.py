"""Database operations for authentication.

Tables: users, api_keys. Soft-deleted rows (deleted_at set) are invisible
to every lookup. Unique violations surface as DuplicateKeyError so callers
never inspect driver errors.
"""

from typing import Any, Dict, List, Tuple
from uuid import UUID

from psycopg2 import errors as pg_errors

from clients.postgres_client import PostgresClient
from auth.exceptions import DuplicateKeyError
from auth.types import ApiKey, User
from utils.timezone import now_utc, to_utc

_USER_COLUMNS = """id, name, email, password, role, verified, verification_code,
                   two_factor_secret, two_factor_enabled, created_at, updated_at, deleted_at"""

_API_KEY_COLUMNS = "id, name, key_hash, scopes, revoked, user_id, created_at, updated_at, deleted_at"

# Columns update_user() may touch
_UPDATABLE_USER_FIELDS = frozenset(
    {"name", "role", "verified", "verification_code", "two_factor_secret", "two_factor_enabled"}
)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _as_uuid(value: Any) -> UUID:
    return UUID(value) if isinstance(value, str) else value


def _row_to_user(row: Dict[str, Any]) -> User:
    return User(
        id=_as_uuid(row["id"]),
        name=row["name"],
        email=row["email"],
        password=row["password"],
        role=row["role"],
        verified=row["verified"],
        verification_code=row["verification_code"],
        two_factor_secret=row["two_factor_secret"],
        two_factor_enabled=row["two_factor_enabled"],
        created_at=to_utc(row["created_at"]),
        updated_at=to_utc(row["updated_at"]),
        deleted_at=to_utc(row["deleted_at"]),
    )


def _row_to_api_key(row: Dict[str, Any]) -> ApiKey:
    return ApiKey(
        id=_as_uuid(row["id"]),
        name=row["name"],
        key_hash=row["key_hash"],
        scopes=list(row["scopes"] or []),
        revoked=row["revoked"],
        user_id=_as_uuid(row["user_id"]),
        created_at=to_utc(row["created_at"]),
        updated_at=to_utc(row["updated_at"]),
        deleted_at=to_utc(row["deleted_at"]),
    )


class AuthDatabase:
    """User persistence for authentication."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def get_user_by_email(self, email: str) -> User | None:
        """Find user by email (case-insensitive)."""
        row = self._db.execute_single(
            f"""SELECT {_USER_COLUMNS}
               FROM users WHERE email = lower(%s) AND deleted_at IS NULL""",
            (email,),
        )
        return _row_to_user(row) if row else None

    def get_user_by_id(self, user_id: UUID) -> User | None:
        """Find user by ID."""
        row = self._db.execute_single(
            f"""SELECT {_USER_COLUMNS}
               FROM users WHERE id = %s AND deleted_at IS NULL""",
            (str(user_id),),
        )
        return _row_to_user(row) if row else None

    def get_user_by_verification_code(self, code_hash: str) -> User | None:
        """Find user holding this (hashed) verification code."""
        row = self._db.execute_single(
            f"""SELECT {_USER_COLUMNS}
               FROM users WHERE verification_code = %s AND deleted_at IS NULL""",
            (code_hash,),
        )
        return _row_to_user(row) if row else None

    def list_users(self, skip: int = 0, take: int = 10, search: str = "") -> Tuple[List[User], int]:
        """Page through live users, newest first, optionally filtered by name or email.

        Returns:
            (users on this page, total matching users)
        """
        where = "deleted_at IS NULL"
        params: Tuple = ()
        if search:
            pattern = "%" + _escape_like(search) + "%"
            where += " AND (name ILIKE %s OR email ILIKE %s)"
            params = (pattern, pattern)

        total = self._db.execute_scalar(f"SELECT count(*) FROM users WHERE {where}", params)
        rows = self._db.execute(
            f"""SELECT {_USER_COLUMNS}
               FROM users WHERE {where}
               ORDER BY created_at DESC
               OFFSET %s LIMIT %s""",
            (*params, skip, take),
        )
        return [_row_to_user(row) for row in rows], int(total or 0)

    def create_user(self, name: str, email: str, password_hash: str, verification_code: str | None) -> User:
        """Insert an unverified user (email lowercased).

        Raises:
            DuplicateKeyError: Email already registered.
        """
        try:
            rows = self._db.execute_returning(
                f"""INSERT INTO users (name, email, password, verification_code)
                   VALUES (%s, lower(%s), %s, %s)
                   RETURNING {_USER_COLUMNS}""",
                (name, email, password_hash, verification_code),
            )
        except pg_errors.UniqueViolation as e:
            raise DuplicateKeyError(e.diag.constraint_name) from e
        return _row_to_user(rows[0])

    def save_user(self, user: User) -> User:
        """Persist every mutable field of user."""
        rows = self._db.execute_returning(
            f"""UPDATE users
               SET name = %s, role = %s, verified = %s, verification_code = %s,
                   two_factor_secret = %s, two_factor_enabled = %s, updated_at = %s
               WHERE id = %s AND deleted_at IS NULL
               RETURNING {_USER_COLUMNS}""",
            (
                user.name,
                user.role.value,
                user.verified,
                user.verification_code,
                user.two_factor_secret,
                user.two_factor_enabled,
                now_utc(),
                str(user.id),
            ),
        )
        return _row_to_user(rows[0]) if rows else user

    def update_user(self, user_id: UUID, fields: Dict[str, Any]) -> bool:
        """Update selected columns.

        Returns:
            True if user was found and updated, False if not found.
        """
        unknown = set(fields) - _UPDATABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {', '.join(sorted(unknown))}")
        if not fields:
            return False

        assignments = ", ".join(f"{name} = %s" for name in fields)
        updated = self._db.execute_update(
            f"""UPDATE users SET {assignments}, updated_at = %s
               WHERE id = %s AND deleted_at IS NULL""",
            (*fields.values(), now_utc(), str(user_id)),
        )
        return updated > 0

    def delete_user(self, user_id: UUID) -> bool:
        """Soft-delete user.

        Returns:
            True if user was found and deleted, False if not found.
        """
        deleted = self._db.execute_update(
            "UPDATE users SET deleted_at = %s WHERE id = %s AND deleted_at IS NULL",
            (now_utc(), str(user_id)),
        )
        return deleted > 0


class ApiKeyDatabase:
    """API key persistence. Stores key hashes only."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def create_api_key(self, user_id: UUID, name: str, key_hash: str, scopes: List[str]) -> ApiKey:
        try:
            rows = self._db.execute_returning(
                f"""INSERT INTO api_keys (name, key_hash, scopes, user_id)
                   VALUES (%s, %s, %s, %s)
                   RETURNING {_API_KEY_COLUMNS}""",
                (name, key_hash, list(scopes), str(user_id)),
            )
        except pg_errors.UniqueViolation as e:
            raise DuplicateKeyError(e.diag.constraint_name) from e
        return _row_to_api_key(rows[0])

    def get_api_key_by_id(self, key_id: UUID) -> ApiKey | None:
        row = self._db.execute_single(
            f"""SELECT {_API_KEY_COLUMNS}
               FROM api_keys WHERE id = %s AND deleted_at IS NULL""",
            (str(key_id),),
        )
        return _row_to_api_key(row) if row else None

    def get_active_api_key_by_hash(self, key_hash: str) -> ApiKey | None:
        """Find a non-revoked key by its SHA-256 hash."""
        row = self._db.execute_single(
            f"""SELECT {_API_KEY_COLUMNS}
               FROM api_keys
               WHERE key_hash = %s AND revoked = false AND deleted_at IS NULL""",
            (key_hash,),
        )
        return _row_to_api_key(row) if row else None

    def list_active_api_keys(self, user_id: UUID) -> List[ApiKey]:
        rows = self._db.execute(
            f"""SELECT {_API_KEY_COLUMNS}
               FROM api_keys
               WHERE user_id = %s AND revoked = false AND deleted_at IS NULL
               ORDER BY created_at DESC""",
            (str(user_id),),
        )
        return [_row_to_api_key(row) for row in rows]

    def revoke_api_key(self, key_id: UUID) -> bool:
        """Mark key revoked. The row is kept for audit."""
        revoked = self._db.execute_update(
            "UPDATE api_keys SET revoked = true, updated_at = %s WHERE id = %s",
            (now_utc(), str(key_id)),
        )
        return revoked > 0
