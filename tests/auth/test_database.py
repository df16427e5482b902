"""Tests for AuthDatabase and ApiKeyDatabase - SQL and row mapping."""

from unittest.mock import Mock
from uuid import uuid4

import pytest
from psycopg2 import errors as pg_errors

from auth.database import ApiKeyDatabase, AuthDatabase
from auth.exceptions import DuplicateKeyError
from auth.types import Role, User
from clients.postgres_client import PostgresClient
from utils.timezone import now_utc


@pytest.fixture
def pg():
    return Mock(spec=PostgresClient)


@pytest.fixture
def users(pg):
    """AuthDatabase over a mocked PostgresClient."""
    return AuthDatabase(pg)


@pytest.fixture
def keys(pg):
    return ApiKeyDatabase(pg)


def _user_row(**overrides):
    now = now_utc()
    row = {
        "id": str(uuid4()),
        "name": "Ada",
        "email": "ada@example.com",
        "password": "$2b$04$hash",
        "role": "user",
        "verified": True,
        "verification_code": None,
        "two_factor_secret": None,
        "two_factor_enabled": False,
        "created_at": now,
        "updated_at": now,
        "deleted_at": None,
    }
    row.update(overrides)
    return row


def _api_key_row(**overrides):
    now = now_utc()
    row = {
        "id": uuid4(),
        "name": "CI",
        "key_hash": "a" * 64,
        "scopes": ["decks:read"],
        "revoked": False,
        "user_id": uuid4(),
        "created_at": now,
        "updated_at": now,
        "deleted_at": None,
    }
    row.update(overrides)
    return row


class TestGetUser:
    """User lookups."""

    def test_by_email_maps_row(self, users, pg):
        row = _user_row(role="admin")
        pg.execute_single.return_value = row

        user = users.get_user_by_email("Ada@Example.com")

        assert isinstance(user, User)
        assert str(user.id) == row["id"]
        assert user.role == Role.ADMIN

    def test_by_email_case_insensitive_and_live_only(self, users, pg):
        pg.execute_single.return_value = None

        assert users.get_user_by_email("Ada@Example.com") is None

        query, params = pg.execute_single.call_args.args
        assert "lower(%s)" in query
        assert "deleted_at IS NULL" in query
        assert params == ("Ada@Example.com",)

    def test_by_id(self, users, pg):
        row = _user_row()
        pg.execute_single.return_value = row

        assert str(users.get_user_by_id(row["id"]).id) == row["id"]

    def test_by_verification_code(self, users, pg):
        pg.execute_single.return_value = _user_row(verified=False, verification_code="f" * 64)

        user = users.get_user_by_verification_code("f" * 64)

        assert user.verification_code == "f" * 64
        assert pg.execute_single.call_args.args[1] == ("f" * 64,)


class TestCreateUser:
    """User insert."""

    def test_returns_inserted_user(self, users, pg):
        pg.execute_returning.return_value = [_user_row(verified=False)]

        user = users.create_user("Ada", "ada@example.com", "$2b$04$hash", "c" * 64)

        assert user.verified is False
        assert "INSERT INTO users" in pg.execute_returning.call_args.args[0]

    def test_unique_violation_becomes_duplicate_key(self, users, pg):
        pg.execute_returning.side_effect = pg_errors.UniqueViolation("duplicate key")

        with pytest.raises(DuplicateKeyError):
            users.create_user("Ada", "ada@example.com", "$2b$04$hash", None)


class TestUpdateUser:
    """Mutations."""

    def test_update_selected_fields(self, users, pg):
        pg.execute_update.return_value = 1
        user_id = uuid4()

        assert users.update_user(user_id, {"verification_code": None}) is True

        query, params = pg.execute_update.call_args.args
        assert "verification_code = %s" in query
        assert params[0] is None
        assert params[-1] == str(user_id)

    def test_update_missing_user(self, users, pg):
        pg.execute_update.return_value = 0
        assert users.update_user(uuid4(), {"verified": True}) is False

    def test_update_rejects_unknown_fields(self, users, pg):
        with pytest.raises(ValueError, match="email"):
            users.update_user(uuid4(), {"email": "x@example.com"})
        pg.execute_update.assert_not_called()

    def test_save_user_writes_mutable_fields(self, users, pg):
        row = _user_row()
        pg.execute_returning.return_value = [row]
        user = User(**{**row, "verified": False})

        users.save_user(user)

        params = pg.execute_returning.call_args.args[1]
        assert params[1] == "user"
        assert params[2] is False
        assert params[-1] == row["id"]

    def test_soft_delete(self, users, pg):
        pg.execute_update.return_value = 1

        assert users.delete_user(uuid4()) is True
        assert "SET deleted_at" in pg.execute_update.call_args.args[0]


class TestListUsers:
    """Admin user listing."""

    def test_page_and_total(self, users, pg):
        pg.execute_scalar.return_value = 12
        pg.execute.return_value = [_user_row(), _user_row(name="Grace", email="grace@example.com")]

        page, total = users.list_users(skip=10, take=2)

        assert [u.name for u in page] == ["Ada", "Grace"]
        assert total == 12
        query, params = pg.execute.call_args.args
        assert "deleted_at IS NULL" in query
        assert "ORDER BY created_at DESC" in query
        assert params == (10, 2)

    def test_search_matches_name_or_email(self, users, pg):
        pg.execute_scalar.return_value = 0
        pg.execute.return_value = []

        users.list_users(search="ada")

        count_query, count_params = pg.execute_scalar.call_args.args
        assert "name ILIKE %s OR email ILIKE %s" in count_query
        assert count_params == ("%ada%", "%ada%")
        assert pg.execute.call_args.args[1] == ("%ada%", "%ada%", 0, 10)

    def test_search_wildcards_escaped(self, users, pg):
        pg.execute_scalar.return_value = 0
        pg.execute.return_value = []

        users.list_users(search="50%_off")

        assert pg.execute_scalar.call_args.args[1][0] == "%50\\%\\_off%"


class TestApiKeyDatabase:
    """API key rows."""

    def test_create_returns_key(self, keys, pg):
        row = _api_key_row()
        pg.execute_returning.return_value = [row]

        api_key = keys.create_api_key(row["user_id"], "CI", row["key_hash"], ["decks:read"])

        assert api_key.scopes == ["decks:read"]
        assert api_key.key_hash == row["key_hash"]

    def test_duplicate_hash(self, keys, pg):
        pg.execute_returning.side_effect = pg_errors.UniqueViolation("duplicate key")

        with pytest.raises(DuplicateKeyError):
            keys.create_api_key(uuid4(), "CI", "a" * 64, [])

    def test_null_scopes_mapped_to_empty(self, keys, pg):
        pg.execute_single.return_value = _api_key_row(scopes=None)

        assert keys.get_api_key_by_id(uuid4()).scopes == []

    def test_active_lookup_excludes_revoked(self, keys, pg):
        pg.execute_single.return_value = None

        assert keys.get_active_api_key_by_hash("a" * 64) is None
        assert "revoked = false" in pg.execute_single.call_args.args[0]

    def test_list_active(self, keys, pg):
        pg.execute.return_value = [_api_key_row(), _api_key_row(name="Other")]

        assert [k.name for k in keys.list_active_api_keys(uuid4())] == ["CI", "Other"]

    def test_revoke(self, keys, pg):
        pg.execute_update.return_value = 0
        assert keys.revoke_api_key(uuid4()) is False
