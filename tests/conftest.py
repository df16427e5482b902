"""Shared test fixtures for the auth test suite.

Valkey is fakeredis, PostgreSQL repositories are in-memory stand-ins with
the same interface, and RSA keys are generated once per session.
"""

import base64
from pathlib import Path
from unittest.mock import Mock
from uuid import UUID, uuid4

import fakeredis
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from auth.config import AuthConfig, TokenKeys
from auth.exceptions import DuplicateKeyError
from auth.passwords import PasswordHasher
from auth.security_logger import SecurityLogger
from auth.types import ApiKey, Role, User
from clients.email_client import EmailGatewayClient
from clients.valkey_client import ValkeyClient
from utils.timezone import now_utc


# =============================================================================
# TEST USER CONSTANTS
# =============================================================================

TEST_PASSWORD = "Str0ng!pass"
TEST_USER_EMAIL = "testuser@example.com"
TEST_USER_B_EMAIL = "testuser-b@example.com"
TEST_CLIENT_IP = "203.0.113.7"


# =============================================================================
# IN-MEMORY REPOSITORIES
# =============================================================================


class InMemoryAuthDatabase:
    """Dict-backed stand-in for AuthDatabase. Returns copies like a real store."""

    def __init__(self):
        self.users: dict[UUID, User] = {}

    def _live(self):
        return (u for u in self.users.values() if u.deleted_at is None)

    def get_user_by_email(self, email):
        for user in self._live():
            if user.email == email.lower():
                return user.model_copy()
        return None

    def get_user_by_id(self, user_id):
        user = self.users.get(user_id)
        if user is None or user.deleted_at is not None:
            return None
        return user.model_copy()

    def get_user_by_verification_code(self, code_hash):
        for user in self._live():
            if user.verification_code is not None and user.verification_code == code_hash:
                return user.model_copy()
        return None

    def list_users(self, skip=0, take=10, search=""):
        needle = search.lower()
        matches = [
            u for u in self._live()
            if not needle or needle in u.name.lower() or needle in u.email
        ]
        matches.sort(key=lambda u: u.created_at, reverse=True)
        return [u.model_copy() for u in matches[skip:skip + take]], len(matches)

    def create_user(self, name, email, password_hash, verification_code):
        if any(u.email == email.lower() for u in self.users.values()):
            raise DuplicateKeyError("users_email_key")
        now = now_utc()
        user = User(
            id=uuid4(),
            name=name,
            email=email.lower(),
            password=password_hash,
            verification_code=verification_code,
            created_at=now,
            updated_at=now,
        )
        self.users[user.id] = user
        return user.model_copy()

    def save_user(self, user):
        self.users[user.id] = user.model_copy(update={"updated_at": now_utc()})
        return self.users[user.id].model_copy()

    def update_user(self, user_id, fields):
        user = self.users.get(user_id)
        if user is None:
            return False
        self.users[user_id] = user.model_copy(update={**fields, "updated_at": now_utc()})
        return True

    def delete_user(self, user_id):
        user = self.users.get(user_id)
        if user is None or user.deleted_at is not None:
            return False
        self.users[user_id] = user.model_copy(update={"deleted_at": now_utc()})
        return True


class InMemoryApiKeyDatabase:
    """Dict-backed stand-in for ApiKeyDatabase."""

    def __init__(self):
        self.keys: dict[UUID, ApiKey] = {}

    def create_api_key(self, user_id, name, key_hash, scopes):
        now = now_utc()
        api_key = ApiKey(
            id=uuid4(),
            name=name,
            key_hash=key_hash,
            scopes=list(scopes),
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        self.keys[api_key.id] = api_key
        return api_key.model_copy()

    def get_api_key_by_id(self, key_id):
        api_key = self.keys.get(key_id)
        return api_key.model_copy() if api_key else None

    def get_active_api_key_by_hash(self, key_hash):
        for api_key in self.keys.values():
            if api_key.key_hash == key_hash and not api_key.revoked:
                return api_key.model_copy()
        return None

    def list_active_api_keys(self, user_id):
        return [k.model_copy() for k in self.keys.values() if k.user_id == user_id and not k.revoked]

    def revoke_api_key(self, key_id):
        api_key = self.keys.get(key_id)
        if api_key is None:
            return False
        self.keys[key_id] = api_key.model_copy(update={"revoked": True})
        return True


# =============================================================================
# CONFIG AND KEY FIXTURES
# =============================================================================


def _generate_pem_pair() -> tuple[str, str]:
    """Return (private, public) PEMs, base64-encoded like the Vault values."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(private_pem).decode(), base64.b64encode(public_pem).decode()


@pytest.fixture(scope="session")
def token_keys() -> TokenKeys:
    """Two distinct RS256 key pairs for access and refresh tokens."""
    access_private, access_public = _generate_pem_pair()
    refresh_private, refresh_public = _generate_pem_pair()
    return TokenKeys(
        access_private_key=access_private,
        access_public_key=access_public,
        refresh_private_key=refresh_private,
        refresh_public_key=refresh_public,
    )


@pytest.fixture
def config() -> AuthConfig:
    """Test config: cheap bcrypt, suspicious-activity limit out of the way."""
    return AuthConfig(
        bcrypt_rounds=4,
        suspicious_request_limit=1000,
        origin="https://app.example.com",
        environment="test",
    )


@pytest.fixture
def password_hasher(config) -> PasswordHasher:
    return PasswordHasher(config.bcrypt_rounds)


# =============================================================================
# VALKEY FIXTURES
# =============================================================================


@pytest.fixture
def valkey_server():
    """Isolated fakeredis server per test."""
    return fakeredis.FakeServer()


@pytest.fixture
def valkey(valkey_server) -> ValkeyClient:
    """ValkeyClient backed by fakeredis."""
    client = ValkeyClient(
        "redis://fake:6379/0",
        connect=lambda: fakeredis.FakeRedis(server=valkey_server, decode_responses=True),
    )
    yield client
    client.close()


# =============================================================================
# REPOSITORY AND COLLABORATOR FIXTURES
# =============================================================================


@pytest.fixture
def auth_db() -> InMemoryAuthDatabase:
    return InMemoryAuthDatabase()


@pytest.fixture
def api_key_db() -> InMemoryApiKeyDatabase:
    return InMemoryApiKeyDatabase()


@pytest.fixture
def security_logger():
    """Mock SecurityLogger - audit rows are asserted on, not written."""
    return Mock(spec=SecurityLogger)


@pytest.fixture
def email_client():
    """Mock email client - no actual emails sent in tests."""
    mock = Mock(spec=EmailGatewayClient)
    mock.send_verification_email.return_value = None
    return mock


@pytest.fixture
def make_user(auth_db, password_hasher):
    """Factory inserting a user directly into the in-memory repository."""

    def _make(
        email: str = TEST_USER_EMAIL,
        name: str = "Test User",
        password: str = TEST_PASSWORD,
        verified: bool = True,
        role: Role = Role.USER,
        two_factor_secret: str | None = None,
        two_factor_enabled: bool = False,
    ) -> User:
        user = auth_db.create_user(name, email, password_hasher.hash(password), None)
        user = user.model_copy(
            update={
                "verified": verified,
                "role": role,
                "two_factor_secret": two_factor_secret,
                "two_factor_enabled": two_factor_enabled,
            }
        )
        return auth_db.save_user(user)

    return _make
