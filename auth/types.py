"""Pydantic models for auth domain."""

import re
from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

# At least one lower, upper, digit and symbol; only these character classes.
_PASSWORD_ALLOWED = re.compile(r"^[A-Za-z\d@$!%*?&#]{8,32}$")
_PASSWORD_CLASSES = (
    re.compile(r"[a-z]"),
    re.compile(r"[A-Z]"),
    re.compile(r"\d"),
    re.compile(r"[@$!%*?&#]"),
)


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class PublicUser(BaseModel):
    """User fields safe to return to clients."""

    id: UUID
    name: str
    email: EmailStr
    role: Role
    verified: bool
    two_factor_enabled: bool
    created_at: datetime


class User(BaseModel):
    """A registered user of the system.

    Credential fields are excluded from serialization so a User can never be
    dumped into a response or session record with its secrets attached.
    """

    id: UUID
    name: str
    email: EmailStr
    password: str = Field(..., exclude=True, repr=False)
    role: Role = Role.USER
    verified: bool = False
    verification_code: str | None = Field(default=None, exclude=True, repr=False)
    two_factor_secret: str | None = Field(default=None, exclude=True, repr=False)
    two_factor_enabled: bool = False
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True, "validate_assignment": True}

    @model_validator(mode="after")
    def _enabled_requires_secret(self) -> "User":
        if self.two_factor_enabled and not self.two_factor_secret:
            raise ValueError("two_factor_enabled requires two_factor_secret")
        return self

    def public(self) -> PublicUser:
        return PublicUser(
            id=self.id,
            name=self.name,
            email=self.email,
            role=self.role,
            verified=self.verified,
            two_factor_enabled=self.two_factor_enabled,
            created_at=self.created_at,
        )


class SessionRecord(BaseModel):
    """User snapshot stored in Valkey while a login is live."""

    id: UUID
    name: str
    email: EmailStr
    role: Role
    created_at: datetime


class ApiKey(BaseModel):
    """A stored API key. Only the SHA-256 hash of the key is ever persisted."""

    id: UUID
    name: str
    key_hash: str = Field(..., exclude=True, repr=False)
    scopes: list[str] = Field(default_factory=list)
    revoked: bool = False
    user_id: UUID
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}


class ApiKeyInfo(BaseModel):
    """API key as listed to its owner."""

    id: UUID
    name: str
    scopes: list[str]
    revoked: bool
    created_at: datetime


class CreatedApiKey(BaseModel):
    """Returned once at creation: the only time the plaintext key is visible."""

    id: UUID
    name: str
    key: str
    scopes: list[str]
    created_at: datetime


class ApiKeySummary(BaseModel):
    id: UUID
    name: str
    scopes: list[str]


class ApiKeyOwner(BaseModel):
    id: UUID
    name: str
    email: EmailStr
    role: Role


class ApiKeyValidation(BaseModel):
    """Trimmed result of a successful API key check."""

    api_key: ApiKeySummary
    user: ApiKeyOwner


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str


class LoginResult(BaseModel):
    """Outcome of a login step.

    Either requires_two_factor is set with a challenge token, or the login
    is complete and user and tokens are present.
    """

    requires_two_factor: bool = False
    two_factor_token: str | None = None
    user: PublicUser | None = None
    tokens: TokenPair | None = None


class RegistrationResult(BaseModel):
    """Outcome of registration. email_sent=False maps to a 500 response."""

    user_id: UUID
    email_sent: bool
    message: str


class TwoFactorSetup(BaseModel):
    secret: str
    qr_code: str = Field(..., description="data:image/png;base64 provisioning QR code")


class UserPage(BaseModel):
    """One page of the admin user listing."""

    users: list[PublicUser]
    skip: int
    take: int
    total: int
    search: str | None = None


# Request bodies


class RegisterRequest(BaseModel):
    """Self-registration payload. Any role supplied by the client is ignored."""

    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str
    password_confirm: str

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name is required")
        return value

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def _strong_password(cls, value: str) -> str:
        if not _PASSWORD_ALLOWED.match(value) or not all(p.search(value) for p in _PASSWORD_CLASSES):
            raise ValueError(
                "Password must be 8-32 characters and contain at least one uppercase letter, "
                "one lowercase letter, one number and one special character (@$!%*?&#)"
            )
        return value

    @model_validator(mode="after")
    def _passwords_match(self) -> "RegisterRequest":
        if self.password != self.password_confirm:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()


class VerifyTwoFactorLoginRequest(BaseModel):
    """Completes a login that was answered with requires_two_factor."""

    two_factor_token: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)


class TwoFactorCodeRequest(BaseModel):
    token: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class CreateApiKeyRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    scopes: list[str] = Field(default_factory=list)
