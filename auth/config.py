"""Authentication configuration."""

from typing import Literal

from pydantic import BaseModel, Field


class RateLimitRule(BaseModel):
    """Requests allowed per client IP within a window."""

    attempts: int = Field(..., ge=1)
    window_minutes: int = Field(..., ge=1)


class TokenKeys(BaseModel):
    """Base64-encoded PEM key material for each token role."""

    access_private_key: str
    access_public_key: str
    refresh_private_key: str
    refresh_public_key: str


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    All durations are in their natural units (seconds, minutes or hours)
    to make configuration intuitive.
    """

    # Token lifetimes
    access_token_expires_minutes: int = Field(
        default=15,
        description="Access token and logged_in cookie lifetime",
        ge=1,
        le=1440,
    )
    refresh_token_expires_minutes: int = Field(
        default=60,
        description="Refresh token and cookie lifetime",
        ge=1,
        le=43200,
    )
    session_expires_minutes: int = Field(
        default=60,
        description="Session record TTL in the store",
        ge=1,
        le=43200,
    )
    two_factor_token_expires_minutes: int = Field(
        default=5,
        description="Lifetime of the login challenge token issued when 2FA is on",
        ge=1,
        le=15,
    )

    # Password hashing
    bcrypt_rounds: int = Field(
        default=12,
        description="bcrypt cost factor",
        ge=4,
        le=16,
    )

    # IP abuse mitigation
    failed_login_limit: int = Field(
        default=5,
        description="Failed logins per IP before the IP is blocked",
        ge=1,
    )
    failed_login_window_hours: int = Field(
        default=24,
        description="TTL of the failed-login counter",
        ge=1,
    )
    block_duration_minutes: int = Field(
        default=60,
        description="How long a blocked IP stays blocked",
        ge=1,
    )
    suspicious_request_limit: int = Field(
        default=10,
        description="Requests per window above which an IP is blocked",
        ge=1,
    )
    suspicious_window_seconds: int = Field(
        default=60,
        description="TTL of the suspicious-activity counter",
        ge=1,
    )

    # Rate limiting (per client IP)
    auth_rate_limit: RateLimitRule = Field(
        default=RateLimitRule(attempts=10, window_minutes=15),
        description="Register and login",
    )
    email_verification_rate_limit: RateLimitRule = Field(
        default=RateLimitRule(attempts=3, window_minutes=60),
        description="Email verification links",
    )
    api_rate_limit: RateLimitRule = Field(
        default=RateLimitRule(attempts=100, window_minutes=15),
        description="All API traffic",
    )

    # Application
    origin: str = Field(
        default="http://localhost:3000",
        description="Frontend base URL for verification links",
    )
    app_name: str = Field(
        default="Flashcards",
        description="Issuer shown in authenticator apps",
    )
    environment: Literal["development", "test", "production"] = Field(
        default="development",
    )

    @property
    def cookie_secure(self) -> bool:
        """Cookies are marked Secure everywhere except local development."""
        return self.environment != "development"

    @property
    def expose_error_details(self) -> bool:
        """Stack traces are returned to clients outside production."""
        return self.environment != "production"
