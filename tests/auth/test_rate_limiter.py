"""Tests for RateLimiter - per-IP request throttling."""

import pytest

from auth.config import RateLimitRule
from auth.exceptions import RateLimitedError
from auth.rate_limiter import RateLimiter


@pytest.fixture
def rule():
    """Low attempts for faster tests."""
    return RateLimitRule(attempts=3, window_minutes=5)


@pytest.fixture
def rate_limiter(valkey, rule):
    return RateLimiter(valkey, "auth", rule, message="Too many authentication attempts")


class TestCheckRateLimit:
    """Test rate limit checking and incrementing."""

    def test_first_attempt_passes(self, rate_limiter):
        """First attempt does not raise."""
        rate_limiter.check_rate_limit("198.51.100.1")

    def test_within_limit_passes(self, rate_limiter, rule):
        """Attempts within limit pass."""
        for _ in range(rule.attempts):
            rate_limiter.check_rate_limit("198.51.100.2")

    def test_exceeds_limit_raises(self, rate_limiter, rule):
        """Exceeding limit raises RateLimitedError with the scope's message."""
        for _ in range(rule.attempts):
            rate_limiter.check_rate_limit("198.51.100.3")

        with pytest.raises(RateLimitedError) as exc_info:
            rate_limiter.check_rate_limit("198.51.100.3")

        assert exc_info.value.message == "Too many authentication attempts"
        assert exc_info.value.status_code == 429

    def test_error_includes_retry_after(self, rate_limiter, rule):
        """RateLimitedError includes positive retry_after_seconds within the window."""
        for _ in range(rule.attempts):
            rate_limiter.check_rate_limit("198.51.100.4")

        with pytest.raises(RateLimitedError) as exc_info:
            rate_limiter.check_rate_limit("198.51.100.4")

        assert 0 < exc_info.value.retry_after_seconds <= rule.window_minutes * 60

    def test_different_ips_tracked_separately(self, rate_limiter, rule):
        """Each IP has its own counter."""
        for _ in range(rule.attempts):
            rate_limiter.check_rate_limit("198.51.100.5")

        rate_limiter.check_rate_limit("198.51.100.6")

    def test_scopes_tracked_separately(self, valkey, rate_limiter, rule):
        """Exhausting one scope leaves another untouched."""
        other = RateLimiter(valkey, "verify_email", rule)
        for _ in range(rule.attempts):
            rate_limiter.check_rate_limit("198.51.100.7")

        other.check_rate_limit("198.51.100.7")

    def test_first_hit_opens_window(self, valkey, rate_limiter, rule):
        rate_limiter.check_rate_limit("198.51.100.8")

        assert 0 < valkey.ttl("ratelimit:auth:198.51.100.8") <= rule.window_minutes * 60


class TestFixedWindow:
    """Later hits never push the window's end back."""

    def test_later_hits_keep_expiry(self, valkey, rate_limiter):
        key = "ratelimit:auth:198.51.100.9"
        rate_limiter.check_rate_limit("198.51.100.9")
        valkey.expire(key, 10)

        rate_limiter.check_rate_limit("198.51.100.9")

        assert valkey.ttl(key) <= 10

    def test_rejected_hits_keep_expiry(self, valkey, rate_limiter, rule):
        key = "ratelimit:auth:198.51.100.10"
        for _ in range(rule.attempts):
            rate_limiter.check_rate_limit("198.51.100.10")
        valkey.expire(key, 30)

        with pytest.raises(RateLimitedError) as exc_info:
            rate_limiter.check_rate_limit("198.51.100.10")

        assert exc_info.value.retry_after_seconds <= 30
        assert valkey.ttl(key) <= 30

    def test_spaced_hits_never_locked_out(self, valkey):
        """A steady client under the per-window allowance is never rejected."""
        limiter = RateLimiter(valkey, "api", RateLimitRule(attempts=3, window_minutes=15))
        key = "ratelimit:api:198.51.100.11"

        # Hits at minute 0 and 14 of each window, across four windows
        for _ in range(4):
            limiter.check_rate_limit("198.51.100.11")
            valkey.expire(key, 60)
            limiter.check_rate_limit("198.51.100.11")

            assert valkey.ttl(key) <= 60
            # Window ends
            valkey.delete(key)

    def test_new_window_restores_allowance(self, valkey, rate_limiter, rule):
        key = "ratelimit:auth:198.51.100.12"
        for _ in range(rule.attempts):
            rate_limiter.check_rate_limit("198.51.100.12")
        with pytest.raises(RateLimitedError):
            rate_limiter.check_rate_limit("198.51.100.12")

        valkey.delete(key)

        rate_limiter.check_rate_limit("198.51.100.12")
        assert valkey.get(key) == "1"

    def test_counter_without_expiry_gets_one(self, valkey, rate_limiter, rule):
        """An over-limit counter that lost its TTL is closed instead of living forever."""
        key = "ratelimit:auth:198.51.100.13"
        valkey.set(key, str(rule.attempts))

        with pytest.raises(RateLimitedError) as exc_info:
            rate_limiter.check_rate_limit("198.51.100.13")

        assert exc_info.value.retry_after_seconds == rule.window_minutes * 60
        assert valkey.ttl(key) > 0
