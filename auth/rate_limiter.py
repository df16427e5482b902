"""Per-IP rate limiting.

Fixed windows in Valkey: the first hit creates the counter with the window
as its TTL, later hits only increment it. When the key expires the client
gets a fresh allowance.
"""

from clients.valkey_client import ValkeyClient
from auth.config import RateLimitRule
from auth.exceptions import RateLimitedError


class RateLimiter:
    """Rate limiting for one scope (e.g. "auth", "verify_email") using Valkey."""

    KEY_PREFIX = "ratelimit:"

    def __init__(self, valkey: ValkeyClient, scope: str, rule: RateLimitRule, message: str | None = None):
        self._valkey = valkey
        self._scope = scope
        self._attempts = rule.attempts
        self._window_seconds = rule.window_minutes * 60
        self._message = message

    def _key(self, client_ip: str) -> str:
        """Generate rate limit key for scope and client IP."""
        return f"{self.KEY_PREFIX}{self._scope}:{client_ip}"

    def check_rate_limit(self, client_ip: str) -> None:
        """Count a hit against the current window.

        Raises:
            RateLimitedError: If the window already holds the allowed attempts.
        """
        key = self._key(client_ip)

        count = self._valkey.incr(key)

        # Window starts with the first hit
        if count == 1:
            self._valkey.expire(key, self._window_seconds)

        if count > self._attempts:
            ttl = self._valkey.ttl(key)
            if ttl < 0:
                # Counter lost its expiry; close the window from now
                self._valkey.expire(key, self._window_seconds)
                ttl = self._window_seconds
            raise RateLimitedError(retry_after_seconds=max(ttl, 1), message=self._message)
