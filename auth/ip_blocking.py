"""IP abuse counters and blocks in Valkey.

Keys:
    failed_login:<ip>  failed logins, TTL failed_login_window_hours (set on first hit)
    suspicious:<ip>    requests in the current window, TTL suspicious_window_seconds
    blocked:<ip>       block flag, TTL block_duration_minutes

Every operation fails open: a store error is logged and the request is
treated as not blocked.
"""

import logging

import redis

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig

logger = logging.getLogger(__name__)


class IpBlocker:
    """Failed-login and suspicious-activity tracking per client IP."""

    FAILED_LOGIN_PREFIX = "failed_login:"
    SUSPICIOUS_PREFIX = "suspicious:"
    BLOCKED_PREFIX = "blocked:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config

    def _block(self, ip: str, reason: str) -> None:
        self._valkey.set(
            f"{self.BLOCKED_PREFIX}{ip}",
            reason,
            expire_seconds=self._config.block_duration_minutes * 60,
        )
        logger.warning(f"Blocked IP {ip} for {self._config.block_duration_minutes}m: {reason}")

    def _count(self, key: str, window_seconds: int) -> int:
        """Atomic increment; TTL is set only when the counter is created."""
        count = self._valkey.incr(key)
        if count == 1:
            self._valkey.expire(key, window_seconds)
        return count

    def is_blocked(self, ip: str) -> bool:
        try:
            return self._valkey.exists(f"{self.BLOCKED_PREFIX}{ip}")
        except redis.RedisError as e:
            logger.error(f"IP block lookup failed for {ip}, allowing request: {e}")
            return False

    def block_reason(self, ip: str) -> str | None:
        """Reason recorded with the block ("failed_logins" or "suspicious_activity")."""
        try:
            return self._valkey.get(f"{self.BLOCKED_PREFIX}{ip}")
        except redis.RedisError as e:
            logger.error(f"IP block lookup failed for {ip}: {e}")
            return None

    def record_failed_login(self, ip: str) -> bool:
        """Count a failed login. Returns True if this attempt triggered a block."""
        try:
            count = self._count(
                f"{self.FAILED_LOGIN_PREFIX}{ip}",
                self._config.failed_login_window_hours * 3600,
            )
            if count >= self._config.failed_login_limit:
                self._block(ip, "failed_logins")
                return True
            return False
        except redis.RedisError as e:
            logger.error(f"Failed-login tracking unavailable for {ip}: {e}")
            return False

    def reset_failed_logins(self, ip: str) -> None:
        try:
            self._valkey.delete(f"{self.FAILED_LOGIN_PREFIX}{ip}")
        except redis.RedisError as e:
            logger.error(f"Failed-login reset unavailable for {ip}: {e}")

    def track_request(self, ip: str) -> bool:
        """Count a request. Returns True if this request triggered a block."""
        try:
            count = self._count(
                f"{self.SUSPICIOUS_PREFIX}{ip}",
                self._config.suspicious_window_seconds,
            )
            if count > self._config.suspicious_request_limit:
                self._block(ip, "suspicious_activity")
                return True
            return False
        except redis.RedisError as e:
            logger.error(f"Request tracking unavailable for {ip}: {e}")
            return False
