"""Double-submit CSRF tokens.

The cookie holds "<token>|<hmac(secret, token)>" so a cookie planted by a
sibling subdomain without the secret is rejected. The client echoes the
bare token in the X-CSRF-Token header on unsafe methods.
"""

import hashlib
import hmac
import secrets

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

CSRF_COOKIE = "csrf-token"
CSRF_HEADER = "X-CSRF-Token"


class CsrfProtector:
    """Issue and check CSRF token/cookie pairs."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("CSRF secret is required")
        self._secret = secret.encode("utf-8")

    def _sign(self, token: str) -> str:
        return hmac.new(self._secret, token.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self) -> tuple[str, str]:
        """Return (token, cookie_value)."""
        token = secrets.token_urlsafe(32)
        return token, f"{token}|{self._sign(token)}"

    def is_valid(self, cookie_value: str | None, header_token: str | None) -> bool:
        if not cookie_value or not header_token:
            return False

        token, sep, signature = cookie_value.partition("|")
        if not sep or not token:
            return False

        if not hmac.compare_digest(signature, self._sign(token)):
            return False
        return hmac.compare_digest(token, header_token)
