"""bcrypt password hashing."""

import bcrypt

# bcrypt only reads the first 72 bytes of input
_MAX_BYTES = 72


def _encode(plaintext: str) -> bytes:
    return plaintext.encode("utf-8")[:_MAX_BYTES]


class PasswordHasher:
    """Salted bcrypt hash and compare with a fixed cost factor."""

    def __init__(self, rounds: int = 12):
        self._rounds = rounds
        # Compared against when no user matches, so both paths pay one bcrypt check
        self._dummy_hash = self.hash("dummy-password-for-timing")

    def hash(self, plaintext: str) -> str:
        return bcrypt.hashpw(_encode(plaintext), bcrypt.gensalt(rounds=self._rounds)).decode("ascii")

    def compare(self, plaintext: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(_encode(plaintext), hashed.encode("ascii"))
        except ValueError:
            # Malformed stored hash
            return False

    def burn(self, plaintext: str) -> None:
        """Run a compare whose result is discarded (unknown-user path)."""
        self.compare(plaintext, self._dummy_hash)
