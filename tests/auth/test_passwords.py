"""Tests for PasswordHasher - bcrypt hashing."""

from unittest.mock import patch


class TestHash:
    def test_salted(self, password_hasher):
        """Same plaintext hashes differently each time."""
        assert password_hasher.hash("Str0ng!pass") != password_hasher.hash("Str0ng!pass")

    def test_uses_configured_cost(self, password_hasher, config):
        assert password_hasher.hash("Str0ng!pass").startswith(f"$2b${config.bcrypt_rounds:02d}$")


class TestCompare:
    def test_matching(self, password_hasher):
        hashed = password_hasher.hash("Str0ng!pass")
        assert password_hasher.compare("Str0ng!pass", hashed) is True

    def test_mismatch(self, password_hasher):
        hashed = password_hasher.hash("Str0ng!pass")
        assert password_hasher.compare("Wr0ng!pass", hashed) is False

    def test_malformed_hash_is_false(self, password_hasher):
        assert password_hasher.compare("Str0ng!pass", "not-a-bcrypt-hash") is False

    def test_long_input_truncated(self, password_hasher):
        """Input beyond 72 bytes is ignored rather than rejected."""
        base = "A" * 72
        hashed = password_hasher.hash(base + "first")
        assert password_hasher.compare(base + "second", hashed) is True


class TestBurn:
    def test_burn_runs_a_compare(self, password_hasher):
        """Unknown-user path still pays for one bcrypt check."""
        with patch("auth.passwords.bcrypt.checkpw", return_value=False) as checkpw:
            password_hasher.burn("anything")
        checkpw.assert_called_once()
