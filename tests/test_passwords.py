"""Unit tests for identity/passwords.py -- the credential codec and password policy.

Covers:
- verify() accepts the password a hash was made from and rejects any other
- hash() is deterministic for a given (password, salt) and salts are never reused
- passwords beyond bcrypt's 72-byte input limit still hash and verify correctly
- malformed salts or hashes verify as False instead of raising
- length policy: trimmed length within [6, 100], blank is invalid
"""

import pytest

from identity.passwords import generate_salt, hash_password, is_valid_password, verify_password

ROUNDS = 4


class TestCodec:
    def test_verify_accepts_original_password(self) -> None:
        salt = generate_salt(ROUNDS)
        hashed = hash_password("secret1", salt)
        assert verify_password("secret1", salt, hashed) is True

    @pytest.mark.parametrize("other", ["secret2", "Secret1", "secret1 ", ""])
    def test_verify_rejects_different_password(self, other: str) -> None:
        salt = generate_salt(ROUNDS)
        hashed = hash_password("secret1", salt)
        assert verify_password(other, salt, hashed) is False

    def test_hash_is_deterministic_for_same_salt(self) -> None:
        salt = generate_salt(ROUNDS)
        assert hash_password("secret1", salt) == hash_password("secret1", salt)

    def test_same_password_different_salts_differ(self) -> None:
        a = hash_password("secret1", generate_salt(ROUNDS))
        b = hash_password("secret1", generate_salt(ROUNDS))
        assert a != b

    def test_salts_are_unique(self) -> None:
        salts = {generate_salt(ROUNDS) for _ in range(20)}
        assert len(salts) == 20

    def test_hash_does_not_contain_plaintext(self) -> None:
        salt = generate_salt(ROUNDS)
        assert "secret1" not in hash_password("secret1", salt)

    def test_long_passwords_distinguished_past_72_bytes(self) -> None:
        """bcrypt alone would ignore everything after byte 72."""
        salt = generate_salt(ROUNDS)
        base = "x" * 90
        hashed = hash_password(base + "a", salt)
        assert verify_password(base + "a", salt, hashed) is True
        assert verify_password(base + "b", salt, hashed) is False

    def test_unicode_password(self) -> None:
        salt = generate_salt(ROUNDS)
        hashed = hash_password("pässwörd✓", salt)
        assert verify_password("pässwörd✓", salt, hashed) is True

    def test_malformed_salt_is_mismatch(self) -> None:
        assert verify_password("secret1", "not-a-salt", "whatever") is False

    def test_wrong_salt_is_mismatch(self) -> None:
        hashed = hash_password("secret1", generate_salt(ROUNDS))
        assert verify_password("secret1", generate_salt(ROUNDS), hashed) is False


class TestPolicy:
    @pytest.mark.parametrize(
        "password, expected",
        [
            ("secret", True),
            ("12345", False),
            ("x" * 100, True),
            ("x" * 101, False),
            ("", False),
            ("      ", False),
            ("  abc  ", False),  # trimmed length 3
            ("  abcdef  ", True),
            (None, False),
        ],
    )
    def test_length_policy(self, password, expected: bool) -> None:
        assert is_valid_password(password) is expected

    def test_custom_bounds(self) -> None:
        assert is_valid_password("abcdefgh", min_length=8, max_length=8) is True
        assert is_valid_password("abcdefg", min_length=8, max_length=8) is False
