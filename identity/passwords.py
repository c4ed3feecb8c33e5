"""
identity/passwords.py -- Credential codec: salts, salted hashing, verification.

Security design decisions:
  Salts: bcrypt.gensalt() produces a fresh 128-bit random salt encoded together
       with the cost factor ("$2b$12$..."). The salt is stored on the user
       record next to the hash, so hash_password(plain, salt) is a pure,
       deterministic function of its two inputs.

  Hashing: bcrypt. Its cost factor makes brute-forcing a leaked hash expensive,
       which is the property low-entropy passwords need.

  72-byte limit: bcrypt only looks at the first 72 bytes of its input and
       current releases reject longer input outright. Passwords may be up to
       100 characters of arbitrary UTF-8, so every password is first reduced to
       base64(SHA-256(password)) -- 44 ASCII bytes, no NUL bytes -- before
       bcrypt sees it.

  Verification: recomputes the hash with the stored salt and compares with
       hmac.compare_digest so the comparison time does not depend on where the
       first mismatching byte is.

Password policy is checked by the facade before the codec is ever invoked.
"""

from __future__ import annotations

import base64
import hashlib
import hmac

import bcrypt

DEFAULT_ROUNDS = 12


def generate_salt(rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a fresh, never-reused bcrypt salt."""
    return bcrypt.gensalt(rounds=rounds).decode("ascii")


def _prehash(plain: str) -> bytes:
    return base64.b64encode(hashlib.sha256(plain.encode("utf-8")).digest())


def hash_password(plain: str, salt: str) -> str:
    """Return the salted one-way hash of a password.

    Raises ValueError if salt is not a bcrypt salt.
    """
    return bcrypt.hashpw(_prehash(plain), salt.encode("ascii")).decode("ascii")


def verify_password(plain: str, salt: str, hashed: str) -> bool:
    """Return True if plain hashes to hashed under salt.

    Any malformed salt or hash counts as a mismatch.
    """
    try:
        candidate = hash_password(plain, salt)
    except (ValueError, UnicodeEncodeError):
        return False
    return hmac.compare_digest(candidate.encode("ascii"), hashed.encode("utf-8"))


def is_valid_password(password: str | None, min_length: int = 6, max_length: int = 100) -> bool:
    """Return True if the password satisfies the length policy.

    Surrounding whitespace does not count toward the length and a blank
    password is never valid.
    """
    if password is None or not password.strip():
        return False
    return min_length <= len(password.strip()) <= max_length
