"""
auth/hashing.py -- Password hashing and secret digests.

Two families of secrets, two functions:

  Passwords: bcrypt with a configurable cost (BCRYPT_ROUNDS, default 12).
       Bcrypt is the right choice for low-entropy secrets because its cost
       factor makes brute-force expensive. checkpw compares in constant time.

  Tokens (refresh, password-reset, email-verification): HMAC-SHA256 keyed
       with SECRET_KEY. These are high-entropy random values, so bcrypt's
       slowness buys nothing; a deterministic digest lets the store look a
       token up by its hash in O(1) and lets refresh rotation use the presented
       token's digest as the compare-and-swap expectation. bcrypt would also
       truncate a JWT at 72 bytes -- two refresh tokens sharing a header and
       payload prefix would collide.

Raw secrets are never persisted or logged by anything in this module.

Layer rule: no imports from api/, workspace/, or audit/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

import bcrypt

from core.config import get_settings

_settings = get_settings()


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a salted bcrypt hash of a plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
    password length well below that.
    """
    cost = rounds if rounds is not None else _settings.bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=cost)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash -- treat as a mismatch, not a server error.
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Login always runs bcrypt, even for unknown
# emails, so response time does not reveal which emails are registered.
DUMMY_PASSWORD_HASH: str = hash_password("tasknest_timing_dummy")


def generate_secret_token() -> str:
    """Return 256 bits of randomness as 64 hex characters."""
    return secrets.token_hex(32)


def hash_secret(raw: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode("utf-8"),
        raw.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def secret_matches(raw: str, stored_digest: str | None) -> bool:
    """Compare a raw secret against a stored digest in constant time."""
    if not stored_digest:
        return False
    return hmac.compare_digest(hash_secret(raw), stored_digest)
