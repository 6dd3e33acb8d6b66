"""
Credential helpers for authschema.

Provides password hashing and opaque token generation/verification for the
data-access modules:

- Passwords are low-entropy, so they get bcrypt with a configurable cost.
- Reset tokens and personal access token secrets are long random strings;
  only their SHA-256 hash is stored and comparisons are constant-time.
- Remember tokens are random strings stored as issued.
"""

import hashlib
import hmac
import logging
import secrets
from typing import Optional

import bcrypt

from config import get_config

logger = logging.getLogger(__name__)

REMEMBER_TOKEN_BYTES = 30  # 60 hex chars, fits remember_token

# bcrypt only hashes the first 72 bytes; bcrypt 5 rejects longer input
MAX_PASSWORD_BYTES = 72


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def password_too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    rounds = get_config().auth.bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if not hashed or password_too_long(plain):
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


_dummy_hash: Optional[str] = None


def dummy_password_check(plain: str) -> None:
    """Burn one bcrypt verification so unknown accounts take as long as known ones."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = hash_password("authschema_timing_dummy")
    verify_password(plain, _dummy_hash)


# ---------------------------------------------------------------------------
# Opaque tokens
# ---------------------------------------------------------------------------


def generate_token(num_bytes: Optional[int] = None) -> tuple[str, str]:
    """Generate a new random token.

    Returns:
        Tuple of (plain_token, token_hash).
        plain_token is handed out once; token_hash is stored.
    """
    if num_bytes is None:
        num_bytes = get_config().auth.token_random_bytes
    plain = secrets.token_hex(num_bytes)
    return plain, hash_token(plain)


def hash_token(token: str) -> str:
    """Compute the hex SHA-256 hash of a token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def verify_token(token: str, stored_hash: Optional[str]) -> bool:
    """Verify a token against its stored hash (constant-time)."""
    if not stored_hash:
        return False
    return hmac.compare_digest(hash_token(token), stored_hash)


def generate_remember_token() -> str:
    """Generate a value for users.remember_token."""
    return secrets.token_hex(REMEMBER_TOKEN_BYTES)
