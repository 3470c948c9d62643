"""Password hashing and verification (bcrypt, per-hash salt)."""

from functools import lru_cache

import bcrypt

from app.core.config import settings

# Min/max lengths for username and password validation (BSIMM / input validation).
USERNAME_MIN_LEN = 1
USERNAME_MAX_LEN = 255
PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 128
# Login only bounds request size; a value outside the signup limits is just a bad credential.
LOGIN_INPUT_MAX_LEN = 1024

# bcrypt only reads the first 72 bytes of its input.
BCRYPT_MAX_BYTES = 72


def _password_bytes(plain_password: str) -> bytes:
    return plain_password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(plain_password: str, rounds: int | None = None) -> str:
    """Hash a plain-text password for storage. Do not store plain passwords."""
    cost = rounds if rounds is not None else settings.BCRYPT_ROUNDS
    return bcrypt.hashpw(_password_bytes(plain_password), bcrypt.gensalt(rounds=cost)).decode(
        "utf-8"
    )


def verify_password(plain_password: str, hashed: str) -> bool:
    """Verify a plain password against a stored hash. Never raises on a bad hash."""
    try:
        return bcrypt.checkpw(_password_bytes(plain_password), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


@lru_cache
def dummy_password_hash() -> str:
    """Hash compared against when the username is unknown, so timing matches a real check."""
    return hash_password("dummy-password-never-matches")
