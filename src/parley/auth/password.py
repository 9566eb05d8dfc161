"""Password hashing utilities.

Learn: bcrypt salts automatically and is deliberately slow. The work
factor comes from settings (12 in production, lowered in tests).
Passwords are truncated to 72 bytes, bcrypt's input limit.
"""

import bcrypt

from parley.config import settings


def hash_password(password: str) -> str:
    pw_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    """False for a wrong password, a missing hash or a malformed hash."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(
            password.encode("utf-8")[:72], password_hash.encode("utf-8")
        )
    except (ValueError, TypeError):
        return False
