"""Password hashing utilities.

Learn: Uses bcrypt for secure password hashing. bcrypt automatically
handles salting and is resistant to rainbow table attacks.
The work factor (rounds=12 by default) takes ~100ms per hash on modern
hardware; tests turn it down via EXPENSETRACKER_BCRYPT_ROUNDS.

verify_password is a free function over (stored hash, candidate); it
knows nothing about the User model, so the hashing algorithm can change
without touching the record type.
"""

from functools import lru_cache
from typing import Optional

import bcrypt

from expensetracker.config import settings


def hash_password(password: str) -> str:
    """Hash a password with bcrypt.

    Learn: bcrypt includes a random salt automatically and produces
    hashes starting with "$2b$". Passwords are truncated to 72 bytes
    (bcrypt's limit).
    """
    pw_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password_hash: Optional[str], password: str) -> bool:
    """Check a candidate password against a stored hash.

    Returns False for a missing or malformed hash instead of raising.
    """
    if not password_hash:
        return False
    try:
        pw_bytes = password.encode("utf-8")[:72]
        return bcrypt.checkpw(pw_bytes, password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password("expensetracker-timing-equalizer")


def dummy_verify(password: str) -> bool:
    """Spend one real bcrypt comparison and return False.

    Called when there is no stored hash to compare against (unknown email,
    third-party-only account) so those paths cost the same as a wrong
    password.
    """
    verify_password(_dummy_hash(), password)
    return False
