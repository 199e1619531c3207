# fitcoach/core/security.py
"""
Clock and identity source.
Provides the wall clock, secure random bytes and password hashing used by
the credential store and token service.
"""
import asyncio
import datetime as dt
import secrets

from passlib.context import CryptContext

# Password hashing context
# Argon2 is adaptive and salts every hash individually; verify() compares in constant time
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
)


class Clock:
    """
    Time and randomness for the security core.

    A single module-level instance is shared; tests replace ``now`` on it
    to move time forward without sleeping.
    """

    def now(self) -> dt.datetime:
        """Current UTC time (timezone-aware)."""
        return dt.datetime.now(dt.timezone.utc)

    def random_bytes(self, n: int) -> bytes:
        return secrets.token_bytes(n)

    def random_token(self, n: int = 16) -> str:
        """URL-safe random string built from ``n`` random bytes."""
        return secrets.token_urlsafe(n)


clock = Clock()


def hash_password(plain: str) -> str:
    """
    Hash a plain text password using Argon2.

    Args:
        plain: Plain text password to hash

    Returns:
        Hashed password string (safe to store in database)
    """
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str | None) -> bool:
    """
    Verify a plain text password against a stored hash.

    Returns False for empty or unrecognised hashes (e.g. an erased account)
    instead of raising.
    """
    if not hashed:
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


async def hash_password_async(plain: str) -> str:
    # Argon2 is CPU bound; keep the event loop free while it runs
    return await asyncio.to_thread(hash_password, plain)


async def verify_password_async(plain: str, hashed: str | None) -> bool:
    return await asyncio.to_thread(verify_password, plain, hashed)
