# fitcoach/services/credentials.py
"""
Credential store.

Sole owner of the security-sensitive User fields: password hash, role,
tokenVersion and lockout counters. Lookups return ``None`` when the user
does not exist; mutations on a missing user raise NotFound; duplicates
raise DuplicateEmail; transport failures surface as StoreUnavailable.
"""
import datetime as dt
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from tortoise.exceptions import IntegrityError
from tortoise.expressions import F
from tortoise.transactions import in_transaction

from fitcoach.config import settings
from fitcoach.core.db import store_guard
from fitcoach.core.errors import DuplicateEmail, NotFound, ValidationFailed
from fitcoach.core.security import Clock, clock as default_clock
from fitcoach.models.user import ROLES, User

logger = logging.getLogger("fitcoach.security")

REDACTED = "[redacted]"


@dataclass(frozen=True)
class LockoutState:
    """Outcome of recording a failed login."""
    failed_attempts: int
    lockout_until: Optional[dt.datetime]
    locked: bool


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _parse_id(user_id: Any) -> Optional[uuid.UUID]:
    if isinstance(user_id, uuid.UUID):
        return user_id
    try:
        return uuid.UUID(str(user_id))
    except (TypeError, ValueError):
        return None


class CredentialStore:
    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or default_clock

    # ---------- lookups ----------
    async def find_by_id(self, user_id: Any) -> Optional[User]:
        uid = _parse_id(user_id)
        if uid is None:
            return None
        async with store_guard("find_by_id"):
            return await User.get_or_none(id=uid)

    async def find_by_email(self, email: str) -> Optional[User]:
        """Case-insensitive lookup (emails are stored lowercase)."""
        async with store_guard("find_by_email"):
            return await User.get_or_none(email=normalize_email(email))

    async def require(self, user_id: Any) -> User:
        user = await self.find_by_id(user_id)
        if not user:
            raise NotFound("User not found", code="USER_NOT_FOUND")
        return user

    # ---------- creation ----------
    async def create(
        self,
        *,
        first_name: str,
        last_name: str,
        email: str,
        password_hash: str,
        role: str = "user",
        is_email_verified: bool = False,
    ) -> User:
        """
        Create a user.

        Raises:
            DuplicateEmail: The (case-folded) email is already registered
            ValidationFailed: Unknown role
        """
        if role not in ROLES:
            raise ValidationFailed(f"Unknown role: {role}", code="INVALID_ROLE")
        email = normalize_email(email)
        async with store_guard("create_user"):
            if await User.filter(email=email).exists():
                raise DuplicateEmail()
            try:
                return await User.create(
                    first_name=first_name,
                    last_name=last_name,
                    email=email,
                    password_hash=password_hash,
                    role=role,
                    is_email_verified=is_email_verified,
                )
            except IntegrityError as e:
                # Lost a race against a concurrent signup with the same email
                raise DuplicateEmail() from e

    # ---------- token version ----------
    async def update_password(self, user_id: Any, new_hash: str) -> User:
        """Replace the hash and bump tokenVersion in one statement."""
        uid = _parse_id(user_id)
        async with store_guard("update_password"):
            updated = 0
            if uid is not None:
                updated = await User.filter(id=uid).update(
                    password_hash=new_hash,
                    token_version=F("token_version") + 1,
                )
            if not updated:
                raise NotFound("User not found", code="USER_NOT_FOUND")
            user = await User.get(id=uid)
        logger.info("Security event: password_changed | UserId: %s | NewVersion: %s", uid, user.token_version)
        return user

    async def increment_token_version(self, user_id: Any) -> int:
        """Invalidate every token issued so far for ``user_id`` (forced logout)."""
        uid = _parse_id(user_id)
        async with store_guard("increment_token_version"):
            updated = 0
            if uid is not None:
                updated = await User.filter(id=uid).update(token_version=F("token_version") + 1)
            if not updated:
                raise NotFound("User not found", code="USER_NOT_FOUND")
            user = await User.get(id=uid)
        logger.info("Security event: token_version_incremented | UserId: %s | NewVersion: %s", uid, user.token_version)
        return user.token_version

    # ---------- lockout ----------
    async def record_failed_login(self, user_id: Any) -> LockoutState:
        """
        Count a failed login.

        Failures older than the lockout window, or from before an expired
        lockout, do not count. Reaching the threshold locks the account for
        the lockout duration.
        """
        window = dt.timedelta(minutes=settings.lockout_duration_minutes)
        uid = _parse_id(user_id)
        async with store_guard("record_failed_login"):
            async with in_transaction() as conn:
                user = await User.filter(id=uid).select_for_update().using_db(conn).get_or_none() if uid else None
                if not user:
                    raise NotFound("User not found", code="USER_NOT_FOUND")
                now = self._clock.now()
                attempts = user.failed_login_attempts or 0
                if user.lockout_until is not None and user.lockout_until <= now:
                    attempts = 0
                    user.lockout_until = None
                elif user.last_failed_login_at is not None and now - user.last_failed_login_at > window:
                    attempts = 0

                attempts += 1
                user.failed_login_attempts = attempts
                user.last_failed_login_at = now
                if attempts >= settings.lockout_threshold and user.lockout_until is None:
                    user.lockout_until = now + window
                await user.save(
                    update_fields=["failed_login_attempts", "last_failed_login_at", "lockout_until"], using_db=conn
                )

        return LockoutState(
            failed_attempts=attempts,
            lockout_until=user.lockout_until,
            locked=user.lockout_until is not None,
        )

    def is_locked(self, user: User) -> bool:
        return user.lockout_until is not None and user.lockout_until > self._clock.now()

    async def clear_lockout(self, user_id: Any) -> None:
        uid = _parse_id(user_id)
        async with store_guard("clear_lockout"):
            updated = 0
            if uid is not None:
                updated = await User.filter(id=uid).update(
                    failed_login_attempts=0,
                    last_failed_login_at=None,
                    lockout_until=None,
                )
            if not updated:
                raise NotFound("User not found", code="USER_NOT_FOUND")

    async def record_login(self, user_id: Any) -> None:
        """Successful authentication: clear lockout counters and stamp lastLoggedIn."""
        uid = _parse_id(user_id)
        async with store_guard("record_login"):
            await User.filter(id=uid).update(
                failed_login_attempts=0,
                last_failed_login_at=None,
                lockout_until=None,
                last_logged_in=self._clock.now(),
            )

    # ---------- role / profile ----------
    async def set_role(self, user_id: Any, role: str) -> User:
        if role not in ROLES:
            raise ValidationFailed(f"Unknown role: {role}", code="INVALID_ROLE")
        user = await self.require(user_id)
        async with store_guard("set_role"):
            user.role = role
            await user.save(update_fields=["role"])
        return user

    async def count_admins(self) -> int:
        async with store_guard("count_admins"):
            return await User.filter(role="admin", anonymized_at__isnull=True).count()

    async def anonymize(self, user_id: Any) -> User:
        """
        Erase identity fields but keep the row (and its id) so historical
        appointments still resolve. The password becomes unusable and all
        tokens are revoked.
        """
        user = await self.require(user_id)
        async with store_guard("anonymize"):
            async with in_transaction() as conn:
                user.first_name = REDACTED
                user.last_name = REDACTED
                user.email = f"erased-{user.id.hex}@invalid.local"
                user.password_hash = ""
                user.is_email_verified = False
                user.failed_login_attempts = 0
                user.last_failed_login_at = None
                user.lockout_until = None
                user.anonymized_at = self._clock.now()
                await user.save(update_fields=[
                    "first_name", "last_name", "email", "password_hash", "is_email_verified",
                    "failed_login_attempts", "last_failed_login_at", "lockout_until", "anonymized_at",
                ], using_db=conn)
                await User.filter(id=user.id).using_db(conn).update(token_version=F("token_version") + 1)
            await user.refresh_from_db()
        return user


# Global store instance
credential_store = CredentialStore()
