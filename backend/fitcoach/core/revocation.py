# fitcoach/core/revocation.py
"""
Revocation registry.
Process-local blacklist of explicitly revoked token strings (logout). The
per-user tokenVersion floor lives on the User row, not here, so a restart
never resurrects a token invalidated by a password change.
"""
import asyncio
import datetime as dt
import logging
from typing import Dict, Optional

from fitcoach.core.security import Clock, clock as default_clock

logger = logging.getLogger("fitcoach.security")

DEFAULT_TTL = dt.timedelta(hours=1)


class RevocationRegistry:
    """
    Last-writer-wins set of blacklisted tokens with scheduled expiry.

    Each entry is dropped once ``now >= drop_after``: by a timer on the
    running event loop when one exists, and lazily on lookup otherwise.
    In a multi-instance deployment this should be backed by a shared
    key-value store; here it is best-effort per process.
    """

    def __init__(self, clock: Optional[Clock] = None):
        # token string -> drop_after
        self._entries: Dict[str, dt.datetime] = {}
        self._clock = clock or default_clock

    def blacklist(self, token: str, ttl: dt.timedelta = DEFAULT_TTL) -> None:
        """
        Revoke ``token`` for ``ttl`` (defaults to the token lifetime).

        Args:
            token: Raw bearer token string
            ttl: How long the entry is kept; after that the token has expired anyway
        """
        drop_after = self._clock.now() + ttl
        self._entries[token] = drop_after
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # No loop: rely on lazy purge in is_blacklisted()
        loop.call_later(max(ttl.total_seconds(), 0), self._drop_if_due, token, drop_after)

    def _drop_if_due(self, token: str, drop_after: dt.datetime) -> None:
        # A later blacklist() of the same token replaced the entry; its own timer handles it
        if self._entries.get(token) == drop_after:
            del self._entries[token]

    def is_blacklisted(self, token: str) -> bool:
        drop_after = self._entries.get(token)
        if drop_after is None:
            return False
        if self._clock.now() >= drop_after:
            self._entries.pop(token, None)
            return False
        return True

    def purge_expired(self) -> int:
        """Drop every entry that is due; returns how many were removed."""
        now = self._clock.now()
        due = [t for t, drop_after in self._entries.items() if now >= drop_after]
        for t in due:
            del self._entries[t]
        if due:
            logger.debug("[revocation] purged %d expired entries", len(due))
        return len(due)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# Global registry instance (singleton pattern)
revocation_registry = RevocationRegistry()
