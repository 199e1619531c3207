"""
Unit tests for core.revocation: blacklist membership and expiry.
"""
import asyncio
import datetime as dt

import pytest

from fitcoach.core.revocation import RevocationRegistry
from fitcoach.core.security import Clock

T0 = dt.datetime(2030, 1, 1, tzinfo=dt.timezone.utc)


class FakeClock(Clock):
    def __init__(self, now):
        self.current = now

    def now(self):
        return self.current


def test_blacklisted_until_ttl_then_dropped():
    clock = FakeClock(T0)
    registry = RevocationRegistry(clock)
    registry.blacklist("tok", dt.timedelta(minutes=10))
    assert registry.is_blacklisted("tok")
    assert not registry.is_blacklisted("other")

    clock.current = T0 + dt.timedelta(minutes=10)
    assert not registry.is_blacklisted("tok")
    assert len(registry) == 0


def test_purge_expired_only_removes_due_entries():
    clock = FakeClock(T0)
    registry = RevocationRegistry(clock)
    registry.blacklist("short", dt.timedelta(minutes=1))
    registry.blacklist("long", dt.timedelta(hours=1))

    clock.current = T0 + dt.timedelta(minutes=5)
    assert registry.purge_expired() == 1
    assert registry.is_blacklisted("long")


def test_reblacklist_extends_entry():
    clock = FakeClock(T0)
    registry = RevocationRegistry(clock)
    registry.blacklist("tok", dt.timedelta(minutes=1))
    registry.blacklist("tok", dt.timedelta(minutes=30))
    clock.current = T0 + dt.timedelta(minutes=5)
    assert registry.is_blacklisted("tok")


@pytest.mark.asyncio
async def test_scheduled_expiry_on_running_loop():
    registry = RevocationRegistry()
    registry.blacklist("tok", dt.timedelta(milliseconds=20))
    assert len(registry) == 1
    await asyncio.sleep(0.1)
    # Dropped by the loop timer, without any lookup
    assert len(registry) == 0
