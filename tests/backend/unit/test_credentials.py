"""
Unit tests for services.credentials against an in-memory database.
"""
import datetime as dt
import uuid

import pytest

from fitcoach.config import settings
from fitcoach.core.errors import DuplicateEmail, NotFound, ValidationFailed
from fitcoach.core.security import verify_password
from fitcoach.services.credentials import REDACTED, credential_store

pytestmark = pytest.mark.asyncio

T0 = dt.datetime(2030, 1, 1, 8, 0, tzinfo=dt.timezone.utc)


async def _new_user(email="Member@Example.com", role="user"):
    return await credential_store.create(
        first_name="Mem", last_name="Ber", email=email, password_hash="x", role=role,
    )


async def test_create_lowercases_email_and_lookup_is_case_insensitive(db):
    user = await _new_user()
    assert user.email == "member@example.com"
    found = await credential_store.find_by_email("MEMBER@example.COM")
    assert found is not None and found.id == user.id


async def test_duplicate_email_is_rejected(db):
    await _new_user()
    with pytest.raises(DuplicateEmail):
        await _new_user(email="member@EXAMPLE.com")


async def test_unknown_role_is_rejected(db):
    with pytest.raises(ValidationFailed):
        await _new_user(role="superuser")


async def test_find_by_id_handles_missing_and_malformed_ids(db):
    assert await credential_store.find_by_id(uuid.uuid4()) is None
    assert await credential_store.find_by_id("not-a-uuid") is None


async def test_increment_token_version_is_monotonic(db):
    user = await _new_user()
    assert await credential_store.increment_token_version(user.id) == 1
    assert await credential_store.increment_token_version(str(user.id)) == 2


async def test_increment_token_version_missing_user(db):
    with pytest.raises(NotFound):
        await credential_store.increment_token_version(uuid.uuid4())


async def test_update_password_bumps_version(db):
    user = await _new_user()
    updated = await credential_store.update_password(user.id, "new-hash")
    assert updated.password_hash == "new-hash"
    assert updated.token_version == user.token_version + 1


async def test_failed_logins_lock_at_threshold(db, frozen_now):
    frozen_now(T0)
    user = await _new_user()
    for i in range(1, settings.lockout_threshold):
        state = await credential_store.record_failed_login(user.id)
        assert state.failed_attempts == i
        assert not state.locked

    state = await credential_store.record_failed_login(user.id)
    assert state.locked
    assert state.lockout_until == T0 + dt.timedelta(minutes=settings.lockout_duration_minutes)

    user = await credential_store.find_by_id(user.id)
    assert credential_store.is_locked(user)


async def test_lockout_expires_and_counter_restarts(db, frozen_now):
    set_now = frozen_now(T0)
    user = await _new_user()
    for _ in range(settings.lockout_threshold):
        await credential_store.record_failed_login(user.id)

    set_now(T0 + dt.timedelta(minutes=settings.lockout_duration_minutes))
    user = await credential_store.find_by_id(user.id)
    assert not credential_store.is_locked(user)

    state = await credential_store.record_failed_login(user.id)
    assert state.failed_attempts == 1
    assert not state.locked


async def test_stale_failures_do_not_count(db, frozen_now):
    set_now = frozen_now(T0)
    user = await _new_user()
    await credential_store.record_failed_login(user.id)
    await credential_store.record_failed_login(user.id)

    set_now(T0 + dt.timedelta(minutes=settings.lockout_duration_minutes + 1))
    state = await credential_store.record_failed_login(user.id)
    assert state.failed_attempts == 1


async def test_record_login_clears_counters(db, frozen_now):
    frozen_now(T0)
    user = await _new_user()
    for _ in range(settings.lockout_threshold):
        await credential_store.record_failed_login(user.id)
    await credential_store.record_login(user.id)

    user = await credential_store.find_by_id(user.id)
    assert user.failed_login_attempts == 0
    assert user.lockout_until is None
    assert user.last_logged_in == T0


async def test_clear_lockout(db, frozen_now):
    frozen_now(T0)
    user = await _new_user()
    for _ in range(settings.lockout_threshold):
        await credential_store.record_failed_login(user.id)
    await credential_store.clear_lockout(user.id)
    user = await credential_store.find_by_id(user.id)
    assert not credential_store.is_locked(user)


async def test_set_role_and_count_admins(db):
    user = await _new_user()
    assert await credential_store.count_admins() == 0
    await credential_store.set_role(user.id, "admin")
    assert await credential_store.count_admins() == 1
    with pytest.raises(ValidationFailed):
        await credential_store.set_role(user.id, "root")


async def test_anonymize_keeps_id_and_revokes(db):
    user = await credential_store.create(
        first_name="Erase", last_name="Me", email="erase@example.com", password_hash="$argon2id$fake",
    )
    erased = await credential_store.anonymize(user.id)

    assert erased.id == user.id
    assert erased.first_name == REDACTED
    assert erased.email.startswith("erased-") and erased.email.endswith("@invalid.local")
    assert erased.password_hash == ""
    assert erased.token_version == user.token_version + 1
    assert erased.anonymized_at is not None
    assert not verify_password("anything", erased.password_hash)
    assert await credential_store.find_by_email("erase@example.com") is None
