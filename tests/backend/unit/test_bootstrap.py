"""
Unit tests for core.bootstrap.ensure_default_admin.
"""
import pytest

from fitcoach.core.bootstrap import ensure_default_admin
from fitcoach.core.security import verify_password
from fitcoach.models.user import User
from fitcoach.services.credentials import credential_store

pytestmark = pytest.mark.asyncio


async def test_creates_admin_when_none_exists(db, monkeypatch):
    monkeypatch.setenv("ADMIN_EMAIL", "boss@example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "Bootstrap#123")

    await ensure_default_admin()

    admin = await credential_store.find_by_email("boss@example.com")
    assert admin is not None and admin.role == "admin"
    assert verify_password("Bootstrap#123", admin.password_hash)


async def test_skips_without_password(db, monkeypatch):
    monkeypatch.delenv("ADMIN_PASSWORD", raising=False)
    await ensure_default_admin()
    assert not await User.filter(role="admin").exists()


async def test_existing_account_with_admin_email_is_not_promoted(db, monkeypatch):
    squatter = await credential_store.create(
        first_name="Not", last_name="Admin", email="boss@example.com", password_hash="x", role="user",
    )
    monkeypatch.setenv("ADMIN_EMAIL", "boss@example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "Bootstrap#123")

    await ensure_default_admin()

    await squatter.refresh_from_db()
    assert squatter.role == "user"
    admin = await User.get(role="admin")
    assert admin.email == "boss2@example.com"
    assert verify_password("Bootstrap#123", admin.password_hash)


async def test_noop_when_admin_present(db, monkeypatch, create_admin):
    await create_admin()
    monkeypatch.setenv("ADMIN_EMAIL", "boss@example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "Bootstrap#123")

    await ensure_default_admin()

    assert await User.filter(role="admin").count() == 1
    assert await credential_store.find_by_email("boss@example.com") is None
