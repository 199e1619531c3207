import datetime as dt
import os
import uuid

# Settings are read at import time: configure the environment first
os.environ.setdefault("ENV", "test")
os.environ["JWT_SECRET"] = "test-secret-do-not-use-in-production"
os.environ["DATABASE_URL"] = "sqlite://:memory:"
os.environ["AUDIT_PERSIST"] = "true"
os.environ.pop("ALERT_WEBHOOK_URL", None)

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from tortoise import Tortoise

from fitcoach.core import db as db_module
from fitcoach.core.revocation import revocation_registry
from fitcoach.core.security import clock, hash_password
from fitcoach.main import app
from fitcoach.models.user import User
from fitcoach.services.audit import audit_sink


TEST_DB_URL = "sqlite://:memory:"
db_module.DB_URL = TEST_DB_URL
db_module.TORTOISE_ORM["connections"]["default"] = TEST_DB_URL

# Argon2 is slow; hash the shared fixture password once
DEFAULT_PASSWORD = "Passw0rd!23"
_DEFAULT_HASH = hash_password(DEFAULT_PASSWORD)


async def _init_test_db() -> None:
    """
    Initialize a clean in-memory SQLite database for every test.
    Ensures tables are recreated from scratch.
    """
    if Tortoise._inited:
        await Tortoise.close_connections()
    await Tortoise.init(config=db_module.TORTOISE_ORM)
    await Tortoise.generate_schemas()


@pytest_asyncio.fixture
async def db():
    """Fresh database plus clean process-local state (blacklist, audit counters)."""
    await _init_test_db()
    revocation_registry.clear()
    audit_sink.reset_stats()
    yield
    await audit_sink.drain()
    await Tortoise.close_connections()


@pytest_asyncio.fixture
async def client(db):
    """
    Provide an HTTPX AsyncClient bound to the FastAPI app with a fresh DB.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client


@pytest.fixture
def frozen_now(monkeypatch):
    """
    Freeze the shared clock; returns a setter to move time.

    Usage:
        set_now = frozen_now(dt.datetime(2030, 1, 1, tzinfo=dt.timezone.utc))
        set_now(later)
    """
    state = {}

    def _set(moment: dt.datetime):
        state["now"] = moment
        return _set

    monkeypatch.setattr(clock, "now", lambda: state["now"])
    return _set


async def _make_user(role: str, password: str, **fields) -> tuple[User, str]:
    tag = uuid.uuid4().hex[:6]
    user = await User.create(
        first_name=fields.pop("first_name", role.capitalize()),
        last_name=fields.pop("last_name", tag),
        email=fields.pop("email", f"{role}_{tag}@example.com"),
        password_hash=_DEFAULT_HASH if password == DEFAULT_PASSWORD else hash_password(password),
        role=role,
        **fields,
    )
    return user, password


@pytest_asyncio.fixture
async def create_user(db):
    """
    Factory fixture to create regular users directly via ORM.
    """

    async def _create_user(password: str = DEFAULT_PASSWORD, **fields) -> tuple[User, str]:
        return await _make_user("user", password, **fields)

    return _create_user


@pytest_asyncio.fixture
async def create_trainer(db):
    async def _create_trainer(password: str = DEFAULT_PASSWORD, **fields) -> tuple[User, str]:
        return await _make_user("trainer", password, **fields)

    return _create_trainer


@pytest_asyncio.fixture
async def create_admin(db):
    """
    Factory fixture to create admin users directly via ORM for privileged endpoints.
    """

    async def _create_admin(password: str = DEFAULT_PASSWORD, **fields) -> tuple[User, str]:
        return await _make_user("admin", password, **fields)

    return _create_admin


@pytest_asyncio.fixture
async def auth_header_factory(client):
    """
    Helper fixture to obtain Authorization headers via the login endpoint.
    """

    async def _get_headers(email: str, password: str = DEFAULT_PASSWORD) -> dict[str, str]:
        resp = await client.post(
            "/api/v1/auth/login",
            json={"email": email, "password": password},
        )
        assert resp.status_code == 200, resp.text
        token = resp.json()["token"]
        return {"Authorization": f"Bearer {token}"}

    return _get_headers
