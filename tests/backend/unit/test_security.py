"""
Unit tests for core.security module.
Tests password hashing and the shared clock.
"""
import datetime as dt

import pytest

from fitcoach.core.security import (
    Clock,
    hash_password,
    hash_password_async,
    verify_password,
    verify_password_async,
)


class TestPasswordHashing:
    """Tests for password hashing and verification."""

    def test_hash_password_returns_different_hash_each_time(self):
        """Password hashing should produce different hashes (salt included)."""
        password = "TestPassword123"
        assert hash_password(password) != hash_password(password)

    def test_hash_is_argon2_not_plain_text(self):
        hashed = hash_password("TestPassword123")
        assert hashed.startswith("$argon2")
        assert "TestPassword123" not in hashed

    def test_verify_password_correct_and_incorrect(self):
        hashed = hash_password("TestPassword123")
        assert verify_password("TestPassword123", hashed) is True
        assert verify_password("WrongPassword456", hashed) is False

    def test_verify_password_empty_hash_is_false(self):
        """Erased accounts have an empty hash; nothing may verify against it."""
        assert verify_password("anything", "") is False
        assert verify_password("anything", None) is False

    def test_verify_password_garbage_hash_is_false(self):
        assert verify_password("anything", "not-a-hash") is False

    @pytest.mark.asyncio
    async def test_async_wrappers(self):
        hashed = await hash_password_async("AsyncPass123")
        assert await verify_password_async("AsyncPass123", hashed) is True
        assert await verify_password_async("nope", hashed) is False


class TestClock:
    def test_now_is_timezone_aware_utc(self):
        now = Clock().now()
        assert now.tzinfo is not None
        assert now.utcoffset() == dt.timedelta(0)

    def test_random_bytes_length(self):
        assert len(Clock().random_bytes(32)) == 32

    def test_random_tokens_are_unique(self):
        c = Clock()
        assert len({c.random_token() for _ in range(50)}) == 50
