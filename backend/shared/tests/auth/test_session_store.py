"""Tests for the persisted SessionStore."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import pytest

from shared.auth.session_store import SessionStore
from shared.errors import StorageError
from shared.tests.conftest import make_user

if TYPE_CHECKING:
    from shared.db import SqliteSessionRepository, SqliteUserRepository


@pytest.fixture
async def store(user_repo: SqliteUserRepository, session_repo: SqliteSessionRepository) -> SessionStore:
    await user_repo.create_user(make_user("u1", "alice"))
    await user_repo.create_user(make_user("u2", "bob"))
    return SessionStore(session_repo, ttl_seconds=3600)


class TestCreateSession:
    async def test_creates_session_with_correct_fields(self, store: SessionStore):
        session = await store.create_session("u1", "alice")

        assert session.user_id == "u1"
        assert session.username == "alice"
        assert session.token_id
        assert session.expires_at == pytest.approx(session.created_at + 3600)

    async def test_sessions_have_unique_ids(self, store: SessionStore):
        s1 = await store.create_session("u1", "alice")
        s2 = await store.create_session("u1", "alice")
        assert s1.token_id != s2.token_id

    async def test_session_survives_new_store_instance(self, store: SessionStore, session_repo):
        session = await store.create_session("u1", "alice")

        reloaded = SessionStore(session_repo)
        assert await reloaded.get_session(session.token_id) == session


class TestGetSession:
    async def test_returns_none_for_unknown_id(self, store: SessionStore):
        assert await store.get_session("nonexistent") is None

    async def test_expired_session_is_deleted_on_read(self, store: SessionStore, session_repo):
        session = await store.create_session("u1", "alice")

        with patch("shared.auth.session_store.time") as mock_time:
            mock_time.time.return_value = session.expires_at + 1
            assert await store.get_session(session.token_id) is None

        assert await session_repo.get_session(session.token_id) is None


class TestDeleteSession:
    async def test_removes_only_that_session(self, store: SessionStore):
        keep = await store.create_session("u1", "alice")
        drop = await store.create_session("u1", "alice")

        await store.delete_session(drop.token_id)

        assert await store.get_session(drop.token_id) is None
        assert await store.get_session(keep.token_id) is not None

    async def test_unknown_id_is_noop(self, store: SessionStore):
        await store.delete_session("nonexistent")


class TestCleanup:
    async def test_cleanup_removes_only_expired(self, store: SessionStore):
        with patch("shared.auth.session_store.time") as mock_time:
            mock_time.time.return_value = 1_000.0
            stale = await store.create_session("u2", "bob")
        fresh = await store.create_session("u1", "alice")

        assert await store.cleanup_expired() == 1
        assert await store.get_session(fresh.token_id) is not None
        assert await store.get_session(stale.token_id) is None

    async def test_start_and_stop_cleanup_task(self, store: SessionStore):
        store.start_cleanup()
        task = store._cleanup_task
        assert task is not None
        assert not task.done()

        store.start_cleanup()
        assert store._cleanup_task is task

        await store.stop_cleanup()
        assert store._cleanup_task is None
        assert task.cancelled()

    async def test_cleanup_loop_survives_storage_errors(self, store: SessionStore):
        calls = 0

        async def flaky_cleanup() -> int:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise StorageError("disk I/O error")
            return 0

        with (
            patch("shared.auth.session_store.CLEANUP_INTERVAL_SECONDS", 0),
            patch.object(store, "cleanup_expired", AsyncMock(side_effect=flaky_cleanup)),
        ):
            store.start_cleanup()
            for _ in range(20):
                await asyncio.sleep(0)
                if calls >= 2:
                    break
            await store.stop_cleanup()

        assert calls >= 2

