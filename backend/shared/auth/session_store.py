"""Persisted session store with periodic expiry cleanup."""

import asyncio
import contextlib
import time

import structlog

from shared.auth.models import AuthSession
from shared.auth.session_token import new_token_id
from shared.dal.user_repository import SessionRepository
from shared.errors import StorageError

CLEANUP_INTERVAL_SECONDS = 300  # 5 minutes
DEFAULT_SESSION_TTL_SECONDS = 30 * 86400

logger = structlog.get_logger()


class SessionStore:
    """Session rows backed by a SessionRepository.

    Sessions survive restarts. Expired rows are rejected on read and purged
    by a background task; call start_cleanup() on app startup and
    stop_cleanup() on shutdown.
    """

    def __init__(self, repository: SessionRepository, ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS) -> None:
        self._repository = repository
        self._ttl_seconds = ttl_seconds
        self._cleanup_task: asyncio.Task[None] | None = None

    async def create_session(self, user_id: str, username: str) -> AuthSession:
        now = time.time()
        session = AuthSession(
            token_id=new_token_id(),
            user_id=user_id,
            username=username,
            created_at=now,
            expires_at=now + self._ttl_seconds,
        )
        await self._repository.create_session(session)
        return session

    async def get_session(self, token_id: str) -> AuthSession | None:
        """Return a non-expired session, or None. Expired rows are deleted on sight."""
        session = await self._repository.get_session(token_id)
        if session is None:
            return None
        if time.time() > session.expires_at:
            await self._repository.delete_session(token_id)
            return None
        return session

    async def delete_session(self, token_id: str) -> None:
        await self._repository.delete_session(token_id)

    async def cleanup_expired(self) -> int:
        count = await self._repository.delete_expired(time.time())
        if count:
            logger.info("cleaned up expired sessions", count=count)
        return count

    def start_cleanup(self) -> None:
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop_cleanup(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

    async def _cleanup_loop(self) -> None:  # pragma: no cover - long-running background loop
        while True:
            await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
            try:
                await self.cleanup_expired()
            except StorageError:
                logger.exception("session cleanup failed")
