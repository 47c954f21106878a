"""SQLite-backed user and session repositories."""

from __future__ import annotations

import asyncio
import contextlib
import json
import sqlite3
from typing import TYPE_CHECKING

import structlog

from shared.auth.models import AuthSession, User
from shared.dal.user_repository import SessionRepository, UserRepository
from shared.errors import StorageError

if TYPE_CHECKING:
    from shared.db.connection import Database

logger = structlog.get_logger()


def _rollback(db: Database) -> None:
    with contextlib.suppress(sqlite3.Error):
        db.connection.rollback()


class SqliteUserRepository(UserRepository):
    """SQLite implementation of UserRepository.

    Uses a single INSERT under an asyncio lock and relies on the unique
    username index rather than a check-then-insert, mapping IntegrityError
    to ValueError.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._lock = asyncio.Lock()

    async def create_user(self, user: User) -> None:
        """Insert a user. Raises ValueError on duplicate id or username."""
        async with self._lock:
            try:
                self._db.connection.execute(
                    "INSERT INTO users (id, username, data) VALUES (?, ?, ?)",
                    (user.user_id, user.username, user.model_dump_json()),
                )
                self._db.connection.commit()
            except sqlite3.IntegrityError as exc:
                _rollback(self._db)
                error_msg = str(exc).lower()
                if "users.username" in error_msg or "idx_users_username" in error_msg:
                    raise ValueError(f"Username '{user.username}' already taken") from exc
                raise ValueError(f"User with id '{user.user_id}' already exists") from exc
            except sqlite3.Error as exc:
                _rollback(self._db)
                raise StorageError("Failed to store user") from exc

    async def get_by_username(self, username: str) -> User | None:
        """Look up a user by username (case-insensitive)."""
        try:
            row = self._db.connection.execute(
                "SELECT data FROM users WHERE username = ? COLLATE NOCASE",
                (username,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError("Failed to read user") from exc
        if row is None:
            return None
        return User.model_validate(json.loads(row[0]))


class SqliteSessionRepository(SessionRepository):
    """SQLite implementation of SessionRepository."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._lock = asyncio.Lock()

    async def create_session(self, session: AuthSession) -> None:
        async with self._lock:
            try:
                self._db.connection.execute(
                    "INSERT INTO sessions (token_id, user_id, expires_at, data) VALUES (?, ?, ?, ?)",
                    (session.token_id, session.user_id, session.expires_at, session.model_dump_json()),
                )
                self._db.connection.commit()
            except sqlite3.Error as exc:
                _rollback(self._db)
                raise StorageError("Failed to store session") from exc

    async def get_session(self, token_id: str) -> AuthSession | None:
        try:
            row = self._db.connection.execute(
                "SELECT data FROM sessions WHERE token_id = ?",
                (token_id,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError("Failed to read session") from exc
        if row is None:
            return None
        return AuthSession.model_validate(json.loads(row[0]))

    async def delete_session(self, token_id: str) -> None:
        async with self._lock:
            try:
                self._db.connection.execute("DELETE FROM sessions WHERE token_id = ?", (token_id,))
                self._db.connection.commit()
            except sqlite3.Error as exc:
                _rollback(self._db)
                raise StorageError("Failed to delete session") from exc

    async def delete_expired(self, now: float) -> int:
        """Delete every session whose expires_at is in the past. Returns the count removed."""
        async with self._lock:
            try:
                cursor = self._db.connection.execute("DELETE FROM sessions WHERE expires_at < ?", (now,))
                self._db.connection.commit()
            except sqlite3.Error as exc:
                _rollback(self._db)
                raise StorageError("Failed to purge expired sessions") from exc
        return cursor.rowcount
