"""SQLite-backed message repository."""

from __future__ import annotations

import asyncio
import contextlib
import sqlite3
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from shared.dal.message_repository import MessageRepository
from shared.dal.models import StoredMessage
from shared.errors import StorageError

if TYPE_CHECKING:
    from shared.db.connection import Database

logger = structlog.get_logger()

_COLUMNS = "id, user_id, username, text, timestamp, edited, deleted, edited_at"

# SQLite INTEGER is a signed 64-bit value; larger ids cannot name a row.
MAX_ROW_ID = 2**63 - 1


def _in_row_range(message_id: int) -> bool:
    return 1 <= message_id <= MAX_ROW_ID


def _row_to_message(row: tuple) -> StoredMessage:
    return StoredMessage(
        id=row[0],
        user_id=row[1],
        username=row[2],
        text=row[3],
        timestamp=datetime.fromisoformat(row[4]),
        edited=bool(row[5]),
        deleted=bool(row[6]),
        edited_at=datetime.fromisoformat(row[7]) if row[7] else None,
    )


class SqliteMessageRepository(MessageRepository):
    """SQLite implementation of MessageRepository.

    Message ids come from the AUTOINCREMENT primary key, so they are strictly
    increasing and never reused, even after the newest row is soft-deleted.
    The insert and the read of lastrowid happen under one asyncio lock.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._lock = asyncio.Lock()

    def _rollback(self) -> None:
        with contextlib.suppress(sqlite3.Error):
            self._db.connection.rollback()

    async def append(self, user_id: str, username: str, text: str, timestamp: datetime) -> StoredMessage:
        async with self._lock:
            try:
                cursor = self._db.connection.execute(
                    "INSERT INTO messages (user_id, username, text, timestamp) VALUES (?, ?, ?, ?)",
                    (user_id, username, text, timestamp.isoformat()),
                )
                self._db.connection.commit()
            except sqlite3.Error as exc:
                self._rollback()
                raise StorageError("Failed to store message") from exc
            message_id = cursor.lastrowid
        if message_id is None:  # pragma: no cover
            raise StorageError("Storage did not assign a message id")
        return StoredMessage(id=message_id, user_id=user_id, username=username, text=text, timestamp=timestamp)

    async def get(self, message_id: int) -> StoredMessage | None:
        if not _in_row_range(message_id):
            return None
        try:
            row = self._db.connection.execute(
                f"SELECT {_COLUMNS} FROM messages WHERE id = ?",  # noqa: S608
                (message_id,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError("Failed to read message") from exc
        return _row_to_message(row) if row is not None else None

    async def update_text(self, message_id: int, text: str, edited_at: datetime) -> StoredMessage | None:
        """Replace the text of a live message. Returns None if it is missing or deleted."""
        if not _in_row_range(message_id):
            return None
        async with self._lock:
            try:
                cursor = self._db.connection.execute(
                    "UPDATE messages SET text = ?, edited = 1, edited_at = ? WHERE id = ? AND deleted = 0",
                    (text, edited_at.isoformat(), message_id),
                )
                self._db.connection.commit()
            except sqlite3.Error as exc:
                self._rollback()
                raise StorageError("Failed to edit message") from exc
        if cursor.rowcount == 0:
            return None
        return await self.get(message_id)

    async def mark_deleted(self, message_id: int) -> bool:
        """Soft-delete a live message. Returns False if it is missing or already deleted."""
        if not _in_row_range(message_id):
            return False
        async with self._lock:
            try:
                cursor = self._db.connection.execute(
                    "UPDATE messages SET deleted = 1 WHERE id = ? AND deleted = 0",
                    (message_id,),
                )
                self._db.connection.commit()
            except sqlite3.Error as exc:
                self._rollback()
                raise StorageError("Failed to delete message") from exc
        return cursor.rowcount > 0

    async def recent(self, limit: int) -> list[StoredMessage]:
        """Return up to limit newest live messages, oldest first."""
        try:
            rows = self._db.connection.execute(
                f"SELECT {_COLUMNS} FROM messages WHERE deleted = 0 ORDER BY id DESC LIMIT ?",  # noqa: S608
                (limit,),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError("Failed to read message history") from exc
        # The query walks newest-first; history replays in send order.
        return [_row_to_message(row) for row in reversed(rows)]
