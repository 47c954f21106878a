"""SQLite database layer: connection management and repository implementations."""

from shared.db.connection import Database
from shared.db.message_repository import SqliteMessageRepository
from shared.db.user_repository import SqliteSessionRepository, SqliteUserRepository

__all__ = [
    "Database",
    "SqliteMessageRepository",
    "SqliteSessionRepository",
    "SqliteUserRepository",
]
