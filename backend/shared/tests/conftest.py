from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from shared.auth.models import User
from shared.db import Database, SqliteMessageRepository, SqliteSessionRepository, SqliteUserRepository

if TYPE_CHECKING:
    from pathlib import Path

FAKE_BCRYPT_HASH = "$2b$12$fakehash"


def make_user(user_id: str = "u1", username: str = "alice") -> User:
    return User(user_id=user_id, username=username, password_hash=FAKE_BCRYPT_HASH)


@pytest.fixture
def db(tmp_path: Path):
    database = Database(tmp_path / "chat.db")
    database.connect()
    yield database
    database.close()


@pytest.fixture
def user_repo(db: Database) -> SqliteUserRepository:
    return SqliteUserRepository(db)


@pytest.fixture
def session_repo(db: Database) -> SqliteSessionRepository:
    return SqliteSessionRepository(db)


@pytest.fixture
def message_repo(db: Database) -> SqliteMessageRepository:
    return SqliteMessageRepository(db)
