from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from chat.messaging.router import MessageRouter
from chat.server.app import create_app
from chat.server.settings import ChatServerSettings
from chat.session.hub import ChatHub
from chat.session.message_store import MessageStore
from chat.tests.helpers import TEST_TOKEN_SECRET
from chat.tests.mocks import MockConnection
from shared.auth.password import SimpleHasher
from shared.auth.service import CredentialService
from shared.auth.session_store import SessionStore
from shared.auth.settings import AuthSettings
from shared.db import Database, SqliteMessageRepository, SqliteSessionRepository, SqliteUserRepository

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def db(tmp_path: Path):
    database = Database(tmp_path / "chat.db")
    database.connect()
    yield database
    database.close()


@pytest.fixture
def message_store(db):
    return MessageStore(SqliteMessageRepository(db))


@pytest.fixture
async def hub(message_store):
    chat_hub = ChatHub(message_store)
    yield chat_hub
    await chat_hub.close_all()


@pytest.fixture
def credentials(db):
    return CredentialService(
        SqliteUserRepository(db),
        SessionStore(SqliteSessionRepository(db)),
        password_hasher=SimpleHasher(),
        token_secret=TEST_TOKEN_SECRET,
    )


@pytest.fixture
def message_router(hub, credentials):
    return MessageRouter(hub, credentials)


@pytest.fixture
def mock_connection():
    return MockConnection()


@pytest.fixture
def chat_settings():
    return ChatServerSettings(cors_origins=["http://testserver"], heartbeat_interval_seconds=3600)


@pytest.fixture
def auth_settings(tmp_path: Path):
    return AuthSettings(
        token_secret=TEST_TOKEN_SECRET,
        password_hasher="simple",
        database_path=str(tmp_path / "app.db"),
    )


@pytest.fixture
def app(chat_settings, auth_settings):
    return create_app(settings=chat_settings, auth_settings=auth_settings)
