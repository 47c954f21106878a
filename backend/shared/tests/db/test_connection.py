"""Tests for Database connection and schema."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from shared.db.connection import Database

if TYPE_CHECKING:
    from pathlib import Path

_TABLES_SQL = "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"


def _table_names(db: Database) -> set[str]:
    return {row[0] for row in db.connection.execute(_TABLES_SQL).fetchall()}


class TestConnect:
    def test_creates_schema_and_connects(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        db.connect()

        assert {"users", "sessions", "messages"} <= _table_names(db)
        assert db.is_connected
        db.close()

    def test_in_memory_database(self) -> None:
        db = Database(":memory:")
        db.connect()
        assert "messages" in _table_names(db)
        db.close()

    def test_reconnect_after_close(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        db.connect()
        db.connection.execute(
            "INSERT INTO messages (user_id, username, text, timestamp) VALUES ('u1', 'alice', 'hi', '2025-01-01')",
        )
        db.connection.commit()
        db.close()
        db.connect()

        row = db.connection.execute("SELECT COUNT(*) FROM messages").fetchone()
        assert row[0] == 1
        db.close()

    def test_connection_raises_when_disconnected(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        assert not db.is_connected
        with pytest.raises(RuntimeError, match="not connected"):
            _ = db.connection

    def test_connection_raises_after_close(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        db.connect()
        db.close()
        with pytest.raises(RuntimeError, match="not connected"):
            _ = db.connection

    def test_close_twice_is_harmless(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        db.connect()
        db.close()
        db.close()

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "nested" / "dir" / "test.db")
        db.connect()
        assert db.connection is not None
        db.close()

    def test_foreign_keys_enforced(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        db.connect()
        row = db.connection.execute("PRAGMA foreign_keys").fetchone()
        assert row[0] == 1
        db.close()


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions only")
class TestPermissions:
    def test_db_file_has_restricted_permissions(self, tmp_path: Path) -> None:
        db_path = tmp_path / "test.db"
        db = Database(db_path)
        db.connect()

        mode = db_path.stat().st_mode & 0o777
        assert mode == 0o600
        db.close()

    def test_harden_permissions_warns_on_failure(self, tmp_path: Path) -> None:
        db_path = tmp_path / "test.db"
        db = Database(db_path)
        with patch("pathlib.Path.chmod", side_effect=OSError("permission denied")):
            db.connect()
        assert db.connection is not None
        db.close()
