"""Shared helpers for hub and router tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

from chat.tests.mocks import MockConnection
from shared.auth.models import Identity

if TYPE_CHECKING:
    from chat.session.hub import ChatHub

TEST_TOKEN_SECRET = "test-secret"  # noqa: S105


async def join_user(
    hub: ChatHub,
    username: str = "alice",
    user_id: str | None = None,
    *,
    connection: MockConnection | None = None,
    is_guest: bool = False,
) -> MockConnection:
    """Open a connection and authenticate it straight through the hub."""
    conn = connection or MockConnection()
    await hub.on_connection_opened(conn)
    identity = Identity(user_id=user_id or f"user-{username}", username=username, is_guest=is_guest)
    await hub.on_auth_event(conn, identity)
    return conn


def clear_outboxes(*connections: MockConnection) -> None:
    for conn in connections:
        conn._outbox.clear()
