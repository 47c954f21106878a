from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat.messaging.protocol import ConnectionProtocol
    from shared.auth.models import Identity


class ConnectionState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


@dataclass
class ConnectionRecord:
    """Hub-side registry entry for one transport connection.

    Lifecycle:
    - Created UNAUTHENTICATED when the transport opens
    - AUTHENTICATED at most once, when a join succeeds (identity is set)
    - CLOSED on the close path; the record is then dropped from the registry

    Liveness is tracked here rather than on the transport: awaiting_pong is
    set when a probe goes out and cleared by any inbound frame.
    """

    connection: ConnectionProtocol
    state: ConnectionState = ConnectionState.UNAUTHENTICATED
    identity: Identity | None = None
    awaiting_pong: bool = False

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED
