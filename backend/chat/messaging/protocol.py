"""Abstract connection protocol shared by the websocket transport and test doubles."""

from abc import ABC, abstractmethod
from typing import Any

from chat.messaging.encoder import WireFormat, decode, encode
from shared.errors import TransportError

# Errors a transport may raise on send once the peer is gone.
TRANSPORT_ERRORS = (TransportError, ConnectionError, RuntimeError, OSError)


class ConnectionProtocol(ABC):
    """
    Abstract interface for a client connection.

    This abstraction allows the hub and router to be tested without real
    WebSocket connections. Each connection picks one wire format when it
    opens; every frame sent to it uses that format.
    """

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """Unique identifier for this connection."""
        ...

    @property
    def wire_format(self) -> WireFormat:
        return WireFormat.JSON

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """False once the connection has been closed from either side."""
        ...

    @abstractmethod
    async def send_frame(self, data: str | bytes) -> None:
        """
        Send one already-encoded frame to the client.

        Raises TransportError if the transport is gone.
        """
        ...

    @abstractmethod
    async def receive_frame(self) -> str | bytes:
        """
        Receive one raw frame from the client.

        Raises ConnectionError when the client disconnects.
        """
        ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        """
        Close the connection.
        """
        ...

    async def send_message(self, data: dict[str, Any]) -> None:
        """
        Encode a message in this connection's wire format and send it.
        """
        await self.send_frame(encode(data, self.wire_format))

    async def receive_message(self) -> dict[str, Any]:
        """
        Receive a message from the client and decode it.
        """
        raw = await self.receive_frame()
        return decode(raw)
