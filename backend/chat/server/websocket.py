from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from chat.messaging.encoder import DecodeError, WireFormat, decode
from chat.messaging.protocol import ConnectionProtocol
from chat.messaging.types import ErrorCode, ErrorEvent
from chat.server.rate_limit import DEFAULT_BURST, DEFAULT_RATE, TokenBucket
from shared.errors import TransportError

logger = structlog.get_logger()

if TYPE_CHECKING:
    from chat.messaging.router import MessageRouter
    from chat.session.hub import ChatHub

# Disconnect after this many consecutive decode errors
_MAX_DECODE_ERRORS = 5


class WebSocketConnection(ConnectionProtocol):
    def __init__(
        self,
        websocket: WebSocket,
        wire_format: WireFormat = WireFormat.JSON,
        connection_id: str | None = None,
    ) -> None:
        self._websocket = websocket
        self._wire_format = wire_format
        self._connection_id = connection_id or str(uuid4())
        self._closed = False

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def wire_format(self) -> WireFormat:
        return self._wire_format

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_frame(self, data: str | bytes) -> None:
        try:
            if isinstance(data, bytes):
                await self._websocket.send_bytes(data)
            else:
                await self._websocket.send_text(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._closed = True
            raise TransportError(f"WebSocket send failed: {e!r}") from e

    async def receive_frame(self) -> str | bytes:
        message = await self._websocket.receive()
        if message["type"] == "websocket.disconnect":
            self._closed = True
            raise ConnectionError("WebSocket disconnected")
        if message.get("text") is not None:
            return message["text"]
        if message.get("bytes") is not None:
            return message["bytes"]
        raise ConnectionError(f"Unexpected websocket message type: {message['type']}")

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await self._websocket.close(code=code, reason=reason)


def _requested_format(websocket: WebSocket) -> WireFormat | None:
    raw = websocket.query_params.get("encoding", WireFormat.JSON.value)
    try:
        return WireFormat(raw.lower())
    except ValueError:
        return None


async def websocket_endpoint(
    websocket: WebSocket,
    router: MessageRouter,
    hub: ChatHub,
    *,
    allowed_origin: str | None = None,
) -> None:
    if allowed_origin is not None and websocket.headers.get("origin") != allowed_origin:
        logger.warning("websocket origin rejected", origin=websocket.headers.get("origin"))
        await websocket.close(code=1008, reason="origin_not_allowed")
        return

    wire_format = _requested_format(websocket)
    if wire_format is None:
        await websocket.close(code=4000, reason="invalid_encoding")
        return

    await websocket.accept()

    connection = WebSocketConnection(websocket, wire_format=wire_format)
    structlog.contextvars.bind_contextvars(connection_id=connection.connection_id)
    logger.info("websocket connected", wire_format=wire_format.value)
    await router.handle_connect(connection)

    bucket = TokenBucket(rate=DEFAULT_RATE, burst=DEFAULT_BURST)
    decode_errors = 0

    try:
        while True:
            raw = await connection.receive_frame()
            hub.record_activity(connection.connection_id)

            # Always decode to maintain the malformed-message strike counter.
            try:
                data = decode(raw)
            except DecodeError as e:
                decode_errors += 1
                logger.warning("decode error", error=str(e), strikes=decode_errors)
                await connection.send_message(
                    ErrorEvent(code=ErrorCode.INVALID_MESSAGE, message=str(e)).to_wire(),
                )
                if decode_errors >= _MAX_DECODE_ERRORS:
                    logger.info("too many decode errors, disconnecting")
                    await connection.close(code=4004, reason="too_many_decode_errors")
                    return
                continue

            decode_errors = 0

            if not bucket.consume():
                await connection.send_message(
                    ErrorEvent(code=ErrorCode.RATE_LIMITED, message="Too many messages").to_wire(),
                )
                continue
            await router.handle_message(connection, data)
    except (WebSocketDisconnect, TransportError, RuntimeError, ConnectionError):  # fmt: skip
        pass
    finally:
        logger.info("websocket disconnected")
        await router.handle_disconnect(connection)
        structlog.contextvars.clear_contextvars()
