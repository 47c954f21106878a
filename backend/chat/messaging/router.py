from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from chat.messaging.protocol import TRANSPORT_ERRORS
from chat.messaging.types import (
    ChatMessage,
    DeleteMessage,
    EditMessage,
    ErrorCode,
    ErrorEvent,
    JoinMessage,
    PingMessage,
    PongMessage,
    TypingMessage,
    parse_client_message,
)
from shared.errors import AlreadyAuthenticatedError, AuthError, StorageError
from shared.errors import ValidationError as InputValidationError

if TYPE_CHECKING:
    from chat.messaging.protocol import ConnectionProtocol
    from chat.session.hub import ChatHub
    from shared.auth.models import Identity
    from shared.auth.service import CredentialService

logger = structlog.get_logger()


class MessageRouter:
    """
    Routes decoded client frames to the hub.

    Parses each frame into a typed client message and resolves join
    credentials before handing off. Contains no transport code, so it can be
    tested without real WebSocket connections.
    """

    def __init__(self, hub: ChatHub, credentials: CredentialService, *, allow_guests: bool = True) -> None:
        self._hub = hub
        self._credentials = credentials
        self._allow_guests = allow_guests

    async def handle_connect(self, connection: ConnectionProtocol) -> None:
        await self._hub.on_connection_opened(connection)

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        await self._hub.on_connection_closed(connection)

    async def handle_message(
        self,
        connection: ConnectionProtocol,
        raw_message: dict[str, Any],
    ) -> None:
        self._hub.record_activity(connection.connection_id)
        try:
            message = parse_client_message(raw_message)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning("invalid message", connection_id=connection.connection_id, error=str(e))
            await self._send_error(connection, ErrorCode.INVALID_MESSAGE, _describe(e))
            return

        if isinstance(message, JoinMessage):
            await self._handle_join(connection, message)
        elif isinstance(message, ChatMessage):
            await self._hub.on_chat_event(connection, message.text)
        elif isinstance(message, EditMessage):
            await self._hub.on_edit_event(connection, message.message_id, message.text)
        elif isinstance(message, DeleteMessage):
            await self._hub.on_delete_event(connection, message.message_id)
        elif isinstance(message, TypingMessage):
            await self._hub.on_typing_event(connection, is_typing=message.is_typing)
        elif isinstance(message, PingMessage):
            await self._hub.on_ping(connection)
        elif isinstance(message, PongMessage):
            await self._hub.on_pong(connection)

    async def _handle_join(self, connection: ConnectionProtocol, message: JoinMessage) -> None:
        """Resolve the join credential, then let the hub admit or reject the connection."""
        if self._hub.is_authenticated(connection.connection_id):
            error = AlreadyAuthenticatedError("Connection is already authenticated")
            await self._send_error(connection, ErrorCode(error.code), error.message)
            return
        try:
            identity = await self._resolve_identity(message)
        except AuthError as e:
            await self._hub.on_auth_failed(connection, e)
            return
        except (InputValidationError, StorageError) as e:
            # bad guest name or storage hiccup: the client may retry on this connection
            await self._send_error(connection, ErrorCode(e.code), e.message)
            return
        await self._hub.on_auth_event(connection, identity)

    async def _resolve_identity(self, message: JoinMessage) -> Identity:
        if message.token is not None:
            return await self._credentials.verify(message.token)
        if not self._allow_guests:
            raise AuthError("A session token is required")
        if message.username is None:  # pragma: no cover - rejected by JoinMessage validation
            raise AuthError("A session token or username is required")
        return await self._credentials.guest_identity(message.username)

    async def _send_error(self, connection: ConnectionProtocol, code: ErrorCode, message: str) -> None:
        try:
            await connection.send_message(ErrorEvent(code=code, message=message).to_wire())
        except TRANSPORT_ERRORS:
            await self._hub.on_connection_closed(connection)


def _describe(error: Exception) -> str:
    """Short client-facing description of a parse failure."""
    if isinstance(error, ValidationError):
        first = error.errors(include_url=False)[0] if error.error_count() else None
        if first is not None:
            location = ".".join(str(part) for part in first["loc"])
            return f"{location}: {first['msg']}" if location else first["msg"]
    return str(error)
