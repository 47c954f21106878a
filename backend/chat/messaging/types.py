from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    StrictBool,
    StrictInt,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

# ASCII control character boundaries for input validation
_SPACE_ORD = 0x20
_DEL_ORD = 0x7F

MAX_TEXT_LENGTH = 1000


class ClientMessageType(StrEnum):
    JOIN = "join"
    AUTH = "auth"
    MESSAGE = "message"
    EDIT = "edit"
    DELETE = "delete"
    TYPING = "typing"
    PING = "ping"
    PONG = "pong"


class ServerMessageType(StrEnum):
    HISTORY = "history"
    MESSAGE = "message"
    USER_JOINED = "userJoined"
    USER_LEFT = "userLeft"
    TYPING = "typing"
    MESSAGE_EDITED = "messageEdited"
    MESSAGE_DELETED = "messageDeleted"
    ERROR = "error"
    PING = "ping"
    PONG = "pong"


class ErrorCode(StrEnum):
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    AUTH_FAILED = "auth_failed"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    TRANSPORT_ERROR = "transport_error"
    STORAGE_ERROR = "storage_error"
    INVALID_MESSAGE = "invalid_message"
    RATE_LIMITED = "rate_limited"
    NOT_AUTHENTICATED = "not_authenticated"
    ALREADY_AUTHENTICATED = "already_authenticated"
    INTERNAL_ERROR = "internal_error"


def _reject_control_chars(v: str) -> str:
    if any((ord(c) < _SPACE_ORD and c not in ("\t", "\n", "\r")) or ord(c) == _DEL_ORD for c in v):
        raise ValueError("text must not contain control characters")
    return v


def iso_utc(value: datetime) -> str:
    """ISO 8601 in UTC with a trailing Z; naive datetimes are taken as UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return f"{value.isoformat(timespec='milliseconds')}Z"


UtcTimestamp = Annotated[datetime, PlainSerializer(iso_utc, return_type=str)]


class WireModel(BaseModel):
    """Base for every frame: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# --- client -> hub ---------------------------------------------------------


class JoinMessage(WireModel):
    """Authenticate with a session token, or join as a guest by display name."""

    type: Literal[ClientMessageType.JOIN, ClientMessageType.AUTH] = ClientMessageType.JOIN
    token: str | None = Field(default=None, min_length=1, max_length=512)
    username: str | None = Field(default=None, min_length=1, max_length=100)

    @field_validator("username")
    @classmethod
    def _validate_username(cls, v: str | None) -> str | None:
        return _reject_control_chars(v) if v is not None else v

    @model_validator(mode="after")
    def _require_credential(self) -> Self:
        if self.token is None and self.username is None:
            raise ValueError("join requires a token or a username")
        return self


class ChatMessage(WireModel):
    type: Literal[ClientMessageType.MESSAGE] = ClientMessageType.MESSAGE
    text: str = Field(min_length=1, max_length=MAX_TEXT_LENGTH)

    @field_validator("text")
    @classmethod
    def _validate_text(cls, v: str) -> str:
        return _reject_control_chars(v)


class EditMessage(WireModel):
    type: Literal[ClientMessageType.EDIT] = ClientMessageType.EDIT
    message_id: StrictInt = Field(ge=1)
    text: str = Field(min_length=1, max_length=MAX_TEXT_LENGTH)

    @field_validator("text")
    @classmethod
    def _validate_text(cls, v: str) -> str:
        return _reject_control_chars(v)


class DeleteMessage(WireModel):
    type: Literal[ClientMessageType.DELETE] = ClientMessageType.DELETE
    message_id: StrictInt = Field(ge=1)


class TypingMessage(WireModel):
    type: Literal[ClientMessageType.TYPING] = ClientMessageType.TYPING
    is_typing: StrictBool


class PingMessage(WireModel):
    type: Literal[ClientMessageType.PING] = ClientMessageType.PING


class PongMessage(WireModel):
    type: Literal[ClientMessageType.PONG] = ClientMessageType.PONG


ClientMessage = (
    JoinMessage | ChatMessage | EditMessage | DeleteMessage | TypingMessage | PingMessage | PongMessage
)

_ClientMessageUnion = Annotated[ClientMessage, Field(discriminator="type")]

_client_adapter = TypeAdapter(_ClientMessageUnion)


def parse_client_message(data: dict[str, Any]) -> ClientMessage:
    """Parse a raw dict into a typed ClientMessage.

    Raises pydantic.ValidationError on unknown types or missing fields.
    """
    return _client_adapter.validate_python(data)


# --- hub -> client ---------------------------------------------------------


class MessagePayload(WireModel):
    """A stored message as clients see it, both in history and live."""

    type: Literal[ServerMessageType.MESSAGE] = ServerMessageType.MESSAGE
    id: int
    text: str
    username: str
    user_id: str
    timestamp: UtcTimestamp
    edited: bool = False


class HistoryEvent(WireModel):
    type: Literal[ServerMessageType.HISTORY] = ServerMessageType.HISTORY
    messages: list[MessagePayload]


class UserJoinedEvent(WireModel):
    type: Literal[ServerMessageType.USER_JOINED] = ServerMessageType.USER_JOINED
    username: str
    online_count: int
    timestamp: UtcTimestamp


class UserLeftEvent(WireModel):
    type: Literal[ServerMessageType.USER_LEFT] = ServerMessageType.USER_LEFT
    username: str
    online_count: int
    timestamp: UtcTimestamp


class TypingEvent(WireModel):
    type: Literal[ServerMessageType.TYPING] = ServerMessageType.TYPING
    users: list[str]


class MessageEditedEvent(WireModel):
    type: Literal[ServerMessageType.MESSAGE_EDITED] = ServerMessageType.MESSAGE_EDITED
    message_id: int
    text: str
    timestamp: UtcTimestamp


class MessageDeletedEvent(WireModel):
    type: Literal[ServerMessageType.MESSAGE_DELETED] = ServerMessageType.MESSAGE_DELETED
    message_id: int


class ErrorEvent(WireModel):
    type: Literal[ServerMessageType.ERROR] = ServerMessageType.ERROR
    code: ErrorCode
    message: str


class PingEvent(WireModel):
    type: Literal[ServerMessageType.PING] = ServerMessageType.PING


class PongEvent(WireModel):
    type: Literal[ServerMessageType.PONG] = ServerMessageType.PONG

