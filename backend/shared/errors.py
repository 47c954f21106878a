"""Typed domain errors shared by the credential store, message store and hub.

Every error carries a short wire ``code`` so the websocket layer can turn it
into an ``error`` event and the HTTP layer can map it to a status code
without inspecting the message text.
"""


class ChatError(Exception):
    """Base class for expected, user-reportable failures."""

    code = "internal_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(ChatError):
    """Malformed or out-of-range input. The connection stays open."""

    code = "validation_error"


class ConflictError(ChatError):
    """Username already registered."""

    code = "conflict"


class AuthError(ChatError):
    """Bad credentials or an invalid, expired or unknown session token."""

    code = "auth_failed"


class ForbiddenError(ChatError):
    """Attempt to mutate a message owned by another user."""

    code = "forbidden"


class NotFoundError(ChatError):
    """Message id unknown or already deleted."""

    code = "not_found"


class TransportError(ChatError):
    """Write failure on a connection. Forces that connection's close path; never propagated to others."""

    code = "transport_error"


class StorageError(ChatError):
    """Durable store unavailable or a statement failed. Nothing was committed."""

    code = "storage_error"


class NotAuthenticatedError(ChatError):
    """Chat operation attempted before a successful join."""

    code = "not_authenticated"


class AlreadyAuthenticatedError(ChatError):
    """Second join on a connection that is already authenticated. The connection stays open."""

    code = "already_authenticated"
