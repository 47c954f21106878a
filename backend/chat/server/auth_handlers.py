"""JSON auth endpoints: register, login, verify and logout."""

from __future__ import annotations

import json
from http import HTTPStatus
from typing import TYPE_CHECKING, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as RequestValidationError
from starlette.responses import JSONResponse, Response

from shared.errors import AuthError, ChatError, ConflictError, StorageError, ValidationError

if TYPE_CHECKING:
    from starlette.requests import Request

    from shared.auth.models import IssuedCredentials
    from shared.auth.service import CredentialService

logger = structlog.get_logger()

MAX_REQUEST_BODY_SIZE = 4096

_ModelT = TypeVar("_ModelT", bound=BaseModel)

_STATUS_BY_ERROR: dict[type[ChatError], HTTPStatus] = {
    ValidationError: HTTPStatus.BAD_REQUEST,
    ConflictError: HTTPStatus.CONFLICT,
    AuthError: HTTPStatus.UNAUTHORIZED,
    StorageError: HTTPStatus.INTERNAL_SERVER_ERROR,
}


class CredentialsRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    username: str = Field(max_length=200)
    password: str = Field(max_length=1024)


class TokenRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str = Field(min_length=1, max_length=1024)


class _BadRequest(Exception):
    def __init__(self, status: HTTPStatus, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(message)


def error_response(message: str, code: str, status: HTTPStatus) -> JSONResponse:
    return JSONResponse({"error": message, "code": code}, status_code=status)


def _chat_error_response(error: ChatError) -> JSONResponse:
    status = _STATUS_BY_ERROR.get(type(error), HTTPStatus.INTERNAL_SERVER_ERROR)
    if status >= HTTPStatus.INTERNAL_SERVER_ERROR:
        logger.error("auth request failed", error_code=error.code, error_message=error.message)
    return error_response(error.message, error.code, status)


async def _parse_body(request: Request, model: type[_ModelT]) -> _ModelT:
    """Read, size-check and validate a JSON body. Raises _BadRequest."""
    raw_body = await request.body()
    if len(raw_body) > MAX_REQUEST_BODY_SIZE:
        raise _BadRequest(HTTPStatus.REQUEST_ENTITY_TOO_LARGE, "Request body too large")
    try:
        body = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):  # fmt: skip
        raise _BadRequest(HTTPStatus.BAD_REQUEST, "Invalid JSON body") from None
    if not isinstance(body, dict):
        raise _BadRequest(HTTPStatus.BAD_REQUEST, "Request body must be a JSON object")
    try:
        return model.model_validate(body)
    except RequestValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors(include_url=False))
        raise _BadRequest(HTTPStatus.BAD_REQUEST, f"Invalid or missing fields: {fields}") from None


def _credentials_response(issued: IssuedCredentials, status: HTTPStatus = HTTPStatus.OK) -> JSONResponse:
    return JSONResponse(
        {"token": issued.token, "username": issued.username, "userId": issued.user_id},
        status_code=status,
    )


async def register(request: Request) -> Response:
    """POST /api/auth/register - create an account and return a session token."""
    credentials: CredentialService = request.app.state.credentials
    try:
        body = await _parse_body(request, CredentialsRequest)
        issued = await credentials.register(body.username, body.password)
    except _BadRequest as e:
        return error_response(e.message, "validation_error", e.status)
    except ChatError as e:
        return _chat_error_response(e)
    return _credentials_response(issued, HTTPStatus.CREATED)


async def login(request: Request) -> Response:
    """POST /api/auth/login - exchange username and password for a session token."""
    credentials: CredentialService = request.app.state.credentials
    try:
        body = await _parse_body(request, CredentialsRequest)
        issued = await credentials.login(body.username, body.password)
    except _BadRequest as e:
        return error_response(e.message, "validation_error", e.status)
    except ChatError as e:
        return _chat_error_response(e)
    logger.info("user logged in", user_id=issued.user_id)
    return _credentials_response(issued)


async def verify(request: Request) -> Response:
    """POST /api/auth/verify - check a token and echo back the identity it carries."""
    credentials: CredentialService = request.app.state.credentials
    try:
        body = await _parse_body(request, TokenRequest)
        identity = await credentials.verify(body.token)
    except _BadRequest as e:
        return error_response(e.message, "validation_error", e.status)
    except ChatError as e:
        return _chat_error_response(e)
    return JSONResponse({"token": body.token, "username": identity.username, "userId": identity.user_id})


async def logout(request: Request) -> Response:
    """POST /api/auth/logout - revoke a token."""
    credentials: CredentialService = request.app.state.credentials
    try:
        body = await _parse_body(request, TokenRequest)
        await credentials.logout(body.token)
    except _BadRequest as e:
        return error_response(e.message, "validation_error", e.status)
    except ChatError as e:
        return _chat_error_response(e)
    return Response(status_code=HTTPStatus.NO_CONTENT)
