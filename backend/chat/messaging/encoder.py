"""
Frame encoder/decoder for the two wire formats.

JSON text frames are the default. MessagePack binary frames are available
to clients that connect with ``?encoding=msgpack``. Both decoders enforce
the same payload limit and only accept a top-level object.
"""

import json
from enum import StrEnum
from typing import Any

import msgpack


class WireFormat(StrEnum):
    JSON = "json"
    MSGPACK = "msgpack"


class DecodeError(Exception):
    """Error raised when an inbound frame cannot be decoded."""


# Size limits to prevent resource exhaustion from malicious payloads.
MAX_BUFFER_LEN = 4096  # per frame
MAX_STR_LEN = 4096
MAX_BIN_LEN = 1024
MAX_ARRAY_LEN = 64
MAX_MAP_LEN = 32
MAX_EXT_LEN = 0


def _stringify_keys(obj: object) -> object:
    """
    Recursively convert integer dict keys to strings.

    MessagePack strict mode only allows string keys; JSON would stringify
    them anyway, so both formats agree.
    """
    if isinstance(obj, dict):
        return {str(k) if isinstance(k, int) else k: _stringify_keys(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_stringify_keys(item) for item in obj]
    return obj


def encode(data: dict[str, Any], wire_format: WireFormat = WireFormat.JSON) -> str | bytes:
    """Encode a dict as a JSON string or MessagePack bytes."""
    if wire_format is WireFormat.MSGPACK:
        return msgpack.packb(_stringify_keys(data))
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def decode(data: str | bytes) -> dict[str, Any]:
    """
    Decode a frame to a dict. Text frames are JSON, binary frames MessagePack.

    Raises DecodeError if data is invalid, not a dict, or exceeds size limits.
    """
    if isinstance(data, str):
        return _decode_json(data)
    return _decode_msgpack(data)


def _decode_json(data: str) -> dict[str, Any]:
    size = len(data.encode("utf-8"))
    if size > MAX_BUFFER_LEN:
        raise DecodeError(f"payload too large: {size} bytes (max {MAX_BUFFER_LEN})")
    try:
        result = json.loads(data)
    except (ValueError, RecursionError) as e:
        raise DecodeError(f"failed to decode JSON data: {e}") from e
    if not isinstance(result, dict):
        raise DecodeError(f"expected object, got {type(result).__name__}")
    return result


def _decode_msgpack(data: bytes) -> dict[str, Any]:
    if len(data) > MAX_BUFFER_LEN:
        raise DecodeError(f"payload too large: {len(data)} bytes (max {MAX_BUFFER_LEN})")
    try:
        result = msgpack.unpackb(
            data,
            raw=False,
            max_str_len=MAX_STR_LEN,
            max_bin_len=MAX_BIN_LEN,
            max_array_len=MAX_ARRAY_LEN,
            max_map_len=MAX_MAP_LEN,
            max_ext_len=MAX_EXT_LEN,
        )
    except (msgpack.UnpackException, ValueError, TypeError) as e:
        raise DecodeError(f"failed to decode MessagePack data: {e}") from e

    if not isinstance(result, dict):
        raise DecodeError(f"expected dict, got {type(result).__name__}")

    return result
