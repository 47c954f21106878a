import json

import msgpack
import pytest

from chat.messaging.encoder import MAX_BUFFER_LEN, DecodeError, WireFormat, decode, encode


class TestEncode:
    def test_json_is_compact_text(self):
        frame = encode({"type": "ping"})
        assert frame == '{"type":"ping"}'

    def test_json_keeps_unicode(self):
        frame = encode({"text": "привет 👋"})
        assert isinstance(frame, str)
        assert "привет" in frame

    def test_msgpack_is_binary(self):
        frame = encode({"type": "ping"}, WireFormat.MSGPACK)
        assert isinstance(frame, bytes)
        assert msgpack.unpackb(frame, raw=False) == {"type": "ping"}

    def test_msgpack_stringifies_int_keys(self):
        frame = encode({"counts": {1: "a"}, "items": [{2: "b"}]}, WireFormat.MSGPACK)
        assert msgpack.unpackb(frame, raw=False) == {"counts": {"1": "a"}, "items": [{"2": "b"}]}


class TestDecode:
    def test_text_frame_decoded_as_json(self):
        assert decode('{"type":"message","text":"hi"}') == {"type": "message", "text": "hi"}

    def test_binary_frame_decoded_as_msgpack(self):
        assert decode(msgpack.packb({"type": "ping"})) == {"type": "ping"}

    def test_malformed_json(self):
        with pytest.raises(DecodeError, match="JSON"):
            decode("{not json")

    def test_json_must_be_object(self):
        with pytest.raises(DecodeError, match="expected object"):
            decode("[1, 2, 3]")

    def test_msgpack_must_be_map(self):
        with pytest.raises(DecodeError, match="expected dict"):
            decode(msgpack.packb([1, 2]))

    def test_malformed_msgpack(self):
        with pytest.raises(DecodeError):
            decode(b"\xc1\xc1\xc1")

    def test_oversized_json_frame(self):
        frame = json.dumps({"text": "x" * MAX_BUFFER_LEN})
        with pytest.raises(DecodeError, match="too large"):
            decode(frame)

    def test_size_limit_counts_utf8_bytes(self):
        # 1500 three-byte characters fit in characters but not in bytes
        frame = json.dumps({"text": "€" * 1500}, ensure_ascii=False)
        assert len(frame) < MAX_BUFFER_LEN
        with pytest.raises(DecodeError, match="too large"):
            decode(frame)

    def test_oversized_msgpack_frame(self):
        with pytest.raises(DecodeError, match="too large"):
            decode(b"\x00" * (MAX_BUFFER_LEN + 1))

    def test_msgpack_map_limit(self):
        with pytest.raises(DecodeError):
            decode(msgpack.packb({f"k{i}": i for i in range(64)}))

    def test_deeply_nested_json(self):
        with pytest.raises(DecodeError):
            decode("[" * 2000 + "]" * 2000)
