"""
Socket wire format tests
"""

import asyncio
import json

import pytest

from votifier import framing
from votifier.errors import InvalidFramingError


def stream_of(data: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


class TestGreeting:
    """Tests for the server greeting line."""

    def test_challenge_is_fresh(self):
        assert framing.new_challenge() != framing.new_challenge()

    def test_challenge_length(self):
        # 24 bytes → 32 Base64 characters, no padding
        assert len(framing.new_challenge()) == 32

    def test_greeting_roundtrip(self):
        line = framing.greeting_line("abc123")
        assert line == b"VOTIFIER 2 abc123\n"
        assert framing.parse_greeting(line) == "abc123"

    @pytest.mark.parametrize("line", [b"HELLO 2 abc\n", b"VOTIFIER 2\n", b""])
    def test_bad_greeting(self, line):
        with pytest.raises(InvalidFramingError):
            framing.parse_greeting(line)


class TestV2Frame:
    """Tests for V2 length-prefixed frames."""

    def test_encode_layout(self):
        frame = framing.encode_v2_frame({"a": 1})
        assert frame[:2] == b"\x73\x3a"
        assert int.from_bytes(frame[2:4], "big") == len(b'{"a":1}')
        assert frame[4:] == b'{"a":1}'

    @pytest.mark.asyncio
    async def test_read_frame(self):
        frame = framing.encode_v2_frame({"hello": "world"})
        body = await framing.read_v2_frame(stream_of(frame[2:]))
        assert json.loads(body) == {"hello": "world"}

    @pytest.mark.asyncio
    async def test_zero_length(self):
        with pytest.raises(InvalidFramingError, match="Invalid message length"):
            await framing.read_v2_frame(stream_of(b"\x00\x00"))

    @pytest.mark.asyncio
    async def test_over_limit_refused_before_body(self):
        # declared 4000, cap 1024, no body bytes at all: must not wait for them
        with pytest.raises(InvalidFramingError):
            await framing.read_v2_frame(stream_of((4000).to_bytes(2, "big")), max_length=1024)

    @pytest.mark.asyncio
    async def test_truncated_body(self):
        with pytest.raises(asyncio.IncompleteReadError):
            await framing.read_v2_frame(stream_of(b"\x00\x10short"))


class TestResponse:
    """Tests for the JSON response object."""

    def test_ok(self):
        assert framing.response(framing.STATUS_OK) == {"status": "ok", "cause": None, "errorMessage": None}

    def test_error(self):
        r = framing.response(framing.STATUS_ERROR, "Decryption failed")
        assert r == {"status": "error", "cause": "Decryption failed", "errorMessage": "Decryption failed"}
