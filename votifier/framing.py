"""
framing.py — the raw-socket wire format, for asyncio streams.

Protocol (server speaks first):
- Greeting: ASCII line "VOTIFIER 2 <base64 challenge>\\n".
- Client then sends either
    * V2: 2 bytes magic 0x733A + 2-byte big-endian length N + N bytes UTF-8 JSON, or
    * V1: one 256-byte RSA ciphertext block, no prefix.
- A TLS ClientHello (0x16 0x03 ...) is recognised and refused.
- Server answers with one JSON object {status, cause, errorMessage}.

Length is capped at 64 KiB so a hostile peer can't make us allocate
silly amounts of memory; we refuse *before* reading the body.
"""

import asyncio
import json
import secrets
import struct
from typing import Any, Dict, Optional

from . import crypto
from .errors import InvalidFramingError

GREETING_PREFIX = "VOTIFIER 2"
V2_MAGIC = 0x733A
V2_MAGIC_BYTES = struct.pack(">H", V2_MAGIC)
TLS_HANDSHAKE_PREFIX = b"\x16\x03"
MAX_MESSAGE_LENGTH = 65536
CHALLENGE_BYTES = 24

LENGTH_STRUCT = struct.Struct(">H")  # big-endian unsigned 16-bit length

STATUS_OK = "ok"
STATUS_ERROR = "error"


def new_challenge() -> str:
    """24 random bytes, Base64-encoded. One per connection, never reused."""
    return crypto.b64encode(secrets.token_bytes(CHALLENGE_BYTES))


def greeting_line(challenge: str) -> bytes:
    return f"{GREETING_PREFIX} {challenge}\n".encode("ascii")


def parse_greeting(line: bytes) -> str:
    """Client side: pull the challenge out of the server greeting."""
    text = line.decode("ascii", errors="replace").strip()
    parts = text.split(" ")
    if len(parts) < 3 or parts[0] != "VOTIFIER":
        raise InvalidFramingError(f"Unexpected greeting: {text!r}")
    return parts[2]


async def write_greeting(writer: asyncio.StreamWriter, challenge: str) -> None:
    writer.write(greeting_line(challenge))
    await writer.drain()


async def read_v2_frame(reader: asyncio.StreamReader, max_length: int = MAX_MESSAGE_LENGTH) -> bytes:
    """
    Read the part of a V2 frame that follows the magic: length, then body.

    Raises:
        InvalidFramingError: declared length is 0 or over max_length.
        asyncio.IncompleteReadError: peer went away mid-frame.
    """
    (length,) = LENGTH_STRUCT.unpack(await reader.readexactly(LENGTH_STRUCT.size))
    if length <= 0 or length > max_length:
        raise InvalidFramingError("Invalid message length")
    return await reader.readexactly(length)


def encode_v2_frame(message: Dict[str, Any]) -> bytes:
    """Client side: magic + length + compact JSON."""
    body = json.dumps(message, separators=(",", ":")).encode("utf-8")
    # the 16-bit length field tops out below MAX_MESSAGE_LENGTH anyway
    if len(body) > 0xFFFF:
        raise InvalidFramingError("Frame exceeds maximum size")
    return V2_MAGIC_BYTES + LENGTH_STRUCT.pack(len(body)) + body


def response(status: str, message: Optional[str] = None) -> Dict[str, Any]:
    return {"status": status, "cause": message, "errorMessage": message}


async def write_response(writer: asyncio.StreamWriter, status: str, message: Optional[str] = None) -> None:
    """One JSON object, no framing; the socket closes right after."""
    writer.write(json.dumps(response(status, message)).encode("utf-8"))
    await writer.drain()


async def write_ok(writer: asyncio.StreamWriter) -> None:
    await write_response(writer, STATUS_OK)


async def write_error(writer: asyncio.StreamWriter, message: str) -> None:
    await write_response(writer, STATUS_ERROR, message)
