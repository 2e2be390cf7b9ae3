"""
client.py — the sending side of the Votifier socket protocols.

A voting site would normally do this; we need it for `send-v1` /
`send-v2` on the command line and for the test suite.
"""

import asyncio
import json
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from . import crypto, framing, modern
from .vote import now_ms

DEFAULT_TIMEOUT = 10.0


def build_v1_plaintext(service_name: str, username: str, address: str = "", timestamp: Optional[int] = None) -> bytes:
    ts = now_ms() if timestamp is None else timestamp
    return f"VOTE\n{service_name}\n{username}\n{address}\n{ts}\n".encode("utf-8")


def build_v1_payload(
    public_key: rsa.RSAPublicKey,
    service_name: str,
    username: str,
    address: str = "",
    timestamp: Optional[int] = None,
) -> bytes:
    """One 256-byte RSA block, ready for the raw socket."""
    return crypto.rsa_encrypt(build_v1_plaintext(service_name, username, address, timestamp), public_key)


def build_v1_payload_b64(public_key: rsa.RSAPublicKey, service_name: str, username: str,
                         address: str = "", timestamp: Optional[int] = None) -> str:
    """Same block, Base64-encoded for an HTTP POST body."""
    return crypto.b64encode(build_v1_payload(public_key, service_name, username, address, timestamp))


def build_v2_payload(
    token: str,
    service_name: str,
    username: str,
    address: str = "",
    timestamp: Optional[int] = None,
    challenge: Optional[str] = None,
) -> Dict[str, str]:
    """
    Signed V2 envelope. Pass the greeting's challenge for the socket;
    leave it out for HTTP.
    """
    fields: Dict[str, Any] = {
        "serviceName": service_name,
        "username": username,
        "address": address,
        "timestamp": now_ms() if timestamp is None else timestamp,
    }
    if challenge is not None:
        fields["challenge"] = challenge
    return modern.build_envelope(fields, token)


async def _exchange(host: str, port: int, build, timeout: float) -> Dict[str, Any]:
    """
    Connect, read the greeting, send whatever build(challenge) returns,
    then read the server's single JSON response until it closes.
    """
    reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    try:
        greeting = await asyncio.wait_for(reader.readline(), timeout)
        challenge = framing.parse_greeting(greeting)

        writer.write(build(challenge))
        await writer.drain()

        raw = await asyncio.wait_for(reader.read(), timeout)
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    return json.loads(raw.decode("utf-8"))


async def send_v1_vote(
    host: str,
    port: int,
    public_key: rsa.RSAPublicKey,
    service_name: str,
    username: str,
    address: str = "",
    timestamp: Optional[int] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Dict[str, Any]:
    """Send a V1 vote over the socket; returns the server's response dict."""
    block = build_v1_payload(public_key, service_name, username, address, timestamp)
    return await _exchange(host, port, lambda _challenge: block, timeout)


async def send_v2_vote(
    host: str,
    port: int,
    token: str,
    service_name: str,
    username: str,
    address: str = "",
    timestamp: Optional[int] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Dict[str, Any]:
    """Send a V2 vote over the socket, signing in the greeting's challenge."""

    def build(challenge: str) -> bytes:
        envelope = build_v2_payload(token, service_name, username, address, timestamp, challenge)
        return framing.encode_v2_frame(envelope)

    return await _exchange(host, port, build, timeout)
