"""
legacy.py — Votifier V1: RSA-encrypted, newline-separated vote blocks.

Plaintext layout (after PKCS#1 v1.5 decryption):

    VOTE\n
    <serviceName>\n
    <username>\n
    <address>\n
    <timestamp>\n

Over HTTP the 256-byte ciphertext arrives Base64-encoded; over the raw
socket it arrives as-is.
"""

import binascii

from cryptography.hazmat.primitives.asymmetric import rsa

from . import crypto
from .errors import DecryptionError, VoteParseError
from .vote import Vote, now_ms

VOTE_HEADER = "VOTE"
MIN_LINES = 5

# 2048-bit RSA → every ciphertext block is exactly this long.
RSA_BLOCK_SIZE = 256


def parse(decrypted: bytes) -> Vote:
    """
    Parse a decrypted V1 block into a Vote.

    An unparsable timestamp falls back to the current time instead of
    rejecting the vote; voting-site clocks aren't trusted anyway.

    Raises:
        VoteParseError: empty data, bad UTF-8, too few lines, wrong header,
            or a blank service name / username.
    """
    if not decrypted:
        raise VoteParseError("Vote data is null or empty")

    try:
        text = decrypted.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise VoteParseError(f"Failed to decode vote data: {exc}") from exc

    lines = text.split("\n")
    # trailing newlines don't count as fields
    while lines and lines[-1] == "":
        lines.pop()

    if len(lines) < MIN_LINES:
        raise VoteParseError(
            f"Invalid vote format: expected at least {MIN_LINES} lines, got {len(lines)}"
        )

    header = lines[0].strip()
    if header.upper() != VOTE_HEADER:
        raise VoteParseError(f"Invalid vote header: expected '{VOTE_HEADER}', got '{header}'")

    service_name = lines[1].strip()
    username = lines[2].strip()
    address = lines[3].strip()

    try:
        timestamp = int(lines[4].strip())
    except ValueError:
        timestamp = now_ms()

    try:
        return Vote(service_name, username, address, timestamp)
    except ValueError as exc:
        raise VoteParseError(f"Invalid vote data: {exc}") from exc


def decrypt_and_parse(block: bytes, private_key: rsa.RSAPrivateKey) -> Vote:
    """Decrypt a raw ciphertext block and parse it (socket path)."""
    if private_key is None:
        raise DecryptionError("RSA keys not initialized")
    return parse(crypto.rsa_decrypt(block, private_key))


def decode_and_parse(payload_b64: str, private_key: rsa.RSAPrivateKey) -> Vote:
    """
    Base64 → decrypt → parse (HTTP path).

    Raises:
        VoteParseError: payload is not valid Base64 or the plaintext is malformed.
        DecryptionError: the ciphertext does not decrypt under our key.
    """
    # some senders wrap Base64 at 76 columns
    compact = "".join(payload_b64.split())
    try:
        block = crypto.b64decode(compact)
    except (binascii.Error, ValueError) as exc:
        raise VoteParseError("Invalid Base64 encoding") from exc

    return decrypt_and_parse(block, private_key)
