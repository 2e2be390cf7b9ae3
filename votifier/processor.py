"""
processor.py — transport-independent vote handling.

Three pieces:
- `VoteResult`: what happened to one submission. Either `Success` (vote +
  protocol) or `Rejected` tagged with an `ErrorKind`. Transports match on
  the kind to pick a status code / error string; they never need to know
  which exception a parser raised.
- `VoteProcessor`: payload → detector → V1/V2 parser → VoteResult. Also
  owns the bounded body read every HTTP adapter should go through.
- `VoteDispatcher`: hands an accepted vote to the tracker and to every
  registered listener.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Union

from . import legacy, modern
from .config import ProtocolConfig
from .detector import Protocol, detect
from .errors import (
    ChallengeError,
    DecryptionError,
    InvalidFramingError,
    PayloadTooLargeError,
    SignatureError,
    VoteParseError,
)
from .keystore import KeyStore
from .tokens import ServiceTokenTable
from .vote import Vote

log = logging.getLogger(__name__)

MAX_BODY_SIZE = 32 * 1024


class ErrorKind(Enum):
    EMPTY_PAYLOAD = "empty_payload"
    UNKNOWN_PROTOCOL = "unknown_protocol"
    PARSE_ERROR = "parse_error"
    DECRYPTION_ERROR = "decryption_error"
    SIGNATURE_ERROR = "signature_error"
    CHALLENGE_ERROR = "challenge_error"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    INVALID_FRAMING = "invalid_framing"
    PROTOCOL_DISABLED = "protocol_disabled"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class Success:
    vote: Vote
    protocol: Protocol

    ok = True


@dataclass(frozen=True)
class Rejected:
    kind: ErrorKind
    message: str
    protocol: Optional[Protocol] = None
    cause: Optional[BaseException] = None

    ok = False


VoteResult = Union[Success, Rejected]


_KIND_BY_ERROR = (
    (VoteParseError, ErrorKind.PARSE_ERROR),
    (SignatureError, ErrorKind.SIGNATURE_ERROR),
    (ChallengeError, ErrorKind.CHALLENGE_ERROR),
    (DecryptionError, ErrorKind.DECRYPTION_ERROR),
    (InvalidFramingError, ErrorKind.INVALID_FRAMING),
)


def _rejection(protocol: Protocol, exc: Exception) -> Rejected:
    for error_type, kind in _KIND_BY_ERROR:
        if isinstance(exc, error_type):
            return Rejected(kind, str(exc), protocol, exc)
    return Rejected(ErrorKind.INTERNAL_ERROR, "Internal error", protocol, exc)


def protocol_disabled(protocol: Protocol) -> Rejected:
    return Rejected(ErrorKind.PROTOCOL_DISABLED, f"{protocol} protocol is disabled", protocol)


async def read_limited(stream, limit: int = MAX_BODY_SIZE) -> str:
    """
    Read a request body of at most `limit` bytes from any stream with an
    async read(n) (asyncio.StreamReader, aiohttp's request.content).

    We ask for limit + 1 bytes; getting that extra byte means the sender
    went over and we stop before parsing anything.

    Raises:
        PayloadTooLargeError: body is larger than limit.
    """
    chunks = []
    remaining = limit + 1
    while remaining > 0:
        chunk = await stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)

    body = b"".join(chunks)
    if len(body) > limit:
        raise PayloadTooLargeError(limit)
    return body.decode("utf-8", errors="replace").strip()


class VoteProcessor:
    """Stateless apart from its collaborators; safe to share across tasks."""

    def __init__(
        self,
        keys: KeyStore,
        tokens: ServiceTokenTable,
        protocols: Optional[ProtocolConfig] = None,
        max_body_size: int = MAX_BODY_SIZE,
    ) -> None:
        self.keys = keys
        self.tokens = tokens
        self.protocols = protocols or ProtocolConfig()
        self.max_body_size = max_body_size

    def process_payload(self, payload: Optional[str], expected_challenge: Optional[str] = None) -> VoteResult:
        """
        Turn one textual submission into a VoteResult.

        expected_challenge is only passed by the socket path; HTTP has no
        per-connection challenge.
        """
        if payload is None or payload == "":
            return Rejected(ErrorKind.EMPTY_PAYLOAD, "Empty payload")

        protocol = detect(payload)
        if protocol is Protocol.UNKNOWN:
            return Rejected(ErrorKind.UNKNOWN_PROTOCOL, "Unable to detect vote protocol")

        if protocol is Protocol.V1_RSA and not self.protocols.v1_enabled:
            return protocol_disabled(protocol)
        if protocol is Protocol.V2_JSON and not self.protocols.v2_enabled:
            return protocol_disabled(protocol)

        try:
            if protocol is Protocol.V2_JSON:
                vote = modern.parse(payload, self.tokens, expected_challenge)
            else:
                vote = legacy.decode_and_parse(payload, self.keys.private_key)
        except Exception as exc:
            return _rejection(protocol, exc)

        return Success(vote, protocol)

    def process_v1_block(self, block: bytes) -> VoteResult:
        """Socket path: a raw 256-byte ciphertext block, no Base64."""
        if not self.protocols.v1_enabled:
            return protocol_disabled(Protocol.V1_RSA)
        try:
            vote = legacy.decrypt_and_parse(block, self.keys.private_key)
        except Exception as exc:
            return _rejection(Protocol.V1_RSA, exc)
        return Success(vote, Protocol.V1_RSA)

    def process_v2_message(self, message: str, challenge: str) -> VoteResult:
        """Socket path: a V2 envelope that must carry this connection's challenge."""
        if not self.protocols.v2_enabled:
            return protocol_disabled(Protocol.V2_JSON)
        try:
            vote = modern.parse(message, self.tokens, challenge)
        except Exception as exc:
            return _rejection(Protocol.V2_JSON, exc)
        return Success(vote, Protocol.V2_JSON)

    async def ingest(self, stream) -> VoteResult:
        """Bounded read of an HTTP body, then process_payload() without a challenge."""
        try:
            payload = await read_limited(stream, self.max_body_size)
        except PayloadTooLargeError as exc:
            return Rejected(ErrorKind.PAYLOAD_TOO_LARGE, str(exc), cause=exc)
        return self.process_payload(payload)


VoteListener = Callable[[Vote], None]


class VoteDispatcher:
    """
    Fan-out point for accepted votes.

    The tracker (if any) records the vote first, then listeners run in
    registration order. One broken listener is logged and skipped; it
    doesn't stop the rest or fail the submission.
    """

    def __init__(self, tracker=None) -> None:
        self.tracker = tracker
        self._listeners: List[VoteListener] = []

    def add_listener(self, listener: VoteListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: VoteListener) -> None:
        self._listeners.remove(listener)

    def dispatch(self, vote: Vote) -> None:
        if self.tracker is not None:
            # receive time, not the site-reported timestamp
            self.tracker.record_vote(vote.username)

        for listener in list(self._listeners):
            try:
                listener(vote)
            except Exception:
                log.exception("Vote listener %r failed for %s", listener, vote)
