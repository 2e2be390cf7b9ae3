"""
server.py — raw TCP listener for Votifier V1 and V2 clients.

Per-connection state machine:

    GREETING → DETECT → {V1_READ, V2_READ, REJECT_TLS} → RESPOND → CLOSED

- GREETING: send "VOTIFIER 2 <challenge>\\n" with a fresh random challenge.
- DETECT:   read 2 bytes. 0x733A → V2, 0x16 0x03 → TLS (refused), else V1.
- V1_READ:  those 2 bytes + 254 more = one 256-byte RSA block.
- V2_READ:  2-byte length (1..65536) + JSON envelope, checked against the
            challenge from GREETING.
- RESPOND:  one JSON object {status, cause, errorMessage}.
- CLOSED:   always, whatever happened above.

Each connection runs in its own asyncio task. The challenge lives in a
local of that task and nowhere else. Every read has a 30s timeout; a stalled
or vanished peer is logged and dropped, never retried.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Set

from . import framing
from .detector import Protocol
from .errors import InvalidFramingError
from .legacy import RSA_BLOCK_SIZE
from .processor import (
    ErrorKind,
    Rejected,
    Success,
    VoteDispatcher,
    VoteProcessor,
    VoteResult,
    protocol_disabled,
)

log = logging.getLogger(__name__)

SOCKET_TIMEOUT = 30.0
SHUTDOWN_GRACE = 5.0


class ConnectionState(Enum):
    GREETING = "GREETING"
    DETECT = "DETECT"
    V1_READ = "V1_READ"
    V2_READ = "V2_READ"
    REJECT_TLS = "REJECT_TLS"
    RESPOND = "RESPOND"
    CLOSED = "CLOSED"


class ConnectionContext:
    """Reader/writer plus what we know about this one connection."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer
        peer = writer.get_extra_info("peername")
        self.peer = f"{peer[0]}:{peer[1]}" if peer else "unknown"
        self.state = ConnectionState.GREETING


def socket_error_message(result: Rejected) -> str:
    """What the sender gets to see. Details stay in our logs."""
    if result.kind is ErrorKind.PARSE_ERROR:
        return f"Invalid vote format: {result.message}"
    if result.kind is ErrorKind.DECRYPTION_ERROR:
        return "Decryption failed"
    if result.kind is ErrorKind.SIGNATURE_ERROR:
        return "Signature verification failed"
    if result.kind is ErrorKind.CHALLENGE_ERROR:
        return "Challenge verification failed"
    if result.kind in (ErrorKind.PROTOCOL_DISABLED, ErrorKind.INVALID_FRAMING):
        return result.message
    return "Internal server error"


class VotifierSocketServer:
    """
    asyncio TCP server speaking both Votifier socket protocols.

    Shared state is limited to the processor (read-only collaborators) and
    the dispatcher (whose tracker does its own locking).
    """

    def __init__(
        self,
        processor: VoteProcessor,
        dispatcher: VoteDispatcher,
        host: str = "0.0.0.0",
        port: int = 8192,
        debug: bool = False,
        timeout: float = SOCKET_TIMEOUT,
        max_message_length: int = framing.MAX_MESSAGE_LENGTH,
    ) -> None:
        self.processor = processor
        self.dispatcher = dispatcher
        self.host = host
        self.port = port
        self.debug = debug
        self.timeout = timeout
        self.max_message_length = max_message_length
        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._server is not None and self._server.is_serving()

    async def start(self) -> None:
        """Bind and start accepting. port=0 picks a free port (see self.port)."""
        if self.running:
            return
        self._server = await asyncio.start_server(self.handle_conn, self.host, self.port)
        sockets = self._server.sockets or []
        if sockets:
            self.port = sockets[0].getsockname()[1]
        log.info("Votifier socket server listening on %s:%d", self.host, self.port)

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        await self._server.serve_forever()

    async def stop(self, grace: float = SHUTDOWN_GRACE) -> None:
        """
        Stop accepting, give in-flight connections up to `grace` seconds,
        then cancel whatever is left.
        """
        if self._server is None:
            return

        self._server.close()
        pending = set(self._connections)
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=grace)
            for task in still_running:
                task.cancel()
            if still_running:
                log.warning("Cancelled %d socket connection(s) still open at shutdown", len(still_running))
                await asyncio.gather(*still_running, return_exceptions=True)

        await self._server.wait_closed()
        self._server = None
        log.info("Votifier socket server stopped")

    # ------------------------------
    # Per-connection handling
    # ------------------------------

    async def handle_conn(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)

        ctx = ConnectionContext(reader, writer)
        if self.debug:
            log.info("Socket connection from %s", ctx.peer)

        try:
            await self._handshake(ctx)
        except asyncio.TimeoutError:
            if self.debug:
                log.warning("Socket connection timed out from %s (state %s)", ctx.peer, ctx.state.value)
        except asyncio.IncompleteReadError:
            log.warning("Connection from %s closed mid-handshake (state %s)", ctx.peer, ctx.state.value)
        except (ConnectionError, OSError) as exc:
            log.warning("Error handling socket connection from %s: %s", ctx.peer, exc)
        except Exception as exc:
            log.warning("Error handling socket connection from %s: %s", ctx.peer, exc, exc_info=self.debug)
        finally:
            ctx.state = ConnectionState.CLOSED
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            if task is not None:
                self._connections.discard(task)

    async def _read(self, coro):
        return await asyncio.wait_for(coro, timeout=self.timeout)

    async def _handshake(self, ctx: ConnectionContext) -> None:
        # 1) Greeting carries this connection's challenge.
        challenge = framing.new_challenge()
        await self._read(framing.write_greeting(ctx.writer, challenge))

        # 2) Two bytes are enough to tell the protocols apart.
        ctx.state = ConnectionState.DETECT
        first_two = await self._read(ctx.reader.readexactly(2))

        if first_two == framing.V2_MAGIC_BYTES:
            ctx.state = ConnectionState.V2_READ
            await self._handle_v2(ctx, challenge)
        elif first_two == framing.TLS_HANDSHAKE_PREFIX:
            # random V1 ciphertext starts with 0x16 0x03 about 0.0015% of the time
            ctx.state = ConnectionState.REJECT_TLS
            await self._respond_error(ctx, "TLS/SSL not supported - use plain TCP connection")
            log.warning("TLS handshake rejected from %s: socket server does not support TLS", ctx.peer)
        else:
            ctx.state = ConnectionState.V1_READ
            await self._handle_v1(ctx, first_two)

    async def _handle_v1(self, ctx: ConnectionContext, first_two: bytes) -> None:
        if not self.processor.protocols.v1_enabled:
            await self._finish(ctx, protocol_disabled(Protocol.V1_RSA))
            return

        rest = await self._read(ctx.reader.readexactly(RSA_BLOCK_SIZE - len(first_two)))
        block = first_two + rest
        result = self.processor.process_v1_block(block)

        if self.debug and isinstance(result, Rejected) and result.kind is ErrorKind.DECRYPTION_ERROR:
            log.info("V1 raw payload (first 64 bytes hex): %s", block[:64].hex(" ").upper())

        await self._finish(ctx, result)

    async def _handle_v2(self, ctx: ConnectionContext, challenge: str) -> None:
        if not self.processor.protocols.v2_enabled:
            await self._finish(ctx, protocol_disabled(Protocol.V2_JSON))
            return

        try:
            body = await self._read(framing.read_v2_frame(ctx.reader, self.max_message_length))
        except InvalidFramingError as exc:
            await self._respond_error(ctx, str(exc))
            log.warning("Invalid V2 message length from %s", ctx.peer)
            return

        try:
            message = body.decode("utf-8")
        except UnicodeDecodeError:
            result: VoteResult = Rejected(ErrorKind.PARSE_ERROR, "V2 payload is not valid UTF-8", Protocol.V2_JSON)
        else:
            result = self.processor.process_v2_message(message, challenge)

        await self._finish(ctx, result)

    async def _finish(self, ctx: ConnectionContext, result: VoteResult) -> None:
        if isinstance(result, Success):
            vote = result.vote
            # tracker may hit SQLite; keep the event loop free
            await asyncio.to_thread(self.dispatcher.dispatch, vote)
            ctx.state = ConnectionState.RESPOND
            await self._read(framing.write_ok(ctx.writer))
            if self.debug:
                log.info(
                    "Received %s socket vote from %s: service=%s, username=%s",
                    result.protocol, ctx.peer, vote.service_name, vote.username,
                )
            return

        await self._respond_error(ctx, socket_error_message(result))
        protocol = result.protocol or "socket"
        if result.kind is ErrorKind.INTERNAL_ERROR:
            log.error("%s vote from %s failed internally", protocol, ctx.peer, exc_info=result.cause)
        else:
            log.warning("%s %s from %s: %s", protocol, result.kind.value, ctx.peer, result.message)

    async def _respond_error(self, ctx: ConnectionContext, message: str) -> None:
        ctx.state = ConnectionState.RESPOND
        await self._read(framing.write_error(ctx.writer, message))
