"""
http_server.py — aiohttp transport for vote submissions.

Endpoints (all under the configured context path, default
/Hyvote/HytaleVotifier):

- POST <ctx>/vote       V1 (Base64 RSA) or V2 (signed JSON) body, auto-detected
- GET  <ctx>/status     health check; 503 until the key pair is loaded
- GET  <ctx>/publickey  PEM public key, for voting-site admins

Every answer is a small JSON object {"status": "ok"|"error", "message": ...}.
Error messages are deliberately generic; the real reason goes to the log.
"""

import asyncio
import logging
from typing import Optional

from aiohttp import web

from . import __version__
from .config import DEFAULT_CONTEXT_PATH
from .errors import KeyStoreError
from .processor import ErrorKind, Rejected, VoteDispatcher, VoteProcessor

log = logging.getLogger(__name__)

SERVER_TYPE = "HytaleVotifier"

# ErrorKind → (HTTP status, what the sender is told)
HTTP_ERRORS = {
    ErrorKind.EMPTY_PAYLOAD: (400, "Empty payload"),
    ErrorKind.UNKNOWN_PROTOCOL: (400, "Unable to detect vote protocol"),
    ErrorKind.PARSE_ERROR: (400, "Invalid vote format"),
    ErrorKind.CHALLENGE_ERROR: (400, "Invalid vote format"),
    ErrorKind.INVALID_FRAMING: (400, "Invalid vote format"),
    ErrorKind.DECRYPTION_ERROR: (400, "Invalid vote payload"),
    ErrorKind.SIGNATURE_ERROR: (401, "Signature verification failed"),
    ErrorKind.PROTOCOL_DISABLED: (403, None),
    ErrorKind.PAYLOAD_TOO_LARGE: (413, "Request body too large"),
    ErrorKind.INTERNAL_ERROR: (500, "Internal server error"),
}


def error_response(status: int, message: str) -> web.Response:
    return web.json_response({"status": "error", "message": message}, status=status)


def rejection_response(result: Rejected) -> web.Response:
    status, message = HTTP_ERRORS.get(result.kind, (500, "Internal server error"))
    return error_response(status, message or result.message)


class VotifierHttpServer:
    """Owns the aiohttp Application and its runner."""

    def __init__(
        self,
        processor: VoteProcessor,
        dispatcher: VoteDispatcher,
        host: str = "0.0.0.0",
        port: int = 8080,
        context_path: str = DEFAULT_CONTEXT_PATH,
        debug: bool = False,
        v2_active: Optional[bool] = None,
    ) -> None:
        self.processor = processor
        self.dispatcher = dispatcher
        self.host = host
        self.port = port
        self.context_path = context_path.rstrip("/")
        self.debug = debug
        # v2 reported in /status: switched on and at least one site token
        if v2_active is None:
            v2_active = processor.protocols.v2_enabled and processor.tokens.v2_enabled
        self.v2_active = v2_active
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post(f"{self.context_path}/vote", self.handle_vote)
        app.router.add_get(f"{self.context_path}/status", self.handle_status)
        app.router.add_get(f"{self.context_path}/publickey", self.handle_publickey)
        return app

    async def start(self) -> None:
        """Bind and serve. port=0 picks a free port (see self.port)."""
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()

        addresses = self._runner.addresses
        if addresses:
            self.port = addresses[0][1]
        log.info(
            "HTTP server listening on http://%s:%d - endpoints at %s/vote and %s/status",
            self.host, self.port, self.context_path, self.context_path,
        )

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        self._site = None
        log.info("HTTP server stopped")

    # ------------------------------
    # Handlers
    # ------------------------------

    async def handle_vote(self, request: web.Request) -> web.Response:
        result = await self.processor.ingest(request.content)

        if isinstance(result, Rejected):
            if result.kind is ErrorKind.INTERNAL_ERROR:
                log.error("Failed to process vote request", exc_info=result.cause)
            else:
                log.warning(
                    "Rejected %s vote request from %s: %s",
                    result.protocol or "HTTP", request.remote, result.message,
                )
            return rejection_response(result)

        vote = result.vote
        try:
            await asyncio.to_thread(self.dispatcher.dispatch, vote)
        except Exception:
            log.exception("Failed to dispatch vote %s", vote)
            return error_response(500, "Internal server error")

        if self.debug:
            log.info(
                "Received %s vote from %s: service=%s, username=%s",
                result.protocol, request.remote, vote.service_name, vote.username,
            )
        return web.json_response({"status": "ok", "message": f"Vote processed for {vote.username}"})

    async def handle_status(self, request: web.Request) -> web.Response:
        if not self.processor.keys.has_keys:
            return error_response(503, "RSA keys not initialized")

        return web.json_response({
            "status": "ok",
            "version": __version__,
            "serverType": SERVER_TYPE,
            "protocols": {
                "v1": self.processor.protocols.v1_enabled,
                "v2": self.v2_active,
            },
        })

    async def handle_publickey(self, request: web.Request) -> web.Response:
        try:
            pem = self.processor.keys.public_key_pem()
        except KeyStoreError:
            return error_response(503, "RSA keys not initialized")
        return web.Response(text=pem, content_type="application/x-pem-file")
