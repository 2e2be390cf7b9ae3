"""
aiohttp transport tests
"""

import json

import aiohttp
import pytest
from aiohttp import test_utils

from votifier.client import build_v1_payload_b64, build_v2_payload
from votifier.config import DEFAULT_CONTEXT_PATH, ProtocolConfig
from votifier.http_server import VotifierHttpServer
from votifier.keystore import KeyStore
from votifier.processor import MAX_BODY_SIZE, VoteProcessor
from votifier.tokens import ServiceTokenTable

from .conftest import SERVICE, TOKEN

VOTE_URL = f"{DEFAULT_CONTEXT_PATH}/vote"
STATUS_URL = f"{DEFAULT_CONTEXT_PATH}/status"


def make_client(processor, dispatcher, **kwargs) -> test_utils.TestClient:
    http = VotifierHttpServer(processor, dispatcher, "127.0.0.1", 0, **kwargs)
    return test_utils.TestClient(test_utils.TestServer(http.make_app()))


async def post_vote(client, body):
    resp = await client.post(VOTE_URL, data=body)
    return resp.status, await resp.json()


class TestVoteEndpoint:
    """POST <ctx>/vote"""

    @pytest.mark.asyncio
    async def test_v1_ok(self, processor, dispatcher, received, keys):
        async with make_client(processor, dispatcher) as client:
            status, body = await post_vote(client, build_v1_payload_b64(keys.public_key, "TopSites", "Steve"))
        assert status == 200
        assert body == {"status": "ok", "message": "Vote processed for Steve"}
        assert received[0].username == "Steve"

    @pytest.mark.asyncio
    async def test_v2_ok(self, processor, dispatcher, received, tracker):
        async with make_client(processor, dispatcher) as client:
            status, body = await post_vote(client, json.dumps(build_v2_payload(TOKEN, SERVICE, "Alex")))
        assert status == 200
        assert body["status"] == "ok"
        assert tracker.get_last_vote_timestamp("alex") is not None

    @pytest.mark.asyncio
    async def test_empty(self, processor, dispatcher):
        async with make_client(processor, dispatcher) as client:
            status, body = await post_vote(client, "")
        assert status == 400
        assert body == {"status": "error", "message": "Empty payload"}

    @pytest.mark.asyncio
    async def test_whitespace_only(self, processor, dispatcher):
        async with make_client(processor, dispatcher) as client:
            status, _ = await post_vote(client, "   \n  ")
        assert status == 400

    @pytest.mark.asyncio
    async def test_garbage(self, processor, dispatcher, received):
        async with make_client(processor, dispatcher) as client:
            status, body = await post_vote(client, "definitely not a vote!")
        assert status == 400
        assert body["message"] == "Invalid vote format"
        assert received == []

    @pytest.mark.asyncio
    async def test_wrong_key(self, processor, dispatcher, other_keys):
        async with make_client(processor, dispatcher) as client:
            status, body = await post_vote(client, build_v1_payload_b64(other_keys.public_key, "TopSites", "Steve"))
        assert status == 400
        assert body["message"] == "Invalid vote payload"

    @pytest.mark.asyncio
    async def test_bad_signature(self, processor, dispatcher):
        async with make_client(processor, dispatcher) as client:
            status, body = await post_vote(client, json.dumps(build_v2_payload("nope", SERVICE, "Alex")))
        assert status == 401
        assert body["message"] == "Signature verification failed"

    @pytest.mark.asyncio
    async def test_unknown_service(self, processor, dispatcher):
        async with make_client(processor, dispatcher) as client:
            status, _ = await post_vote(client, json.dumps(build_v2_payload(TOKEN, "Unlisted", "Alex")))
        assert status == 401

    @pytest.mark.asyncio
    async def test_protocol_disabled(self, keys, tokens, dispatcher):
        proc = VoteProcessor(keys, tokens, ProtocolConfig(v2_enabled=False))
        async with make_client(proc, dispatcher) as client:
            status, body = await post_vote(client, json.dumps(build_v2_payload(TOKEN, SERVICE, "Alex")))
        assert status == 403
        assert body["message"] == "V2 protocol is disabled"

    @pytest.mark.asyncio
    async def test_too_large(self, processor, dispatcher, received):
        async with make_client(processor, dispatcher) as client:
            status, body = await post_vote(client, "A" * (MAX_BODY_SIZE + 1))
        assert status == 413
        assert body["message"] == "Request body too large"
        assert received == []

    @pytest.mark.asyncio
    async def test_get_not_allowed(self, processor, dispatcher):
        async with make_client(processor, dispatcher) as client:
            resp = await client.get(VOTE_URL)
        assert resp.status == 405


class TestStatusEndpoints:
    """GET <ctx>/status and /publickey"""

    @pytest.mark.asyncio
    async def test_status(self, processor, dispatcher):
        async with make_client(processor, dispatcher) as client:
            resp = await client.get(STATUS_URL)
            body = await resp.json()
        assert resp.status == 200
        assert body["status"] == "ok"
        assert body["serverType"] == "HytaleVotifier"
        assert body["version"] == "1.0.0"
        assert body["protocols"] == {"v1": True, "v2": True}

    @pytest.mark.asyncio
    async def test_status_v2_needs_tokens(self, keys, dispatcher):
        proc = VoteProcessor(keys, ServiceTokenTable())
        async with make_client(proc, dispatcher) as client:
            body = await (await client.get(STATUS_URL)).json()
        assert body["protocols"]["v2"] is False

    @pytest.mark.asyncio
    async def test_status_without_keys(self, tokens, dispatcher):
        async with make_client(VoteProcessor(KeyStore(), tokens), dispatcher) as client:
            resp = await client.get(STATUS_URL)
            body = await resp.json()
        assert resp.status == 503
        assert body["status"] == "error"

    @pytest.mark.asyncio
    async def test_publickey(self, processor, dispatcher, keys):
        async with make_client(processor, dispatcher) as client:
            resp = await client.get(f"{DEFAULT_CONTEXT_PATH}/publickey")
            text = await resp.text()
        assert resp.status == 200
        assert text == keys.public_key_pem()

    @pytest.mark.asyncio
    async def test_no_unauthenticated_vote_route(self, processor, dispatcher, received, tracker):
        async with make_client(processor, dispatcher) as client:
            resp = await client.get(
                f"{DEFAULT_CONTEXT_PATH}/test", params={"username": "Mallory", "serviceName": SERVICE},
            )
        assert resp.status == 404
        assert received == []
        assert tracker.get_last_vote_timestamp("Mallory") is None

    @pytest.mark.asyncio
    async def test_custom_context_path(self, processor, dispatcher):
        async with make_client(processor, dispatcher, context_path="/votes/") as client:
            resp = await client.get("/votes/status")
        assert resp.status == 200


class TestServerLifecycle:
    """Real TCP listener via AppRunner."""

    @pytest.mark.asyncio
    async def test_start_serve_stop(self, processor, dispatcher):
        http = VotifierHttpServer(processor, dispatcher, "127.0.0.1", 0)
        await http.start()
        try:
            assert http.port != 0
            async with aiohttp.ClientSession() as session:
                async with session.get(f"http://127.0.0.1:{http.port}{STATUS_URL}") as resp:
                    assert resp.status == 200
        finally:
            await http.stop()
        # second stop is a no-op
        await http.stop()
