"""
Votifier receiver test fixtures
"""

import pytest

from votifier.config import ProtocolConfig
from votifier.keystore import KeyStore
from votifier.processor import VoteDispatcher, VoteProcessor
from votifier.storage import InMemoryVoteStorage
from votifier.tokens import ServiceTokenTable
from votifier.tracker import VoteTracker

SERVICE = "TopSites"
TOKEN = "s3cr3t-token-for-topsites"


@pytest.fixture(scope="session")
def keys() -> KeyStore:
    """One RSA-2048 pair for the whole run; generation is slow."""
    store = KeyStore()
    store.generate()
    return store


@pytest.fixture(scope="session")
def other_keys() -> KeyStore:
    """A second, unrelated pair (for wrong-key cases)."""
    store = KeyStore()
    store.generate()
    return store


@pytest.fixture
def tokens() -> ServiceTokenTable:
    return ServiceTokenTable({SERVICE: TOKEN, "OtherSite": "other-token"})


@pytest.fixture
def processor(keys, tokens) -> VoteProcessor:
    return VoteProcessor(keys, tokens, ProtocolConfig())


@pytest.fixture
def tracker() -> VoteTracker:
    return VoteTracker(InMemoryVoteStorage())


@pytest.fixture
def received():
    """List that collects every vote the dispatcher hands out."""
    return []


@pytest.fixture
def dispatcher(tracker, received) -> VoteDispatcher:
    d = VoteDispatcher(tracker)
    d.add_listener(received.append)
    return d
