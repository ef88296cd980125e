"""Shared fixtures: in-memory store, deterministic embedding oracle, app client."""

from __future__ import annotations

import re
import zlib
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from hottakes.api import create_app
from hottakes.broker import MatchBroker
from hottakes.config import EMBEDDING_DIMENSIONS, Settings
from hottakes.conversation import ConversationChannel
from hottakes.errors import UpstreamError
from hottakes.pipeline import SubmissionPipeline
from hottakes.storage import SecretStore

# words that land on the same axis embed close together
TOPICS = {
    0: {"morning", "mornings", "waking", "wake", "early", "alarm"},
    1: {"pineapple", "pizza"},
    2: {"cat", "cats", "dog", "dogs"},
}
NOISE_OFFSET = 16


def fake_vector(text: str) -> List[float]:
    vec = [0.0] * EMBEDDING_DIMENSIONS
    for token in re.findall(r"[a-z']+", text.lower()):
        for axis, words in TOPICS.items():
            if token in words:
                vec[axis] += 1.0
    # a small per-text component so different texts never embed identically
    vec[NOISE_OFFSET + zlib.crc32(text.encode("utf-8")) % (EMBEDDING_DIMENSIONS - NOISE_OFFSET)] += 0.25
    return vec


class FakeEmbeddingOracle:
    def __init__(self) -> None:
        self.calls: List[str] = []
        self.fail = False

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise UpstreamError("Failed to generate embedding")
        return fake_vector(text)


@pytest.fixture
def store() -> SecretStore:
    s = SecretStore("sqlite://")
    s.init_db()
    return s


@pytest.fixture
def oracle() -> FakeEmbeddingOracle:
    return FakeEmbeddingOracle()


@pytest.fixture
def pipeline(store: SecretStore, oracle: FakeEmbeddingOracle) -> SubmissionPipeline:
    return SubmissionPipeline(store, oracle)


@pytest.fixture
def broker(store: SecretStore) -> MatchBroker:
    return MatchBroker(store)


@pytest.fixture
def channel(store: SecretStore) -> ConversationChannel:
    return ConversationChannel(store)


@pytest.fixture
def client(store: SecretStore, oracle: FakeEmbeddingOracle) -> TestClient:
    app = create_app(Settings(database_url="sqlite://"), store=store, oracle=oracle)
    return TestClient(app)


@pytest.fixture
def owned_pair(store: SecretStore):
    """Two posts with different owners: (post of u1, post of u2)."""

    def _add(text: str, owner: Optional[str]):
        return store.add_post(text, fake_vector(text), owner_id=owner)

    return _add("I hate mornings", "u1"), _add("I can't stand waking up early", "u2")


@pytest.fixture
def vectorize():
    return fake_vector
