"""
Shared pytest fixtures for memorypilot tests.

Provides mock embedding providers so no test needs a running Ollama.
"""

import hashlib
from pathlib import Path

import pytest

from memorypilot.api import MemoryPilot
from memorypilot.config import EmbeddingConfig, SearchConfig, StoreConfig
from memorypilot.errors import UnavailableError
from memorypilot.memory_store import MemoryStore


class MockEmbeddingProvider:
    """
    Deterministic mock embedding provider for testing.

    Generates consistent embeddings based on text hash - no model loading.
    Vectors for specific texts can be pinned via ``vectors``.
    """

    dimension = 8
    model_name = "mock:model"

    def __init__(self, vectors: dict[str, list[float]] | None = None):
        self.vectors = dict(vectors or {})
        self.embed_calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        """Generate deterministic embedding from text hash."""
        self.embed_calls.append(text)
        if text in self.vectors:
            return list(self.vectors[text])
        h = hashlib.md5(text.encode()).hexdigest()
        return [int(h[i:i + 2], 16) / 255.0 for i in range(0, 2 * self.dimension, 2)]


class UnavailableEmbeddingProvider:
    """Provider whose model is never reachable."""

    dimension = None
    model_name = "mock:down"

    def __init__(self):
        self.embed_calls = 0

    def embed(self, text: str) -> list[float]:
        self.embed_calls += 1
        raise UnavailableError("mock embedding server is down")


@pytest.fixture
def mock_embedding_provider():
    """Create a fresh MockEmbeddingProvider instance."""
    return MockEmbeddingProvider()


@pytest.fixture
def unavailable_provider():
    return UnavailableEmbeddingProvider()


@pytest.fixture
def store(tmp_path: Path):
    """A MemoryStore on a fresh database."""
    s = MemoryStore(tmp_path / "memories.db")
    yield s
    s.close()


def _make_pilot(store_path: Path, provider, search: SearchConfig | None = None) -> MemoryPilot:
    config = StoreConfig(
        path=store_path,
        embedding=EmbeddingConfig(name="mock"),
        search=search or SearchConfig(),
    )
    return MemoryPilot(config=config, embedding_provider=provider)


@pytest.fixture
def make_pilot(tmp_path: Path):
    """
    Factory for MemoryPilots on the test's store directory.

    ``provider`` is "mock", "down", or a provider instance. Pilots opened
    here are closed at teardown (closing twice is harmless).
    """
    opened = []

    def factory(provider="mock", *, vectors=None, search=None):
        if provider == "mock":
            provider = MockEmbeddingProvider(vectors)
        elif provider == "down":
            provider = UnavailableEmbeddingProvider()
        mp = _make_pilot(tmp_path, provider, search)
        opened.append(mp)
        return mp

    yield factory
    for mp in opened:
        mp.close()


@pytest.fixture
def pilot(tmp_path: Path, mock_embedding_provider):
    """MemoryPilot with a working (mock) embedding provider."""
    mp = _make_pilot(tmp_path, mock_embedding_provider)
    yield mp
    mp.close()


@pytest.fixture
def keyword_pilot(tmp_path: Path, unavailable_provider):
    """MemoryPilot whose embedding provider is always unavailable."""
    mp = _make_pilot(tmp_path, unavailable_provider)
    yield mp
    mp.close()
