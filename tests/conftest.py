"""
Shared fixtures.  Settings are loaded at import time and require
``GOOGLE_API_KEY``, so the environment is prepared before any
``marketbot`` import.
"""

import asyncio
import os
import re

os.environ.setdefault("GOOGLE_API_KEY", "test-key")
os.environ.setdefault("ENV", "dev")

import numpy as np
import pytest

from marketbot.src.core.embedding_provider import EmbeddingProvider
from marketbot.src.core.retriever import cosine_similarity
from marketbot.src.database.vector_store import PassageStore, ScoredPassage

FAKE_DIMENSION = 4

# Each axis counts tokens from one topic; the last axis is a small bias so
# no text maps to the zero vector.
_AXES = [
    {"open", "opens", "opening", "time", "9am", "market", "hours"},
    {"dividend", "dividends", "paid", "quarterly", "payout"},
    {"listing", "ipo", "listed", "shares"},
]
_TOKEN_RE = re.compile(r"\w+")


def keyword_vector(text: str) -> list[float]:
    tokens = _TOKEN_RE.findall(text.lower())
    vec = [float(sum(tok in axis for tok in tokens)) for axis in _AXES]
    vec.append(0.1)
    return vec


class FakeEncoder:
    """Stands in for ``SentenceTransformer``: deterministic, un-normalised vectors."""

    def __init__(self, dimension: int = FAKE_DIMENSION) -> None:
        self.dimension = dimension
        self.encode_calls = 0

    def encode(self, sentences, **kwargs):
        self.encode_calls += 1
        return np.array([keyword_vector(s) for s in sentences], dtype=np.float32)

    def get_sentence_embedding_dimension(self):
        return self.dimension


def fake_factory(model_name, pooling, cache_dir):
    return FakeEncoder()


class InMemoryRanker:
    """Exact cosine ranking over a list, mirroring ``PassageStore.rank``."""

    def __init__(self, provider, contents=()):
        self.rows = [(i, text, provider.embed(text)) for i, text in enumerate(contents)]
        self.rank_calls = 0

    def rank(self, query_vector, limit):
        self.rank_calls += 1
        scored = [ScoredPassage(passage_id=i, content=text, similarity=cosine_similarity(query_vector, vec)) for i, text, vec in self.rows]
        scored.sort(key=lambda p: (-p.similarity, p.passage_id))
        return scored[:limit]

    def count(self):
        return len(self.rows)


@pytest.fixture
def provider():
    """An initialised provider backed by ``FakeEncoder``."""
    p = EmbeddingProvider(model_name="fake-model", dimension=FAKE_DIMENSION, model_factory=fake_factory)
    asyncio.run(p.initialize())
    return p


@pytest.fixture
def store(provider, tmp_path):
    """A real LanceDB passage store in a temporary directory."""
    return PassageStore(embedder=provider, db_path=str(tmp_path / "lancedb"), table_name="nse_knowledge_test", dimension=FAKE_DIMENSION)
