"""
Market Bot - Retriever
=======================
Similarity search over the knowledge base: embed the query, rank the
stored passages by cosine similarity and hand back the best ``count``.

``retrieve()`` returns a tagged ``RetrievalResult`` (OK / EMPTY / ERROR)
so callers can decide how to present each case.  ``search()`` flattens
that result into the string the chat prompt consumes:

  • the passages' content joined by a blank line, best match first
  • ``"No relevant information found."`` for an empty result
  • ``"Error retrieving context."`` when embedding or the query failed

Retrieval failures never fail the chat turn: ``EmbeddingError`` and
``StorageQueryError`` are logged and turned into an ERROR result.
``UninitializedProviderError`` is a wiring bug and propagates.

Usage:
    retriever = Retriever(provider, store)
    context = await retriever.search("When does the market open?")
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Sequence

import numpy as np

from marketbot.config.settings import settings
from marketbot.src.core.exceptions import EmbeddingError, StorageQueryError
from marketbot.src.database.vector_store import ScoredPassage
from marketbot.src.utils.logger import get_logger

logger = get_logger(__name__)

NO_RESULTS_MESSAGE = "No relevant information found."
RETRIEVAL_ERROR_MESSAGE = "Error retrieving context."
PASSAGE_SEPARATOR = "\n\n"


class QueryEmbedder(Protocol):
    async def initialize(self) -> object: ...

    async def aembed(self, text: str) -> list[float]: ...


class PassageRanker(Protocol):
    def rank(self, query_vector: Sequence[float], limit: int) -> list[ScoredPassage]: ...


class RetrievalStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    ERROR = "error"


@dataclass(frozen=True)
class RetrievalResult:
    status: RetrievalStatus
    passages: list[ScoredPassage] = field(default_factory=list)
    error: str | None = None

    @property
    def contents(self) -> list[str]:
        return [p.content for p in self.passages]

    def as_context(self) -> str:
        """Flatten to the prompt-ready string (joined passages or a fixed message)."""
        if self.status is RetrievalStatus.ERROR:
            return RETRIEVAL_ERROR_MESSAGE
        if self.status is RetrievalStatus.EMPTY:
            return NO_RESULTS_MESSAGE
        return PASSAGE_SEPARATOR.join(self.contents)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors, clipped to −1 … 1; 0.0 if either is all zeros."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"dimension mismatch: {va.shape} vs {vb.shape}")
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


class Retriever:
    """
    Stateless search component.  The provider and store are injected and
    shared across concurrent requests; neither is mutated here.

    Parameters
    ----------
    provider
        ``EmbeddingProvider`` (or anything with ``initialize`` / ``aembed``).
    store
        ``PassageStore`` (or anything with ``rank``).
    default_count
        Passages returned when ``count`` is omitted.
        Defaults to ``settings.SEARCH_RESULTS_LIMIT``.
    """

    def __init__(self, provider: QueryEmbedder, store: PassageRanker, default_count: int | None = None) -> None:
        self._provider = provider
        self._store = store
        self._default_count = default_count or settings.SEARCH_RESULTS_LIMIT

    async def retrieve(self, query: str, count: int | None = None) -> RetrievalResult:
        count = self._default_count if count is None else count
        if count < 1:
            raise ValueError(f"count must be ≥ 1, got {count}")

        if not isinstance(query, str) or not query.strip():
            logger.warning("[SEARCH] Blank query — nothing to embed.")
            return RetrievalResult(RetrievalStatus.EMPTY)

        t_start = time.perf_counter()
        try:
            await self._provider.initialize()
            query_vector = await self._provider.aembed(query)
            passages = await asyncio.to_thread(self._store.rank, query_vector, count)
        except EmbeddingError as exc:
            logger.error("[SEARCH] Embedding failed for query '%.50s': %s", query, exc)
            return RetrievalResult(RetrievalStatus.ERROR, error=str(exc))
        except StorageQueryError as exc:
            logger.error("[SEARCH] Ranking query failed: %s", exc)
            return RetrievalResult(RetrievalStatus.ERROR, error=str(exc))

        elapsed_ms = (time.perf_counter() - t_start) * 1000
        if not passages:
            logger.info("[SEARCH] No passages found in %.1fms.", elapsed_ms)
            return RetrievalResult(RetrievalStatus.EMPTY)

        logger.info("[SEARCH] %d passage(s) in %.1fms (top similarity %.3f).", len(passages), elapsed_ms, passages[0].similarity)
        return RetrievalResult(RetrievalStatus.OK, passages=list(passages))

    async def search(self, query: str, count: int | None = None) -> str:
        result = await self.retrieve(query, count)
        return result.as_context()
