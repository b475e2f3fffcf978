"""
Market Bot - EmbeddingProvider
===============================
Turns text into a fixed-length, unit-length vector with a pretrained
feature-extraction model (``sentence-transformers/all-MiniLM-L6-v2`` by
default, 384 dimensions).

Design decisions:
  • **Explicit lifecycle** – the model is loaded by ``initialize()``,
    never as a side effect of ``embed()``.  Calling ``embed()`` on a
    provider that has not finished loading raises
    ``UninitializedProviderError``.
  • **Single-flight loading** – ``_load()`` uses a double-checked lock,
    so concurrent first callers wait for the one in-flight load instead
    of each downloading the weights.
  • **Off-loop work** – loading and encoding are CPU/network bound and
    run in worker threads via ``asyncio.to_thread``.
  • **Mean pooling + L2 normalisation** – the sentence-transformers
    pipeline is assembled from a ``Transformer`` and a ``Pooling``
    module; vectors are normalised to unit length afterwards.
  • **LangChain-compatible** – ``embed_query`` / ``embed_documents``
    satisfy the ``Embedder`` protocol used by ``PassageStore``.

Usage:
    provider = await get_instance()
    vector = await provider.aembed("When does the NSE open?")
"""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path
from typing import Callable, Protocol

import numpy as np

from marketbot.config.settings import settings
from marketbot.src.core.exceptions import EmbeddingError, UninitializedProviderError
from marketbot.src.utils.logger import get_logger

logger = get_logger(__name__)


class EncoderModel(Protocol):
    """The subset of ``SentenceTransformer`` the provider relies on."""

    def encode(self, sentences: list[str], **kwargs: object) -> np.ndarray: ...

    def get_sentence_embedding_dimension(self) -> int | None: ...


ModelFactory = Callable[[str, str, Path | None], EncoderModel]


def build_sentence_transformer(model_name: str, pooling: str, cache_dir: Path | None) -> EncoderModel:
    """Assemble a Transformer → Pooling pipeline (downloads weights on first use)."""
    from sentence_transformers import SentenceTransformer, models

    transformer = models.Transformer(model_name, cache_dir=str(cache_dir) if cache_dir else None)
    pooler = models.Pooling(transformer.get_word_embedding_dimension(), pooling_mode=pooling)
    return SentenceTransformer(modules=[transformer, pooler])


def l2_normalize(vectors: np.ndarray) -> np.ndarray:
    """Scale each row to unit length; all-zero rows are left as zeros."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0.0] = 1.0
    return vectors / norms


class EmbeddingProvider:
    """
    Process-lifetime handle on the feature-extraction model.

    Parameters
    ----------
    model_name
        Hugging Face model id.  Defaults to ``settings.EMBEDDING_MODEL``.
    pooling
        Token pooling mode.  Defaults to ``settings.EMBEDDING_POOLING``.
    normalize
        L2-normalise outputs.  Defaults to ``settings.EMBEDDING_NORMALIZE``.
    dimension
        Expected output width.  Defaults to ``settings.EMBEDDING_DIMENSION``;
        a loaded model reporting a different width is rejected.
    model_factory
        Callable building the encoder.  Tests inject a fake here.
    """

    __slots__ = ("_model_name", "_pooling", "_normalize", "_dimension", "_cache_dir", "_model_factory", "_model", "_load_lock", "load_count")

    def __init__(self, model_name: str | None = None, pooling: str | None = None, normalize: bool | None = None, dimension: int | None = None, cache_dir: Path | None = None, model_factory: ModelFactory | None = None) -> None:
        self._model_name: str = model_name or settings.EMBEDDING_MODEL
        self._pooling: str = pooling or settings.EMBEDDING_POOLING
        self._normalize: bool = settings.EMBEDDING_NORMALIZE if normalize is None else normalize
        self._dimension: int = dimension or settings.EMBEDDING_DIMENSION
        self._cache_dir: Path | None = cache_dir or settings.MODEL_CACHE_DIR
        self._model_factory: ModelFactory = model_factory or build_sentence_transformer
        self._model: EncoderModel | None = None
        self._load_lock = threading.Lock()
        self.load_count: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self._model is not None

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    async def initialize(self) -> EmbeddingProvider:
        """Load the model once; concurrent callers share the same load."""
        if self._model is None:
            await asyncio.to_thread(self._load)
        return self

    def _load(self) -> None:
        if self._model is not None:
            return
        with self._load_lock:
            if self._model is not None:
                return

            t_load = time.perf_counter()
            logger.info("Loading embedding model '%s' (pooling=%s, normalize=%s) …", self._model_name, self._pooling, self._normalize)
            try:
                model = self._model_factory(self._model_name, self._pooling, self._cache_dir)
                reported = model.get_sentence_embedding_dimension()
            except Exception as exc:
                logger.exception("Failed to load embedding model '%s'.", self._model_name)
                raise EmbeddingError(f"could not load embedding model '{self._model_name}': {exc}") from exc

            if reported is not None and reported != self._dimension:
                raise EmbeddingError(f"model '{self._model_name}' produces {reported}-d vectors, expected {self._dimension}")

            self._model = model
            self.load_count += 1
            logger.info("Embedding model ready in %.1fms (%d dims).", (time.perf_counter() - t_load) * 1000, self._dimension)

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of non-empty strings, preserving order."""
        if self._model is None:
            raise UninitializedProviderError("EmbeddingProvider.initialize() has not completed.")
        for text in texts:
            if not isinstance(text, str) or not text.strip():
                raise ValueError("cannot embed empty text")
        if not texts:
            return []

        try:
            raw = self._model.encode(texts, convert_to_numpy=True, show_progress_bar=False)
            vectors = np.asarray(raw, dtype=np.float32).reshape(len(texts), -1)
        except Exception as exc:
            raise EmbeddingError(f"embedding model failed: {exc}") from exc

        if vectors.shape[1] != self._dimension:
            raise EmbeddingError(f"model returned {vectors.shape[1]}-d vectors, expected {self._dimension}")
        if self._normalize:
            vectors = l2_normalize(vectors)
        return vectors.tolist()

    def embed(self, text: str) -> list[float]:
        return self.embed_documents([text])[0]

    # LangChain naming
    embed_query = embed

    async def aembed(self, text: str) -> list[float]:
        """``embed`` in a worker thread, keeping the event loop free."""
        return await asyncio.to_thread(self.embed, text)

    def __repr__(self) -> str:
        return f"EmbeddingProvider(model='{self._model_name}', dims={self._dimension}, ready={self.is_ready})"


# ── Process-wide accessor ──────────────────────────────────────────────
_INSTANCE_LOCK = threading.Lock()
_instance: EmbeddingProvider | None = None


async def get_instance() -> EmbeddingProvider:
    """
    Return the process-wide provider, loading the model on first use.

    The application lifespan calls this once and injects the result;
    scripts call it directly.
    """
    global _instance
    if _instance is None:
        with _INSTANCE_LOCK:
            if _instance is None:
                _instance = EmbeddingProvider()
    return await _instance.initialize()
