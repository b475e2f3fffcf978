"""
Market Bot - PassageStore
==========================
OOP wrapper around LanceDB holding the knowledge-base passages:
  • Table creation with a strict PyArrow schema (fixed-width vectors)
  • Append-only passage insertion (embedding + metadata) with batching
  • Exact cosine-similarity ranking with a deterministic tie-break

Design decisions:
  • **Singleton DB connection** — ``_get_connection()`` caches the
    ``lancedb.DBConnection`` per path to avoid file-lock issues.
  • **Fresh reads** — ingestion runs in a separate process, so
    ``rank`` and ``count`` re-open the table on every call and pick up
    appended, dropped or recreated tables.
  • **Dependency Injection** — the embedder is injected, never
    hard-coded, so tests can pass a fake.
  • **Fixed-size vector column** — ``pa.list_(pa.float32(), dim)`` makes
    a wrong-width embedding a write-time error instead of a silent
    search-time mismatch.
  • **Deterministic ranking** — rows are over-fetched, converted from
    cosine distance to similarity, and re-sorted by
    ``(-similarity, passage_id)`` so equal scores come back in
    insertion order.

Usage:
    store = PassageStore(provider)
    store.add_passages(texts=[...], metadatas=[{"source_file": "trading.txt"}])
    top = store.rank(query_vector, limit=3)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable

import lancedb
import pyarrow as pa

from marketbot.config.settings import settings
from marketbot.src.core.exceptions import StorageQueryError
from marketbot.src.utils.logger import get_logger

logger = get_logger(__name__)

# ── Type Aliases ──────────────────────────────────────────────────────
PassageMetadata = dict[str, str | int]
PassageRow = dict[str, str | int | list[float]]


# ── Embedder Protocol ─────────────────────────────────────────────────

@runtime_checkable
class Embedder(Protocol):
    """Structural type for any LangChain-compatible embedding model."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]: ...

    def embed_query(self, text: str) -> list[float]: ...


@dataclass(frozen=True, slots=True)
class ScoredPassage:
    """One ranked row: higher ``similarity`` is closer (range −1 … 1)."""

    passage_id: int
    content: str
    similarity: float
    source_file: str = ""


def similarity_from_distance(distance: float) -> float:
    """Convert a cosine distance (0 … 2) to a similarity clipped to −1 … 1."""
    return max(-1.0, min(1.0, 1.0 - distance))


def passage_schema(dimension: int) -> pa.Schema:
    return pa.schema([
        pa.field("passage_id", pa.int64()),
        pa.field("content", pa.utf8()),
        pa.field("source_file", pa.utf8()),
        pa.field("embedding", pa.list_(pa.float32(), dimension)),
    ])


# ── Constants ──────────────────────────────────────────────────────────
_EMBED_BATCH_SIZE = 64
_VECTOR_COLUMN = "embedding"
_RESULT_COLUMNS = ["passage_id", "content", "source_file"]
_DB_LOCK = threading.Lock()
_db_connection_cache: dict[str, lancedb.DBConnection] = {}


def _get_connection(db_path: str) -> lancedb.DBConnection:
    """Return a cached ``lancedb.DBConnection`` for *db_path* (thread-safe)."""
    if db_path not in _db_connection_cache:
        with _DB_LOCK:
            if db_path not in _db_connection_cache:
                logger.info("Opening new LanceDB connection: %s", db_path)
                _db_connection_cache[db_path] = lancedb.connect(db_path)
    return _db_connection_cache[db_path]


def _table_exists(db: lancedb.DBConnection, table_name: str) -> bool:
    """Walk every ``list_tables`` page looking for *table_name*."""
    page_token = None
    while True:
        response = db.list_tables(page_token=page_token)
        if table_name in response.tables:
            return True
        page_token = response.page_token
        if not page_token:
            return False


class PassageStore:
    """
    High-level abstraction over the LanceDB passage table.

    Parameters
    ----------
    embedder : Embedder
        Used by ``add_passages`` to vectorise new passages.
    db_path
        Override the database directory.  Defaults to ``settings.LANCEDB_PATH``.
    table_name
        Override the table name.  Defaults to ``settings.LANCEDB_TABLE_NAME``.
    dimension
        Vector width.  Defaults to ``settings.EMBEDDING_DIMENSION``.
    overfetch
        Multiplier on ``limit`` used when ranking.  Defaults to
        ``settings.SEARCH_OVERFETCH``.
    """

    __slots__ = ("embedder", "_db_path", "_table_name", "_dimension", "_overfetch", "db", "table")

    def __init__(self, embedder: Embedder, db_path: str | None = None, table_name: str | None = None, dimension: int | None = None, overfetch: int | None = None) -> None:
        self.embedder: Embedder = embedder
        self._db_path: str = str(db_path or settings.LANCEDB_PATH)
        self._table_name: str = table_name or settings.LANCEDB_TABLE_NAME
        self._dimension: int = dimension or settings.EMBEDDING_DIMENSION
        self._overfetch: int = overfetch or settings.SEARCH_OVERFETCH
        self.db: lancedb.DBConnection | None = None
        self.table: lancedb.table.Table | None = None
        self._connect()


    @property
    def dimension(self) -> int:
        return self._dimension


    def _connect(self) -> None:
        """Open (or re-use) the LanceDB connection and initialise the table."""
        try:
            self.db = _get_connection(self._db_path)

            if _table_exists(self.db, self._table_name):
                self.table = self.db.open_table(self._table_name)
                logger.info("Opened existing table '%s' (%d rows).", self._table_name, self.table.count_rows())
            else:
                self.table = self.db.create_table(self._table_name, schema=passage_schema(self._dimension))
                logger.info("Created new table '%s' (%d-d vectors).", self._table_name, self._dimension)

        except OSError as exc:
            logger.error("LanceDB filesystem error at %s: %s", self._db_path, exc)
            raise
        except Exception:
            logger.exception("Unexpected error connecting to LanceDB.")
            raise

        self._check_vector_width()


    def _check_vector_width(self) -> None:
        vector_type = self.table.schema.field(_VECTOR_COLUMN).type
        if pa.types.is_fixed_size_list(vector_type) and vector_type.list_size != self._dimension:
            raise StorageQueryError(f"Table '{self._table_name}' stores {vector_type.list_size}-d vectors but the embedder produces {self._dimension}-d vectors. Re-ingest with --drop.")


    def _refresh_table(self) -> None:
        """
        Re-open the table so rows written by another process are visible.

        Ingestion runs out of process and may append to, drop or recreate
        the table while this store is serving queries.
        """
        if not _table_exists(self.db, self._table_name):
            self.table = None
            return
        self.table = self.db.open_table(self._table_name)
        self._check_vector_width()


    def add_passages(self, texts: list[str], metadatas: list[PassageMetadata] | None = None) -> int:
        """
        Embed passages and append them to the table.

        ``passage_id`` continues from the current row count, so ids follow
        insertion order.  Existing rows are never modified.

        Returns
        -------
        int
            Number of rows added.

        Raises
        ------
        ValueError
            On a texts/metadatas length mismatch or a wrong-width vector.
        """
        if metadatas is not None and len(texts) != len(metadatas):
            raise ValueError(f"Length mismatch: {len(texts)} texts vs {len(metadatas)} metadatas.")
        if not texts:
            return 0
        self._refresh_table()
        if self.table is None:
            self._connect()

        logger.info("Embedding %d passages in batches of %d …", len(texts), _EMBED_BATCH_SIZE)

        all_vectors: list[list[float]] = []
        for i in range(0, len(texts), _EMBED_BATCH_SIZE):
            batch = texts[i : i + _EMBED_BATCH_SIZE]
            try:
                all_vectors.extend(self.embedder.embed_documents(batch))
            except Exception as exc:
                logger.error("Embedding batch %d–%d failed: %s", i, i + len(batch) - 1, exc)
                raise

        for vec in all_vectors:
            if len(vec) != self._dimension:
                raise ValueError(f"Embedding has {len(vec)} dims, table expects {self._dimension}.")

        next_id = self.table.count_rows()
        metas = metadatas or [{} for _ in texts]
        rows: list[PassageRow] = [
            {"passage_id": next_id + offset, "content": text, "source_file": str(meta.get("source_file", "")), "embedding": vec}
            for offset, (text, vec, meta) in enumerate(zip(texts, all_vectors, metas))
        ]

        try:
            self.table.add(rows)
        except OSError as exc:
            logger.error("Failed to write passages to LanceDB: %s", exc)
            raise

        logger.info("Added %d passages. Table '%s' now has %d rows.", len(rows), self._table_name, self.table.count_rows())
        return len(rows)


    def rank(self, query_vector: Sequence[float], limit: int) -> list[ScoredPassage]:
        """
        Return the ``limit`` passages most similar to ``query_vector``.

        Similarity is ``1 - cosine_distance``.  Ties are broken by
        ascending ``passage_id``.

        Raises
        ------
        StorageQueryError
            On any LanceDB failure or a query vector of the wrong width.
        """
        if limit < 1:
            raise ValueError(f"limit must be ≥ 1, got {limit}")
        if len(query_vector) != self._dimension:
            raise StorageQueryError(f"Query vector has {len(query_vector)} dims, table expects {self._dimension}.")

        try:
            self._refresh_table()
            if self.table is None:
                logger.info("Passage table '%s' does not exist.", self._table_name)
                return []
            if self.table.count_rows() == 0:
                logger.info("Passage table '%s' is empty.", self._table_name)
                return []

            rows = (
                self.table.search(list(query_vector), vector_column_name=_VECTOR_COLUMN)
                .distance_type("cosine")
                .select(_RESULT_COLUMNS)
                .limit(limit * self._overfetch)
                .to_list()
            )
        except StorageQueryError:
            raise
        except Exception as exc:
            logger.error("Similarity query on '%s' failed: %s", self._table_name, exc)
            raise StorageQueryError(f"similarity query failed: {exc}") from exc

        ranked = sorted(
            (ScoredPassage(passage_id=int(row["passage_id"]), content=str(row["content"]), similarity=similarity_from_distance(float(row["_distance"])), source_file=str(row.get("source_file") or "")) for row in rows),
            key=lambda p: (-p.similarity, p.passage_id),
        )
        logger.debug("Ranked %d candidate rows, keeping %d.", len(ranked), min(limit, len(ranked)))
        return ranked[:limit]


    def count(self) -> int:
        """Return the total number of rows in the table."""
        self._refresh_table()
        if self.table is None:
            return 0
        return self.table.count_rows()


    def drop_table(self) -> None:
        """Drop the passage table (used for clean re-ingestion)."""
        if self.db is None:
            logger.warning("No database connection; nothing to drop.")
            return
        if not _table_exists(self.db, self._table_name):
            logger.warning("Table '%s' does not exist — nothing to drop.", self._table_name)
            self.table = None
            return
        try:
            self.db.drop_table(self._table_name)
            self.table = None
            logger.info("Dropped table '%s'.", self._table_name)
        except OSError as exc:
            logger.error("Filesystem error dropping table '%s': %s", self._table_name, exc)
            raise


    def __repr__(self) -> str:
        return f"PassageStore(db='{self._db_path}', table='{self._table_name}', rows={self.count()})"
