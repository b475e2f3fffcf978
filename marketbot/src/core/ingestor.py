"""
Market Bot - IngestionPipeline
===============================
Offline pipeline that fills the passage table:
read → clean → chunk → embed → append.

Key design decisions:
    • **Dependency Injection** – receives a ``PassageStore``; the store's
      embedder does the vectorising.
    • **Append-only** – records are never updated in place.  Re-ingesting
      changed documents means dropping the table first
      (``setup_db --drop``).
    • **Recursive character splitting** – ``RecursiveCharacterTextSplitter``
      with ``CHUNK_SIZE`` / ``CHUNK_OVERLAP`` from settings.
    • **Deterministic order** – files are processed sorted by name, so
      ``passage_id`` (and therefore tie-breaking) is reproducible.

Usage:
    pipeline = IngestionPipeline(store)
    summary = pipeline.run()
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any

from langchain_text_splitters import RecursiveCharacterTextSplitter

from marketbot.config.settings import settings
from marketbot.src.database.vector_store import PassageStore
from marketbot.src.utils.logger import get_logger
from marketbot.src.utils.text_utils import clean_text

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = {".txt", ".md"}


class IngestionPipeline:
    """
    Parameters
    ----------
    store
        An initialised ``PassageStore`` (injected).
    source_dir
        Override the source directory.  Defaults to ``settings.DATA_RAW_DIR``.
    chunk_size, chunk_overlap
        Override the splitter parameters from settings.
    """

    def __init__(self, store: PassageStore, source_dir: Path | None = None, chunk_size: int | None = None, chunk_overlap: int | None = None) -> None:
        self._store = store
        self._source_dir = Path(source_dir or settings.DATA_RAW_DIR)
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size or settings.CHUNK_SIZE,
            chunk_overlap=settings.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap,
            length_function=len,
        )

    def run(self) -> dict[str, Any]:
        """
        Ingest every supported file in the source directory.

        Returns
        -------
        dict
            ``total_files``, ``files_processed``, ``files_failed``,
            ``total_chunks``, ``elapsed_seconds``.
        """
        t_start = time.perf_counter()

        if not self._source_dir.exists():
            logger.warning("Source directory does not exist: %s", self._source_dir)
            return self._summary(0, 0, 0, 0, time.perf_counter() - t_start)

        files = sorted(f for f in self._source_dir.iterdir() if f.is_file() and f.suffix.lower() in _SUPPORTED_EXTENSIONS)
        if not files:
            logger.warning("No supported files found in %s", self._source_dir)
            return self._summary(0, 0, 0, 0, time.perf_counter() - t_start)

        logger.info("Starting ingestion — %d file(s) found in %s", len(files), self._source_dir)

        total_chunks = 0
        files_processed = 0
        files_failed = 0
        for filepath in files:
            try:
                total_chunks += self.ingest_file(filepath)
                files_processed += 1
            except Exception:
                logger.exception("Failed to ingest file: %s", filepath.name)
                files_failed += 1

        elapsed = time.perf_counter() - t_start
        logger.info("Ingestion complete — %d file(s) processed, %d failed, %d chunk(s) stored in %.2fs.", files_processed, files_failed, total_chunks, elapsed)
        return self._summary(len(files), files_processed, files_failed, total_chunks, elapsed)

    def ingest_file(self, filepath: Path) -> int:
        """Clean, chunk and store one file.  Returns the number of passages added."""
        raw_text = self._read_file(filepath)
        cleaned = clean_text(raw_text)
        if not cleaned:
            logger.warning("Skipping empty file: %s", filepath.name)
            return 0

        chunks = self.chunk(cleaned)
        logger.info("File '%s' → %d chunk(s).", filepath.name, len(chunks))

        metadatas = [{"source_file": filepath.name} for _ in chunks]
        return self._store.add_passages(chunks, metadatas)

    def chunk(self, text: str) -> list[str]:
        return [c.strip() for c in self._splitter.split_text(text) if c.strip()]

    @staticmethod
    def _read_file(filepath: Path) -> str:
        try:
            return filepath.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return filepath.read_text(encoding="latin-1")

    @staticmethod
    def _summary(total: int, processed: int, failed: int, chunks: int, elapsed: float) -> dict[str, Any]:
        return {
            "total_files": total,
            "files_processed": processed,
            "files_failed": failed,
            "total_chunks": chunks,
            "elapsed_seconds": round(elapsed, 2),
        }
