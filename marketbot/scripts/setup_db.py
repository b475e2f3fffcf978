"""
Market Bot - Database Setup & Ingestion Script
===============================================
CLI entry point that orchestrates:
    1. Load settings (fail-fast on a missing ``.env`` value).
    2. Load the embedding model.
    3. Open the ``PassageStore`` (optionally drop the existing table).
    4. Run the ``IngestionPipeline``.
    5. Print an execution summary with a timing breakdown.

Flags:
    --drop       Drop the passage table before ingesting.
    --drop-only  Drop the passage table and exit.
    --source     Read documents from this directory instead of DATA_RAW_DIR.

Usage:
    python -m marketbot.scripts.setup_db
    python -m marketbot.scripts.setup_db --drop
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="setup_db", description="Market Bot — build the NSE knowledge-base passage table.")
    parser.add_argument("--drop", action="store_true", default=False, help="Drop the passage table before ingesting.")
    parser.add_argument("--drop-only", action="store_true", default=False, help="Drop the passage table and exit (no ingestion).")
    parser.add_argument("--source", type=Path, default=None, help="Directory of .txt/.md documents (defaults to DATA_RAW_DIR).")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    t_start = time.perf_counter()

    # ── 0. Settings ────────────────────────────────────────────────────
    try:
        from marketbot.config.settings import settings
    except Exception as exc:
        print("\n[FATAL] Configuration error — check your .env file:\n")
        print(f"  {exc}")
        print()
        sys.exit(1)

    from marketbot.src.utils.logger import get_logger
    logger = get_logger(__name__)

    _print_header(settings, args.source or settings.DATA_RAW_DIR)

    # ── 1. Embedding model (timed) ─────────────────────────────────────
    from marketbot.src.core.embedding_provider import get_instance
    from marketbot.src.core.exceptions import EmbeddingError

    t_embedder = time.perf_counter()
    try:
        provider = asyncio.run(get_instance())
    except EmbeddingError:
        logger.exception("Failed to load embedding model.")
        sys.exit(1)
    embedder_ms = (time.perf_counter() - t_embedder) * 1000
    logger.info("Embedding model loaded in %.1fms", embedder_ms)

    # ── 2. Passage store (timed) ───────────────────────────────────────
    from marketbot.src.database.vector_store import PassageStore

    t_lancedb = time.perf_counter()
    store = PassageStore(embedder=provider)
    lancedb_ms = (time.perf_counter() - t_lancedb) * 1000

    if args.drop or args.drop_only:
        logger.warning("Dropping table '%s' as requested.", settings.LANCEDB_TABLE_NAME)
        store.drop_table()

        if args.drop_only:
            logger.info("--drop-only: Table dropped. Exiting.")
            return

        store = PassageStore(embedder=provider)

    logger.info("PassageStore ready — table '%s' (%d existing rows).", settings.LANCEDB_TABLE_NAME, store.count())

    # ── 3. Ingest ──────────────────────────────────────────────────────
    from marketbot.src.core.ingestor import IngestionPipeline

    summary = IngestionPipeline(store, source_dir=args.source).run()

    _print_footer(summary, store.count(), time.perf_counter() - t_start, embedder_ms, lancedb_ms)


# ── Pretty-print helpers ──────────────────────────────────────────────

def _print_header(settings: object, source_dir: Path) -> None:
    print()
    print("=" * 60)
    print("  MARKET BOT — Knowledge Base Setup & Ingestion")
    print("=" * 60)
    print(f"  Environment  : {settings.ENV}")                       # type: ignore[attr-defined]
    print(f"  Embedding    : {settings.EMBEDDING_MODEL} ({settings.EMBEDDING_DIMENSION}d, {settings.EMBEDDING_POOLING} pooling)")  # type: ignore[attr-defined]
    print(f"  LanceDB path : {settings.LANCEDB_PATH}")              # type: ignore[attr-defined]
    print(f"  Table        : {settings.LANCEDB_TABLE_NAME}")        # type: ignore[attr-defined]
    print(f"  Source dir   : {source_dir}")
    print(f"  Chunk size   : {settings.CHUNK_SIZE} chars (overlap {settings.CHUNK_OVERLAP})")  # type: ignore[attr-defined]
    print("=" * 60)
    print()


def _print_footer(summary: dict, total_rows: int, elapsed: float, embedder_ms: float, lancedb_ms: float) -> None:
    print()
    print("=" * 60)
    print("  EXECUTION SUMMARY")
    print("-" * 60)
    print(f"  Files scanned        : {summary['total_files']}")
    print(f"  Files ingested       : {summary['files_processed']}")
    print(f"  Files failed         : {summary['files_failed']}")
    print(f"  Passages added       : {summary['total_chunks']}")
    print(f"  Passages in table    : {total_rows}")
    print("-" * 60)
    print(f"  Embedder load        : {embedder_ms:>8.1f}ms")
    print(f"  LanceDB connection   : {lancedb_ms:>8.1f}ms")
    print(f"  Total elapsed        : {elapsed:>8.2f}s")
    print("=" * 60)
    print()


if __name__ == "__main__":
    main()
