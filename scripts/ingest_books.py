#!/usr/bin/env python3
"""
Book Ingestion Script

Loads raw provider JSON dumps into the relational store. Dumps may be
concatenated objects, arrays, or pre-processed records wrapping the
original volume in rawJsonResponse; see parse_book_json_payload.

Usage:
    # From project root with venv activated:
    python scripts/ingest_books.py dumps/*.json

    # Everything under an S3 prefix:
    python scripts/ingest_books.py --s3-prefix books/v1/

    # Options:
    python scripts/ingest_books.py --source OPEN_LIBRARY ol_dump.json
    python scripts/ingest_books.py --create-tables dumps/*.json
"""

import argparse
import logging
from pathlib import Path

from bookrec.config import get_settings
from bookrec.database import SessionLocal, create_tables
from bookrec.services.background import BackgroundTasks
from bookrec.services.memory_cache import LocalBookCache
from bookrec.services.object_storage import S3ObjectStorage
from bookrec.services.orchestrator import BookDataOrchestrator
from bookrec.services.tiered_cache import TieredBookCache

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_orchestrator() -> BookDataOrchestrator:
    """Store-only orchestrator: no providers and no distributed cache."""
    cache = TieredBookCache(LocalBookCache(), None, SessionLocal, providers=[])
    return BookDataOrchestrator(cache, SessionLocal, BackgroundTasks(max_workers=1))


def ingest_files(orchestrator: BookDataOrchestrator, paths: list[Path], source: str) -> int:
    total = 0
    for path in paths:
        try:
            payload = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Skipping {path}: {e}")
            continue
        ids = orchestrator.ingest_payload(payload, source)
        logger.info(f"{path}: {len(ids)} book(s)")
        total += len(ids)
    return total


def ingest_s3_prefix(orchestrator: BookDataOrchestrator, prefix: str, source: str) -> int:
    storage = S3ObjectStorage(get_settings())
    keys = [k for k in storage.list_keys(prefix) if k.endswith(".json")]
    logger.info(f"Found {len(keys)} JSON object(s) under {prefix}")

    total = 0
    for key in keys:
        data = storage.get_object(key)
        if data is None:
            continue
        ids = orchestrator.ingest_payload(data.decode("utf-8", errors="replace"), source)
        logger.info(f"{key}: {len(ids)} book(s)")
        total += len(ids)
    return total


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Ingest raw book JSON dumps into the relational store"
    )
    parser.add_argument("paths", nargs="*", type=Path, help="JSON dump files")
    parser.add_argument(
        "--s3-prefix",
        help="Ingest every .json object under this S3 prefix"
    )
    parser.add_argument(
        "--source",
        default="GOOGLE_BOOKS",
        choices=["GOOGLE_BOOKS", "OPEN_LIBRARY"],
        help="Provider the dumps came from (default: GOOGLE_BOOKS)"
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create tables first (development only; use alembic otherwise)"
    )

    args = parser.parse_args()
    if not args.paths and not args.s3_prefix:
        parser.error("give at least one file or --s3-prefix")

    if args.create_tables:
        create_tables()

    orchestrator = build_orchestrator()
    total = 0
    if args.paths:
        total += ingest_files(orchestrator, args.paths, args.source)
    if args.s3_prefix:
        total += ingest_s3_prefix(orchestrator, args.s3_prefix, args.source)

    logger.info("=" * 50)
    logger.info(f"Ingestion complete: {total} book(s) stored")
    orchestrator.background.shutdown()


if __name__ == "__main__":
    main()
