"""
Book Data Orchestrator

Ties the read path (TieredBookCache) to the write path (BookRepository):

- fetch_canonical_book: tiered lookup; provider hits are persisted on the
  worker pool
- persist_fetched_book: upsert a fetched record, then re-key both cache
  tiers under the canonical id and publish book.upserted
- ingest_payload: parse a raw (possibly concatenated) JSON dump and
  persist every record in it
"""

import logging
from collections.abc import Callable
from concurrent.futures import Future
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookrec.schemas.book import BookRecord
from bookrec.services.background import BackgroundTasks
from bookrec.services.events import EventPublisher
from bookrec.services.repository import BookRepository
from bookrec.services.tiered_cache import TieredBookCache
from bookrec.utils.book_json import (
    google_volume_to_book,
    open_library_to_book,
    parse_book_json_payload,
)

logger = logging.getLogger(__name__)

_CONVERTERS = {
    "GOOGLE_BOOKS": google_volume_to_book,
    "OPEN_LIBRARY": open_library_to_book,
}


class BookDataOrchestrator:
    """
    Entry point for book reads and writes.

    The tiered cache is wired with persist=self.schedule_persistence, so a
    provider hit is returned to the caller straight away and stored in the
    background.
    """

    def __init__(
        self,
        cache: TieredBookCache,
        session_factory: Callable[[], Session],
        background: BackgroundTasks,
        events: Optional[EventPublisher] = None,
    ):
        self.cache = cache
        self.session_factory = session_factory
        self.background = background
        self.events = events
        self.cache.persist = self.schedule_persistence

    # =========================================================================
    # Reads
    # =========================================================================

    def fetch_canonical_book(self, book_id: str) -> Optional[BookRecord]:
        """Look a book up by canonical UUID, provider id or ISBN."""
        return self.cache.get_book_by_id(book_id)

    def fetch_books_by_isbn(self, isbn: str) -> list[BookRecord]:
        return self.cache.get_books_by_isbn(isbn)

    # =========================================================================
    # Writes
    # =========================================================================

    def schedule_persistence(
        self,
        key: str,
        book: BookRecord,
        raw_json: Optional[str],
        source: str,
    ) -> Future:
        """Queue persist_fetched_book on the worker pool."""
        return self.background.submit(self.persist_fetched_book, key, book, raw_json, source)

    def persist_fetched_book(
        self,
        key: Optional[str],
        book: BookRecord,
        raw_json: Optional[str] = None,
        source: str = "GOOGLE_BOOKS",
    ) -> Optional[str]:
        """
        Store a provider record and re-key the cache tiers.

        Args:
            key: Id the caller looked the book up with
            book: Record as returned by the provider
            raw_json: Raw provider JSON
            source: Provider name, e.g. GOOGLE_BOOKS

        Returns:
            Canonical id, or None when the store rejected the record
        """
        provider_id = book.id if book.id and not book.is_canonical else None
        try:
            with self.session_factory() as db:
                repository = BookRepository(db)
                canonical_id = repository.upsert_book(book, raw_json, source, provider_id)
                stored = repository.find_by_id(canonical_id)
        except SQLAlchemyError as e:
            logger.warning(f"Persisting book {key or book.id} failed: {e}")
            return None

        if stored is None:
            logger.warning(f"Book {canonical_id} vanished after upsert")
            return canonical_id

        self.cache.put(stored, *(k for k in (key, provider_id) if k))
        logger.info(f"Persisted {source} book {provider_id or key} as {canonical_id}")

        if self.events is not None:
            self.events.publish_book_upserted(
                canonical_id,
                {
                    "title": stored.title,
                    "source": source,
                    "provider_id": provider_id,
                    "isbn13": stored.isbn13,
                },
            )
        return canonical_id

    def ingest_payload(self, payload: Optional[str], source: str = "GOOGLE_BOOKS") -> list[str]:
        """
        Persist every book found in a raw JSON dump.

        Malformed fragments are skipped by the parser; records the
        converter cannot read are skipped here.

        Returns:
            Canonical ids, in payload order
        """
        convert = _CONVERTERS.get(source, google_volume_to_book)
        ids = []
        for node in parse_book_json_payload(payload, label=source):
            book = convert(node)
            if book is None:
                logger.warning(f"Skipping unreadable {source} record")
                continue
            canonical_id = self.persist_fetched_book(None, book, book.raw_json_response, source)
            if canonical_id:
                ids.append(canonical_id)
        logger.info(f"Ingested {len(ids)} book(s) from {source} payload")
        return ids

    def on_cover_updated(self, book: BookRecord) -> None:
        """Refresh cached copies after a cover change."""
        if book.id:
            self.cache.put(book)
