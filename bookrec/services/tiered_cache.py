"""
Tiered Book Cache

Read path for a single book:

    process memory → Redis → Postgres → Google Books → Open Library

A hit at any tier populates every faster tier before returning, so the
next read for the same id stops earlier. Provider hits are returned at
once and handed to the persistence callback, which runs on the worker
pool and re-keys the cache tiers under the canonical id when it finishes.

Failure Handling
================
Redis and database errors are soft: they are logged and the cascade
moves on to the next tier. Only when every tier misses is None returned.

There is no request coalescing: two concurrent misses for the same id
both call the provider, and the last cache put wins.
"""

import logging
from collections.abc import Callable
from concurrent.futures import Future
from typing import Optional, Protocol

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookrec.schemas.book import BookRecord, CachedBook
from bookrec.services.cache import RedisCache, make_cache_key
from bookrec.services.memory_cache import LocalBookCache
from bookrec.services.repository import BookRepository
from bookrec.utils.identifiers import is_isbn, looks_like_uuid

logger = logging.getLogger(__name__)

# Provider-id namespaces tried, in order, for non-UUID ids
EXTERNAL_ID_SOURCES = ("GOOGLE_BOOKS", "OPEN_LIBRARY")


class BookProvider(Protocol):
    name: str

    def fetch_by_id(self, identifier: str) -> Optional[dict]: ...

    def search(self, query: str, limit: int = 20) -> list[dict]: ...

    def to_book(self, raw: dict) -> Optional[BookRecord]: ...


# (lookup key, fetched record, raw JSON, provider name) -> future of canonical id
PersistCallback = Callable[[str, BookRecord, Optional[str], str], Optional[Future]]


class TieredBookCache:
    """
    Multi-tier book lookup.

    Records handed out are copies: mutating one never changes a cached entry.

    Args:
        local: Process-local cache
        distributed: Redis accessor, or None when Redis is disabled
        session_factory: Opens a Session for relational lookups
        providers: External providers, tried in order
        persist: Called with every provider hit; returns the background future
        book_ttl: TTL for book entries in Redis
    """

    def __init__(
        self,
        local: LocalBookCache,
        distributed: Optional[RedisCache],
        session_factory: Callable[[], Session],
        providers: list[BookProvider],
        persist: Optional[PersistCallback] = None,
        book_ttl: Optional[int] = None,
    ):
        self.local = local
        self.distributed = distributed
        self.session_factory = session_factory
        self.providers = providers
        self.persist = persist
        self.book_ttl = book_ttl

    # -------------------------------------------------------------------------
    # Read Path
    # -------------------------------------------------------------------------
    def get_book_by_id(self, book_id: str) -> Optional[BookRecord]:
        """
        Look a book up by canonical UUID, provider id or ISBN.

        Returns:
            The book, or None when no tier knows it
        """
        if not book_id or not book_id.strip():
            return None
        key = book_id.strip()

        # Tier 1: process memory
        cached = self.local.get(key)
        if cached is not None:
            logger.debug(f"Local cache HIT: {key}")
            return cached.book.model_copy(deep=True)

        # Tier 2: Redis
        cached = self._distributed_get(key)
        if cached is not None:
            self.local.put(key, cached.touch())
            return cached.book.model_copy(deep=True)

        # Tier 3: relational store
        record = self._store_lookup(key)
        if record is not None:
            self._populate(record, {key, record.id})
            return record

        # Tier 4: external providers
        for provider in self.providers:
            raw = provider.fetch_by_id(key)
            if not raw:
                continue
            record = provider.to_book(raw)
            if record is None:
                continue
            logger.info(f"Provider {provider.name} resolved {key}")
            self._populate(record, {key, record.id})
            if self.persist is not None:
                self.persist(key, record, record.raw_json_response, provider.name)
            return record

        logger.info(f"Book {key} not found in any tier")
        return None

    def get_books_by_isbn(self, isbn: str) -> list[BookRecord]:
        """All books for an ISBN: the match first, then its linked editions."""
        if not is_isbn(isbn):
            return []
        book = self.get_book_by_id(isbn)
        if book is None:
            return []
        books = [book]
        if book.is_canonical and book.other_editions:
            try:
                with self.session_factory() as db:
                    books.extend(
                        BookRepository(db).find_many([e.identifier for e in book.other_editions])
                    )
            except SQLAlchemyError as e:
                logger.warning(f"Edition lookup failed for {isbn}: {e}")
        return books

    def is_book_in_cache(self, book_id: str) -> bool:
        """True when either cache tier holds book_id; never touches the store."""
        if self.local.contains(book_id):
            return True
        return self._distributed_get(book_id) is not None

    # -------------------------------------------------------------------------
    # Write Path
    # -------------------------------------------------------------------------
    def put(self, book: BookRecord, *keys: str) -> None:
        """Store book in both cache tiers under its id and any extra keys."""
        self._populate(book, {book.id, *keys})

    def evict(self, book_id: str) -> None:
        self.local.evict(book_id)
        if self.distributed is not None:
            self.distributed.evict(make_cache_key("book", book_id))

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------
    def _distributed_get(self, key: str) -> Optional[CachedBook]:
        if self.distributed is None:
            return None
        value = self.distributed.get(make_cache_key("book", key))
        if value is None:
            return None
        try:
            return CachedBook.model_validate(value)
        except ValidationError as e:
            logger.warning(f"Discarding malformed cache entry for {key}: {e}")
            return None

    def _store_lookup(self, key: str) -> Optional[BookRecord]:
        try:
            with self.session_factory() as db:
                repository = BookRepository(db)
                if looks_like_uuid(key):
                    return repository.find_by_id(key)
                for source in EXTERNAL_ID_SOURCES:
                    record = repository.find_by_external_id(source, key)
                    if record is not None:
                        return record
                if is_isbn(key):
                    return repository.find_by_isbn(key)
                return None
        except SQLAlchemyError as e:
            logger.warning(f"Relational lookup failed for {key}: {e}")
            return None

    def _populate(self, book: BookRecord, keys: set[Optional[str]]) -> None:
        # Callers keep and mutate their record; the cache holds its own copy
        cached = CachedBook.from_book(book.model_copy(deep=True))
        payload = cached.model_dump(mode="json")
        for key in keys:
            if not key:
                continue
            self.local.put(key, cached)
            if self.distributed is not None:
                self.distributed.put(make_cache_key("book", key), payload, self.book_ttl)
