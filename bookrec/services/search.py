"""
Search Service

Searches the relational store first and falls back to external providers
when a page comes back short.

Features:
- LIKE matching over title, authors and ISBN
- Provider fallback (Google Books, then Open Library) to fill the page
- Merge and dedup by ISBN-13, ISBN-10, then normalized title + first author
- Query-derived qualifiers attached to books found through fallback
- Background persistence of fallback hits
- Redis caching of whole result pages
"""

import logging
import math
from collections.abc import Callable
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookrec.exceptions import ProviderError
from bookrec.schemas.book import BookRecord, BookSearchResponse, BookSummary
from bookrec.services.cache import RedisCache, make_cache_key
from bookrec.services.repository import BookRepository
from bookrec.services.tiered_cache import BookProvider, PersistCallback
from bookrec.utils.book_json import book_dedup_key, extract_qualifiers_from_search_query

logger = logging.getLogger(__name__)


class BookSearchService:
    """
    Store-first search with provider fallback.

    Args:
        session_factory: Opens a Session for store queries
        providers: External providers used when the store page is short
        distributed: Redis accessor for result caching, optional
        persist: Called with every fallback hit (usually the orchestrator's
            schedule_persistence)
        cache_ttl: TTL for cached result pages
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        providers: list[BookProvider],
        distributed: Optional[RedisCache] = None,
        persist: Optional[PersistCallback] = None,
        cache_ttl: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.providers = providers
        self.distributed = distributed
        self.persist = persist
        self.cache_ttl = cache_ttl

    def search(self, query: str, page: int = 1, size: int = 20) -> BookSearchResponse:
        """
        Search books by title, author or ISBN.

        Args:
            query: Free-text query
            page: Page number (1-indexed)
            size: Results per page

        Returns:
            BookSearchResponse; fallback is True when provider results
            were merged into the page
        """
        query = (query or "").strip()
        page = max(page, 1)
        size = max(size, 1)
        if not query:
            return BookSearchResponse(items=[], total=0, page=page, size=size, pages=0)

        cache_key = make_cache_key("search", query.lower(), page=page, size=size)
        cached = self._cached_page(cache_key)
        if cached is not None:
            logger.debug(f"Search cache HIT: {query!r} page {page}")
            return cached

        offset = (page - 1) * size
        records, store_total = self._search_store(query, size, offset)

        # Provider results continue the listing after the last store match
        total = store_total
        fallback = False
        if len(records) < size:
            known = records
            if store_total > len(records):
                known, _ = self._search_store(query, store_total, 0)
            provider_offset = max(offset - store_total, 0)
            needed = size - len(records)
            provider_books = self._search_providers(query, known, provider_offset + needed)
            extra = provider_books[provider_offset:provider_offset + needed]
            total = store_total + len(provider_books)
            if extra:
                fallback = True
                records = records + extra

        response = BookSearchResponse(
            items=[BookSummary.from_record(r) for r in records],
            total=total,
            page=page,
            size=size,
            pages=math.ceil(total / size) if total > 0 else 0,
            fallback=fallback,
        )

        if self.distributed is not None:
            self.distributed.put(cache_key, response.model_dump(mode="json"), self.cache_ttl)
        return response

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _cached_page(self, cache_key: str) -> Optional[BookSearchResponse]:
        if self.distributed is None:
            return None
        value = self.distributed.get(cache_key)
        if value is None:
            return None
        try:
            return BookSearchResponse.model_validate(value)
        except ValidationError as e:
            logger.warning(f"Discarding malformed search cache entry {cache_key}: {e}")
            return None

    def _search_store(self, query: str, limit: int, offset: int) -> tuple[list[BookRecord], int]:
        try:
            with self.session_factory() as db:
                return BookRepository(db).search(query, limit=limit, offset=offset)
        except SQLAlchemyError as e:
            logger.warning(f"Store search failed for {query!r}: {e}")
            return [], 0

    def _search_providers(
        self,
        query: str,
        existing: list[BookRecord],
        needed: int,
    ) -> list[BookRecord]:
        """
        Collect provider results not already in the store listing.

        Every distinct result a provider returns is kept (at least `needed`
        are asked for), so the caller can page through them and count them.
        """
        seen = {book_dedup_key(b) for b in existing}
        qualifiers = extract_qualifiers_from_search_query(query)
        found: list[BookRecord] = []

        for provider in self.providers:
            if len(found) >= needed:
                break
            try:
                raw_items = provider.search(query, limit=max(needed, 10))
            except ProviderError as e:
                logger.warning(f"{e.provider} search failed for {query!r}: {e}")
                continue

            for raw in raw_items:
                book = provider.to_book(raw)
                if book is None:
                    continue
                key = book_dedup_key(book)
                if key in seen:
                    continue
                seen.add(key)
                book.qualifiers = {**qualifiers, **book.qualifiers}
                found.append(book)
                if self.persist is not None:
                    self.persist(book.id or key, book, book.raw_json_response, provider.name)

        if found:
            logger.info(f"Search fallback added {len(found)} provider result(s) for {query!r}")
        return found
