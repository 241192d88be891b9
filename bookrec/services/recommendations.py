"""
Recommendations Service

Content-based "similar books" for a source book.

Algorithm:
1. Collect store candidates sharing an author or a category
2. Score: author overlap (weight 0.8), category overlap (weight 0.6),
   plus a rating boost (up to 0.2)
3. Exclude the source book and every linked edition of it
4. If the store yields fewer than `limit`, supplement with provider
   search by first author, then by first category
5. Store the top ids on the book (cached_recommendation_ids) and cache
   the scored list in Redis
"""

import logging
from collections.abc import Callable
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookrec.schemas.book import BookRecord, BookSummary, SimilarBook
from bookrec.services.cache import RedisCache, make_cache_key
from bookrec.services.repository import BookRepository
from bookrec.services.tiered_cache import BookProvider, PersistCallback
from bookrec.utils.book_json import book_dedup_key, normalize_key_component

logger = logging.getLogger(__name__)

AUTHOR_WEIGHT = 0.8
CATEGORY_WEIGHT = 0.6
RATING_WEIGHT = 0.2

_similar_list = TypeAdapter(list[SimilarBook])


# =============================================================================
# Scoring
# =============================================================================


def _normalized_set(values: list[str]) -> set[str]:
    return {normalize_key_component(v) for v in values if v and normalize_key_component(v)}


def score_candidate(source: BookRecord, candidate: BookRecord) -> tuple[float, list[str]]:
    """
    Similarity of candidate to source.

    Returns:
        (score, human-readable reasons)
    """
    score = 0.0
    reasons: list[str] = []

    source_authors = _normalized_set(source.authors)
    if source_authors:
        shared = source_authors & _normalized_set(candidate.authors)
        if shared:
            score += len(shared) / len(source_authors) * AUTHOR_WEIGHT
            reasons.append("Same author(s)")

    source_categories = _normalized_set(source.categories)
    if source_categories:
        shared = source_categories & _normalized_set(candidate.categories)
        if shared:
            score += len(shared) / len(source_categories) * CATEGORY_WEIGHT
            reasons.append(f"Shares {len(shared)} category(ies)")

    if candidate.average_rating:
        # Normalize rating to 0-1
        score += (float(candidate.average_rating) / 5.0) * RATING_WEIGHT

    return score, reasons


class RecommendationService:
    """
    Similar-book recommendations.

    Args:
        session_factory: Opens a Session for store queries
        providers: Used to supplement short store results
        distributed: Redis accessor for result caching, optional
        persist: Called with every provider book found while supplementing
        cache_ttl: TTL for cached recommendation lists
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        providers: Optional[list[BookProvider]] = None,
        distributed: Optional[RedisCache] = None,
        persist: Optional[PersistCallback] = None,
        cache_ttl: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.providers = providers or []
        self.distributed = distributed
        self.persist = persist
        self.cache_ttl = cache_ttl

    def get_similar_books(self, book: BookRecord, limit: int = 10) -> list[SimilarBook]:
        """
        Find books similar to book.

        Args:
            book: Source book (canonical or provider record)
            limit: Maximum number of recommendations

        Returns:
            Recommendations, best first; empty when nothing matches
        """
        if not book.authors and not book.categories:
            return []

        cache_key = make_cache_key("similar_books", book.id, limit=limit)
        cached = self._cached(cache_key)
        if cached is not None:
            logger.debug(f"Recommendation cache HIT: {book.id}")
            return cached

        exclude_ids = {book.id} if book.id else set()
        candidates: list[BookRecord] = []
        try:
            with self.session_factory() as db:
                repository = BookRepository(db)
                if book.is_canonical:
                    exclude_ids |= repository.edition_sibling_ids(book.id)
                candidates = repository.find_similar_candidates(
                    book.authors, book.categories, exclude_ids, limit=max(limit * 10, 50)
                )
        except SQLAlchemyError as e:
            logger.warning(f"Candidate lookup failed for {book.id}: {e}")

        excluded_keys = {book_dedup_key(book)}
        results = self._rank(book, candidates, excluded_keys)

        if len(results) < limit:
            seen = excluded_keys | {book_dedup_key(item[0]) for item in results}
            supplement = self._from_providers(book, seen, limit - len(results))
            results.extend(self._rank(book, supplement, excluded_keys))

        top = results[:limit]
        recommendations = [
            SimilarBook(
                book=BookSummary.from_record(candidate),
                similarity_score=round(score, 3),
                reasons=reasons,
            )
            for candidate, score, reasons in top
        ]

        self._store_ids(book, [c.id for c, _, _ in top if c.is_canonical])
        if self.distributed is not None:
            self.distributed.put(
                cache_key,
                [r.model_dump(mode="json") for r in recommendations],
                self.cache_ttl,
            )
        return recommendations

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _rank(
        self,
        source: BookRecord,
        candidates: list[BookRecord],
        excluded_keys: set[str],
    ) -> list[tuple[BookRecord, float, list[str]]]:
        scored = []
        for candidate in candidates:
            if candidate.id and candidate.id == source.id:
                continue
            if book_dedup_key(candidate) in excluded_keys:
                continue
            score, reasons = score_candidate(source, candidate)
            if reasons:
                scored.append((candidate, score, reasons))
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored

    def _from_providers(self, book: BookRecord, seen: set[str], needed: int) -> list[BookRecord]:
        """Provider search by first author, then by first category."""
        queries = []
        if book.authors:
            queries.append(f'inauthor:"{book.authors[0]}"')
        if book.categories:
            queries.append(f'subject:"{book.categories[0]}"')

        found: list[BookRecord] = []
        for query in queries:
            for provider in self.providers:
                if len(found) >= needed:
                    return found
                for raw in provider.search(query, limit=needed * 2):
                    candidate = provider.to_book(raw)
                    if candidate is None:
                        continue
                    key = book_dedup_key(candidate)
                    if key in seen:
                        continue
                    seen.add(key)
                    found.append(candidate)
                    if self.persist is not None:
                        self.persist(
                            candidate.id or key, candidate,
                            candidate.raw_json_response, provider.name,
                        )
                    if len(found) >= needed:
                        break
        return found

    def _store_ids(self, book: BookRecord, ids: list[str]) -> None:
        if not book.is_canonical:
            return
        book.cached_recommendation_ids = ids
        try:
            with self.session_factory() as db:
                BookRepository(db).update_recommendation_ids(book.id, ids)
        except SQLAlchemyError as e:
            logger.warning(f"Storing recommendation ids for {book.id} failed: {e}")

    def _cached(self, cache_key: str) -> Optional[list[SimilarBook]]:
        if self.distributed is None:
            return None
        value: Any = self.distributed.get(cache_key)
        if value is None:
            return None
        try:
            return _similar_list.validate_python(value)
        except ValidationError as e:
            logger.warning(f"Discarding malformed recommendation cache entry {cache_key}: {e}")
            return None
