"""
Tiered Cache Tests

Tests for the read cascade: local → Redis → store → providers.

With the inline executor, persistence of a provider hit has finished by
the time get_book_by_id returns, so the tests can check the store and
both cache tiers right after the lookup.
"""

from unittest.mock import MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from bookrec.models import Book, BookExternalId
from bookrec.schemas.book import BookRecord, CachedBook
from bookrec.services.cache import RedisCache
from bookrec.services.memory_cache import LocalBookCache
from bookrec.services.repository import BookRepository
from bookrec.services.tiered_cache import TieredBookCache
from bookrec.utils.book_json import google_volume_to_book
from bookrec.utils.identifiers import looks_like_uuid
from tests.conftest import FakeProvider, make_volume

FOUNDATION_ISBN = "9780553293357"


# =============================================================================
# Provider Fallback
# =============================================================================


class TestProviderLookup:
    """Tests for lookups that end at a provider."""

    def test_isbn_lookup_populates_every_tier(
        self, orchestrator, provider, db_session, redis_client, local_cache
    ):
        """Test an unknown ISBN is fetched, persisted and cached."""
        book = orchestrator.fetch_canonical_book(FOUNDATION_ISBN)

        assert book is not None
        assert book.title == "Foundation"
        assert provider.fetch_calls == [FOUNDATION_ISBN]

        # Store
        rows = db_session.query(Book).all()
        assert len(rows) == 1
        canonical_id = rows[0].id
        assert looks_like_uuid(canonical_id)
        sources = {e.source for e in db_session.query(BookExternalId).all()}
        assert sources == {"GOOGLE_BOOKS", "ISBN13", "ISBN10"}

        # Redis and local, under the canonical id
        assert f"book:{FOUNDATION_ISBN}" in redis_client.store
        assert f"book:{canonical_id}" in redis_client.store
        assert local_cache.get(FOUNDATION_ISBN).book.id == canonical_id

    def test_second_lookup_is_served_from_cache(self, orchestrator, provider):
        orchestrator.fetch_canonical_book(FOUNDATION_ISBN)
        again = orchestrator.fetch_canonical_book(FOUNDATION_ISBN)

        assert again.is_canonical
        assert len(provider.fetch_calls) == 1

    def test_all_ids_converge_on_one_record(self, orchestrator):
        """Test ISBN, volume id and canonical id resolve to the same book."""
        orchestrator.fetch_canonical_book(FOUNDATION_ISBN)
        by_isbn = orchestrator.fetch_canonical_book(FOUNDATION_ISBN)
        by_volume = orchestrator.fetch_canonical_book("zyTCAlFPjgYC")
        by_uuid = orchestrator.fetch_canonical_book(by_isbn.id)

        assert by_isbn.id == by_volume.id == by_uuid.id

    def test_store_resolves_provider_id_after_restart(
        self, orchestrator, session_factory
    ):
        """Test a fresh process finds the book in the store, not the provider."""
        orchestrator.fetch_canonical_book(FOUNDATION_ISBN)

        silent_provider = FakeProvider([])
        fresh = TieredBookCache(LocalBookCache(), None, session_factory, [silent_provider])

        book = fresh.get_book_by_id("zyTCAlFPjgYC")

        assert book is not None
        assert book.is_canonical
        assert silent_provider.fetch_calls == []

    def test_unknown_id_returns_none(self, tiered_cache):
        persisted = []
        tiered_cache.persist = lambda *args: persisted.append(args)

        assert tiered_cache.get_book_by_id("no-such-volume") is None
        assert persisted == []

    def test_blank_id(self, tiered_cache, provider):
        assert tiered_cache.get_book_by_id("   ") is None
        assert provider.fetch_calls == []

    def test_providers_tried_in_order(self, local_cache, session_factory):
        empty = FakeProvider([], name="GOOGLE_BOOKS")
        fallback = FakeProvider([make_volume(volume_id="OL1M")], name="OPEN_LIBRARY")
        cache = TieredBookCache(local_cache, None, session_factory, [empty, fallback])

        book = cache.get_book_by_id("OL1M")

        assert book.id == "OL1M"
        assert empty.fetch_calls == ["OL1M"]
        assert fallback.fetch_calls == ["OL1M"]


# =============================================================================
# Tier Coherence
# =============================================================================


class TestTierCoherence:
    """Tests for upward population between tiers."""

    def test_redis_hit_populates_local(self, tiered_cache, redis_cache, local_cache, provider):
        record = BookRecord(id="b8e0c1f4-1111-4a4a-9c9c-000000000001", title="Dune")
        redis_cache.put(f"book:{record.id}", CachedBook.from_book(record).model_dump(mode="json"))

        book = tiered_cache.get_book_by_id(record.id)

        assert book.title == "Dune"
        assert local_cache.contains(record.id)
        assert provider.fetch_calls == []

    def test_store_hit_populates_both_tiers(
        self, tiered_cache, db_session, redis_client, local_cache, provider
    ):
        canonical_id = BookRepository(db_session).upsert_book(
            BookRecord(id="vol-dune", title="Dune", isbn13="9780441013593")
        )

        book = tiered_cache.get_book_by_id("9780441013593")

        assert book.id == canonical_id
        assert local_cache.contains(canonical_id)
        assert local_cache.contains("9780441013593")
        assert f"book:{canonical_id}" in redis_client.store
        assert provider.fetch_calls == []

    def test_local_hits_are_copies(self, tiered_cache):
        """Test changing a returned record leaves the cached entry alone."""
        record = BookRecord(id="b8e0c1f4-1111-4a4a-9c9c-000000000003", title="Emma")
        tiered_cache.put(record)
        record.title = "Changed after put"

        book = tiered_cache.get_book_by_id(record.id)
        book.s3_image_path = "images/book-covers/emma.jpg"
        book.cached_recommendation_ids = ["b8e0c1f4-1111-4a4a-9c9c-000000000004"]

        again = tiered_cache.get_book_by_id(record.id)
        assert again.title == "Emma"
        assert again.s3_image_path is None
        assert again.cached_recommendation_ids == []

    def test_redis_hits_are_copies(self, tiered_cache, redis_cache, local_cache):
        record = BookRecord(id="b8e0c1f4-1111-4a4a-9c9c-000000000005", title="Dune")
        redis_cache.put(f"book:{record.id}", CachedBook.from_book(record).model_dump(mode="json"))

        book = tiered_cache.get_book_by_id(record.id)
        book.title = "Changed"

        assert local_cache.get(record.id).book.title == "Dune"

    def test_malformed_redis_entry_is_a_miss(self, tiered_cache, redis_client):
        redis_client.store["book:vol-x"] = '{"unexpected": true}'

        assert tiered_cache.get_book_by_id("vol-x") is None

    def test_redis_failure_falls_through(self, local_cache, session_factory, provider):
        """Test a Redis outage degrades to store and provider lookups."""
        client = MagicMock()
        client.get.side_effect = RedisConnectionError("down")
        client.setex.side_effect = RedisConnectionError("down")
        broken = RedisCache(url="redis://fake:6379/0", client=client)
        cache = TieredBookCache(local_cache, broken, session_factory, [provider])

        book = cache.get_book_by_id(FOUNDATION_ISBN)

        assert book.title == "Foundation"
        assert local_cache.contains(FOUNDATION_ISBN)


# =============================================================================
# Cache Membership and Eviction
# =============================================================================


class TestCacheMembership:
    """Tests for is_book_in_cache, put and evict."""

    def test_put_and_evict(self, tiered_cache, redis_client):
        record = BookRecord(id="b8e0c1f4-1111-4a4a-9c9c-000000000002", title="Emma")
        tiered_cache.put(record, "9780141439587")

        assert tiered_cache.is_book_in_cache(record.id)
        assert tiered_cache.is_book_in_cache("9780141439587")

        tiered_cache.evict(record.id)

        assert not tiered_cache.is_book_in_cache(record.id)
        assert f"book:{record.id}" not in redis_client.store

    def test_store_only_book_is_not_in_cache(self, tiered_cache, db_session):
        canonical_id = BookRepository(db_session).upsert_book(BookRecord(id="vol-e", title="Emma"))

        assert tiered_cache.is_book_in_cache(canonical_id) is False


# =============================================================================
# ISBN Lookups
# =============================================================================


class TestBooksByIsbn:
    """Tests for get_books_by_isbn."""

    def test_match_then_linked_editions(self, tiered_cache, db_session):
        repository = BookRepository(db_session)
        first = google_book("vol-1", "9780000000011", edition="1st edition")
        second = google_book("vol-2", "9780000000028", edition="2nd edition")
        first_id = repository.upsert_book(first)
        second_id = repository.upsert_book(second)

        books = tiered_cache.get_books_by_isbn("9780000000011")

        assert [b.id for b in books] == [first_id, second_id]

    def test_not_an_isbn(self, tiered_cache, provider):
        assert tiered_cache.get_books_by_isbn("foundation") == []
        assert provider.fetch_calls == []

    def test_unknown_isbn(self, tiered_cache):
        assert tiered_cache.get_books_by_isbn("9780000000000") == []


def google_book(volume_id: str, isbn13: str, **volume_info) -> BookRecord:
    return google_volume_to_book(
        make_volume(volume_id=volume_id, isbn13=isbn13, isbn10=None, **volume_info)
    )
