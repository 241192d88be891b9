"""
Test Suite for the Book Recommendation Engine

Test Organization:
- conftest.py: Shared fixtures (SQLite store, fake Redis/S3/providers, client)
- test_config.py: Settings validation
- test_utils.py: Identifiers, image inspection, local cover files
- test_book_json.py: Provider JSON conversion and payload parsing
- test_providers.py: httpx adapters and image download statuses
- test_cache.py: Process-local and Redis cache tiers
- test_tiered_cache.py: Tier cascade, coherence and convergence
- test_repository.py: Canonical ids, upserts and edition linking
- test_orchestrator.py: Persistence after provider fetches, ingestion
- test_events.py: Event publishing
- test_covers.py: Cover resolution chain and provenance
- test_search.py / test_recommendations.py: Search fallback and similar books
- test_books.py: HTTP layer

Running Tests:
    pytest
    pytest tests/test_covers.py -v
"""
