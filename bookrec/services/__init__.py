"""
Services Package

Business logic, kept separate from HTTP handling so every piece can be
tested with in-memory fakes.

Current services:
- memory_cache.py: process-local TTL + LRU book cache
- cache.py: Redis accessor for the distributed cache tier
- repository.py: relational store accessor, canonical ids, edition linking
- tiered_cache.py: memory -> Redis -> store -> provider lookup cascade
- providers.py: Google Books, Open Library and Longitood HTTP adapters
- object_storage.py / local_covers.py: durable and on-disk cover storage
- covers.py: cover resolution chain with provenance
- orchestrator.py: read/write coordination and payload ingestion
- search.py: store-first search with provider fallback
- recommendations.py: content-based similar books
- events.py: cover.updated / book.upserted publishing
- background.py: worker pool for fire-and-forget work
"""
