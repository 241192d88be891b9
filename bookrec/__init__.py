"""
Book Recommendation Engine Package

Aggregates book records from Google Books and Open Library, caches them
across several tiers and serves lookup, cover, search and recommendation
operations.

Package Structure:
- config.py: Application configuration using Pydantic Settings
- database.py: SQLAlchemy engine, sessions and declarative base
- exceptions.py: Error hierarchy for configuration and provider failures
- main.py: FastAPI application factory and lifespan wiring
- dependencies.py: Dependency injection functions
- models/: SQLAlchemy ORM rows (books, external ids, edition links, raw data)
- schemas/: Pydantic domain records (Book, CachedBook, image provenance)
- routers/: Thin HTTP layer over the services
- services/: Cache tiers, providers, cover chain, orchestration, search
- utils/: Identifier helpers and provider JSON parsing
"""

__version__ = "0.1.0"
