"""
FastAPI Dependencies Module

Wires the engine's services together and exposes them to route handlers.

Service Container
=================
build_services() creates one instance of every collaborator (cache tiers,
providers, cover chain, orchestrator, search, recommendations) and the
application lifespan keeps it on app.state. Route handlers receive it
through the `Services` annotated dependency, which tests override with a
container built from in-memory fakes.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated, Optional

import httpx
from fastapi import Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from bookrec.config import Settings, get_settings
from bookrec.database import SessionLocal
from bookrec.exceptions import ConfigurationError
from bookrec.schemas.book import BookRecord
from bookrec.services.background import BackgroundTasks
from bookrec.services.cache import RedisCache
from bookrec.services.covers import CoverResolver
from bookrec.services.events import EventPublisher
from bookrec.services.local_covers import LocalCoverCache
from bookrec.services.memory_cache import LocalBookCache
from bookrec.services.object_storage import S3ObjectStorage
from bookrec.services.orchestrator import BookDataOrchestrator
from bookrec.services.providers import (
    GoogleBooksClient,
    ImageFetcher,
    LongitoodClient,
    OpenLibraryClient,
    build_http_client,
)
from bookrec.services.recommendations import RecommendationService
from bookrec.services.search import BookSearchService
from bookrec.services.tiered_cache import TieredBookCache

logger = logging.getLogger(__name__)


# =============================================================================
# Service Container
# =============================================================================
@dataclass
class ServiceContainer:
    """Every long-lived collaborator of the engine."""

    settings: Settings
    local_cache: LocalBookCache
    redis_cache: Optional[RedisCache]
    http_client: Optional[httpx.Client]
    background: BackgroundTasks
    events: EventPublisher
    books: TieredBookCache
    orchestrator: BookDataOrchestrator
    covers: CoverResolver
    search: BookSearchService
    recommendations: RecommendationService

    def open(self) -> None:
        self.local_cache.open()
        if self.redis_cache is not None:
            self.redis_cache.open()

    def close(self) -> None:
        """Release resources in reverse order of use."""
        self.background.shutdown(wait=True)
        if self.http_client is not None:
            self.http_client.close()
        if self.redis_cache is not None:
            self.redis_cache.close()
        self.local_cache.close()


def build_services(
    settings: Optional[Settings] = None,
    session_factory: Callable[[], Session] = SessionLocal,
    http_client: Optional[httpx.Client] = None,
    redis_cache: Optional[RedisCache] = None,
    object_storage: Optional[S3ObjectStorage] = None,
    executor=None,
) -> ServiceContainer:
    """
    Build the service graph.

    Args:
        settings: Defaults to get_settings()
        session_factory: Opens Sessions for the relational tier
        http_client: Shared httpx client for every provider
        redis_cache: Distributed cache; built from settings when Redis is enabled
        object_storage: Cover storage; built from settings when S3 is enabled
        executor: Executor for background work (tests pass an inline one)
    """
    settings = settings or get_settings()
    http_client = http_client or build_http_client(settings)

    if redis_cache is None and settings.redis_enabled:
        redis_cache = RedisCache(settings.redis_url, settings.book_cache_ttl)
    if object_storage is None and settings.s3_enabled:
        try:
            object_storage = S3ObjectStorage(settings)
        except ConfigurationError as e:
            logger.warning(f"S3 cover storage disabled: {e}")

    local_cache = LocalBookCache(
        max_entries=settings.local_cache_max_entries,
        ttl_seconds=settings.local_cache_ttl,
    )
    background = BackgroundTasks(max_workers=settings.background_workers, executor=executor)
    events = EventPublisher(redis_cache)

    google = GoogleBooksClient(http_client, settings)
    open_library = OpenLibraryClient(http_client, settings)
    providers = [google, open_library]

    books = TieredBookCache(
        local_cache,
        redis_cache,
        session_factory,
        providers,
        book_ttl=settings.book_cache_ttl,
    )
    orchestrator = BookDataOrchestrator(books, session_factory, background, events)

    covers = CoverResolver(
        ImageFetcher(http_client),
        google=google,
        open_library=open_library,
        longitood=LongitoodClient(http_client, settings),
        object_storage=object_storage,
        local_covers=LocalCoverCache(settings.cover_cache_dir),
        placeholder_path=settings.placeholder_image_path,
        background=background,
        session_factory=session_factory,
        events=events,
        on_cover_updated=orchestrator.on_cover_updated,
    )

    search = BookSearchService(
        session_factory,
        providers,
        distributed=redis_cache,
        persist=orchestrator.schedule_persistence,
        cache_ttl=settings.search_cache_ttl,
    )
    recommendations = RecommendationService(
        session_factory,
        providers,
        distributed=redis_cache,
        persist=orchestrator.schedule_persistence,
        cache_ttl=settings.recommendation_cache_ttl,
    )

    return ServiceContainer(
        settings=settings,
        local_cache=local_cache,
        redis_cache=redis_cache,
        http_client=http_client,
        background=background,
        events=events,
        books=books,
        orchestrator=orchestrator,
        covers=covers,
        search=search,
        recommendations=recommendations,
    )


def get_services(request: Request) -> ServiceContainer:
    """Service container created by the application lifespan."""
    return request.app.state.services


Services = Annotated[ServiceContainer, Depends(get_services)]


# =============================================================================
# Common Lookups
# =============================================================================
def get_book_or_404(book_id: str, services: Services) -> BookRecord:
    """
    Resolve a path id (UUID, provider id or ISBN) or raise 404.

    Raises:
        HTTPException: 404 if no tier knows the book
    """
    book = services.orchestrator.fetch_canonical_book(book_id)
    if book is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Book with id {book_id} not found",
        )
    return book


ResolvedBook = Annotated[BookRecord, Depends(get_book_or_404)]


# =============================================================================
# Pagination Parameters
# =============================================================================
class PaginationParams:
    """
    Page-based pagination for search.

    - page: Which page to return (1-indexed)
    - size: How many items per page
    """

    def __init__(
        self,
        page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
        size: int = Query(default=20, ge=1, le=40, description="Items per page (max 40)"),
    ):
        self.page = page
        self.size = size


Pagination = Annotated[PaginationParams, Depends()]
