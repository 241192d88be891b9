"""
Search Router

Store-first book search with external provider fallback.

The response's `fallback` flag is True when Google Books / Open Library
results were merged into the page; those books are persisted in the
background and served from the store on later searches.
"""

from fastapi import APIRouter, Query

from bookrec.dependencies import Pagination, Services
from bookrec.schemas import BookSearchResponse

# =============================================================================
# Router Configuration
# =============================================================================

router = APIRouter(
    prefix="/search",
    tags=["Search"],
)


@router.get(
    "",
    response_model=BookSearchResponse,
    summary="Search books",
    description="Search by title, author or ISBN; short pages are filled from providers.",
)
def search_books(
    services: Services,
    pagination: Pagination,
    q: str = Query(..., min_length=1, max_length=200, description="Search query"),
) -> BookSearchResponse:
    return services.search.search(q, page=pagination.page, size=pagination.size)
