"""
Books Router

Read endpoints over the tiered book cache.

- GET /books/{book_id}: canonical UUID, Google Books volume id, Open Library
  id or ISBN; provider hits are persisted in the background
- GET /books/isbn/{isbn}: the book for an ISBN plus its linked editions
- GET /books/{book_id}/cover: run the cover resolution chain
- GET /books/{book_id}/similar: content-based recommendations
"""

from fastapi import APIRouter, HTTPException, Query, status

from bookrec.dependencies import ResolvedBook, Services
from bookrec.schemas import (
    BookRecord,
    CoverResolution,
    ImageDetails,
    ImageResolutionPreference,
    SimilarBook,
)

# =============================================================================
# Router Configuration
# =============================================================================
router = APIRouter(
    prefix="/books",
    tags=["Books"],
    responses={
        404: {"description": "Book not found"},
    },
)

_EXCLUDE_RAW = {"raw_json_response"}


@router.get(
    "/isbn/{isbn}",
    response_model=list[BookRecord],
    summary="Get books by ISBN",
    description="The book matching an ISBN-10/13 followed by its other editions.",
)
def get_books_by_isbn(isbn: str, services: Services) -> list[BookRecord]:
    books = services.orchestrator.fetch_books_by_isbn(isbn)
    if not books:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No book found for ISBN {isbn}",
        )
    return [b.model_copy(update={"raw_json_response": None}) for b in books]


@router.get(
    "/{book_id}",
    response_model=BookRecord,
    response_model_exclude=_EXCLUDE_RAW,
    summary="Get a book",
    description="Look a book up by canonical id, provider id or ISBN.",
)
def get_book(book: ResolvedBook) -> BookRecord:
    """
    Get a single book.

    Lookup walks process memory, Redis, the relational store and finally
    the external providers; the first hit wins.
    """
    return book


@router.get(
    "/{book_id}/cover",
    response_model=CoverResolution,
    summary="Resolve a book cover",
    description="Run the cover chain and return the chosen image with its provenance.",
)
def get_book_cover(
    book: ResolvedBook,
    services: Services,
    preference: ImageResolutionPreference = Query(
        default=ImageResolutionPreference.ANY,
        description="ANY, HIGH_ONLY or HIGH_FIRST",
    ),
) -> CoverResolution:
    resolution = services.covers.resolve_cover(book, preference)
    # Provenance keeps the volume JSON for debugging; it is not part of the response
    return resolution.model_copy(
        update={
            "provenance": resolution.provenance.model_copy(
                update={"google_books_api_response": None}
            )
        }
    )


@router.get(
    "/{book_id}/cover/initial",
    response_model=ImageDetails,
    summary="Best immediate cover",
    description="Stored or external cover right away; full resolution runs in the background.",
)
def get_initial_cover(book: ResolvedBook, services: Services) -> ImageDetails:
    return services.covers.get_initial_cover_and_trigger_background_update(book)


@router.get(
    "/{book_id}/similar",
    response_model=list[SimilarBook],
    summary="Similar books",
    description="Books sharing authors or categories, excluding other editions of this book.",
)
def get_similar_books(
    book: ResolvedBook,
    services: Services,
    limit: int = Query(default=10, ge=1, le=50, description="Number of recommendations"),
) -> list[SimilarBook]:
    return services.recommendations.get_similar_books(book, limit=limit)
