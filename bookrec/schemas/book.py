"""
Book Pydantic Schemas

Domain records that flow between the cache tiers:
- BookRecord: the canonical book, as every tier sees it
- EditionInfo: a sibling edition advertised by a provider
- CachedBook: the cache-tier projection (BookRecord plus access metadata)
- BookSummary / BookSearchResponse: response shapes for the HTTP layer

These are plain models: mapping to and from ORM rows lives in
bookrec.services.repository, and JSON (de)serialization for Redis uses
model_dump_json / model_validate_json.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bookrec.utils.identifiers import looks_like_uuid, sanitize_isbn


class EditionInfo(BaseModel):
    """An alternate edition reported alongside a provider record."""

    identifier: str = Field(..., description="Provider id or ISBN of the edition")
    edition_type: str | None = Field(default=None, description="e.g. ISBN_10, ISBN_13")
    edition_isbn10: str | None = None
    edition_isbn13: str | None = None
    published_date: str | None = None
    cover_image_url: str | None = None


class BookRecord(BaseModel):
    """
    Canonical book record.

    `id` is a canonical UUID once the record has been persisted; before
    that it may still hold a provider id (e.g. a Google Books volume id).
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str | None = Field(default=None, description="Canonical UUID or provider id")
    title: str | None = None
    subtitle: str | None = None
    authors: list[str] = Field(default_factory=list)
    description: str | None = None
    isbn10: str | None = None
    isbn13: str | None = None
    categories: list[str] = Field(default_factory=list)
    average_rating: float | None = None
    ratings_count: int | None = None
    publisher: str | None = None
    published_date: str | None = None
    language: str | None = None
    page_count: int | None = None
    info_link: str | None = None
    preview_link: str | None = None
    raw_json_response: str | None = Field(default=None, description="Raw provider JSON")

    # Derived / cached fields
    s3_image_path: str | None = None
    external_image_url: str | None = None
    cover_image_width: int | None = None
    cover_image_height: int | None = None
    is_cover_high_resolution: bool | None = None
    cached_recommendation_ids: list[str] = Field(default_factory=list)
    qualifiers: dict[str, Any] = Field(default_factory=dict)

    # Edition metadata
    edition_number: int | None = None
    edition_group_key: str | None = None
    other_editions: list[EditionInfo] = Field(default_factory=list)

    @field_validator("isbn10", "isbn13")
    @classmethod
    def normalize_isbn(cls, v: str | None) -> str | None:
        """Store ISBNs without hyphens; keep unparseable values as given."""
        if v is None:
            return v
        return sanitize_isbn(v) or v.strip() or None

    @property
    def is_canonical(self) -> bool:
        """True once the record carries a canonical UUID."""
        return looks_like_uuid(self.id)


class CachedBook(BaseModel):
    """
    Cache-tier projection of a BookRecord.

    Created on the first miss resolved from a provider; access metadata
    is bumped on every cache hit via touch().
    """

    book: BookRecord
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_accessed: datetime = Field(default_factory=lambda: datetime.now(UTC))
    access_count: int = 0
    embedding: list[float] | None = None
    raw_json_response: str | None = None

    @classmethod
    def from_book(cls, book: BookRecord) -> "CachedBook":
        return cls(book=book, raw_json_response=book.raw_json_response)

    def touch(self) -> "CachedBook":
        """Record a cache hit."""
        self.access_count += 1
        self.last_accessed = datetime.now(UTC)
        return self


# =============================================================================
# Response Schemas
# =============================================================================


class BookSummary(BaseModel):
    """Compact book shape for search and recommendation responses."""

    id: str | None
    title: str | None
    authors: list[str] = Field(default_factory=list)
    isbn13: str | None = None
    isbn10: str | None = None
    categories: list[str] = Field(default_factory=list)
    average_rating: float | None = None
    cover_url: str | None = None

    @classmethod
    def from_record(cls, book: BookRecord) -> "BookSummary":
        return cls(
            id=book.id,
            title=book.title,
            authors=book.authors,
            isbn13=book.isbn13,
            isbn10=book.isbn10,
            categories=book.categories,
            average_rating=book.average_rating,
            cover_url=book.s3_image_path or book.external_image_url,
        )


class BookSearchResponse(BaseModel):
    """Paginated search result."""

    items: list[BookSummary]
    total: int
    page: int
    size: int
    pages: int
    fallback: bool = Field(
        default=False,
        description="True when external provider results were merged in",
    )


class SimilarBook(BaseModel):
    """One recommendation with its score and reasons."""

    book: BookSummary
    similarity_score: float
    reasons: list[str] = Field(default_factory=list)
