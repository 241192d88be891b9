"""
Book Model

The canonical book row. Every provider record for the same work resolves to
exactly one row here, keyed by a UUID string.

Authors, categories and qualifiers are stored as JSON columns: they are
always read and written together with the book, and the ordered author list
must round-trip unchanged.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, DateTime, Float, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookrec.database import Base

if TYPE_CHECKING:
    from bookrec.models.external_id import BookExternalId
    from bookrec.models.raw_data import BookRawData


class Book(Base):
    """
    Canonical book row.

    Table: books

    Indexes:
    - isbn13 / isbn10: dedup lookups during ingestion
    - title: relational search
    - edition_group_key: edition linking
    """

    __tablename__ = "books"

    # -------------------------------------------------------------------------
    # Primary Key
    # -------------------------------------------------------------------------
    # UUID string, minted when a provider record is first persisted
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # -------------------------------------------------------------------------
    # Bibliographic Fields
    # -------------------------------------------------------------------------
    title: Mapped[str] = mapped_column(String(1000), index=True, nullable=False)
    subtitle: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    authors: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    categories: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    isbn10: Mapped[str | None] = mapped_column(String(10), index=True, nullable=True)
    isbn13: Mapped[str | None] = mapped_column(String(13), index=True, nullable=True)
    publisher: Mapped[str | None] = mapped_column(String(500), nullable=True)
    published_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    language: Mapped[str | None] = mapped_column(String(16), nullable=True)
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    average_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    ratings_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    info_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    preview_link: Mapped[str | None] = mapped_column(Text, nullable=True)

    # -------------------------------------------------------------------------
    # Edition Metadata
    # -------------------------------------------------------------------------
    edition_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    edition_group_key: Mapped[str | None] = mapped_column(
        String(1000),
        index=True,
        nullable=True,
        comment="Normalized title plus first author shared by all editions",
    )

    # -------------------------------------------------------------------------
    # Derived / Cached Fields
    # -------------------------------------------------------------------------
    s3_image_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_image_width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cover_image_height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_cover_high_resolution: Mapped[bool | None] = mapped_column(nullable=True)
    cached_recommendation_ids: Mapped[list[str]] = mapped_column(
        JSON, default=list, nullable=False
    )
    qualifiers: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    # -------------------------------------------------------------------------
    # Timestamps
    # -------------------------------------------------------------------------
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # -------------------------------------------------------------------------
    # Relationships
    # -------------------------------------------------------------------------
    external_ids: Mapped[list["BookExternalId"]] = relationship(
        "BookExternalId",
        back_populates="book",
        cascade="all, delete-orphan",
    )
    raw_data: Mapped[list["BookRawData"]] = relationship(
        "BookRawData",
        back_populates="book",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"Book(id={self.id}, title='{self.title}', isbn13='{self.isbn13}')"
