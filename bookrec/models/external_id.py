"""
External ID Model

Side table mapping provider identifiers (Google Books volume ids, Open
Library work keys, ISBNs) to the canonical book UUID.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookrec.database import Base

if TYPE_CHECKING:
    from bookrec.models.book import Book


class BookExternalId(Base):
    """
    One provider identifier for a canonical book.

    Table: book_external_ids

    Constraints:
    - (source, external_id) is unique: a provider id maps to one book
    """

    __tablename__ = "book_external_ids"
    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_book_external_ids_source_external_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    book_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("books.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    source: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="GOOGLE_BOOKS, OPEN_LIBRARY, ISBN13 or ISBN10",
    )
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_isbn10: Mapped[str | None] = mapped_column(String(10), nullable=True)
    provider_isbn13: Mapped[str | None] = mapped_column(String(13), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    book: Mapped["Book"] = relationship("Book", back_populates="external_ids")

    def __repr__(self) -> str:
        return (
            f"BookExternalId(source='{self.source}', external_id='{self.external_id}', "
            f"book_id={self.book_id})"
        )
