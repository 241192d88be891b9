"""
Raw Provider Data Model

Keeps the last raw JSON payload each provider returned for a book, so a
record can be re-derived without calling the provider again.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookrec.database import Base

if TYPE_CHECKING:
    from bookrec.models.book import Book


class BookRawData(Base):
    """Raw provider JSON for one (book, source) pair."""

    __tablename__ = "book_raw_data"
    __table_args__ = (
        UniqueConstraint("book_id", "source", name="uq_book_raw_data_book_source"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    book_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("books.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    raw_json: Mapped[str] = mapped_column(Text, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    book: Mapped["Book"] = relationship("Book", back_populates="raw_data")
