"""
Edition Link Model

Directed links from the primary edition of an edition group to each of its
siblings. Rows for a group are always deleted and recreated together.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from bookrec.database import Base

ALTERNATE_EDITION = "ALTERNATE_EDITION"
INGESTION_LINK_SOURCE = "INGESTION"


class BookEditionLink(Base):
    """
    Primary → sibling edition relationship.

    Table: book_editions
    """

    __tablename__ = "book_editions"
    __table_args__ = (
        UniqueConstraint("book_id", "related_book_id", name="uq_book_editions_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    book_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("books.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
        comment="Primary edition of the group",
    )
    related_book_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("books.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    link_source: Mapped[str] = mapped_column(
        String(32), default=INGESTION_LINK_SOURCE, nullable=False
    )
    relationship_type: Mapped[str] = mapped_column(
        String(32), default=ALTERNATE_EDITION, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"BookEditionLink(book_id={self.book_id}, related_book_id={self.related_book_id}, "
            f"type='{self.relationship_type}')"
        )
