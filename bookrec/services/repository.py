"""
Book Repository

Relational tier of the book cache and the only writer of canonical books.

Responsibilities:
- Lookups by canonical id, provider id (book_external_ids) and ISBN
- Canonical id resolution for incoming provider records
- Upserts with COALESCE semantics (incoming nulls never clobber stored values)
- Edition linking: primary → sibling rows in book_editions
- Row ↔ BookRecord mapping

Canonical ID Resolution
=======================
An incoming record is matched against existing rows in this order:
1. (provider, provider id) in book_external_ids
2. The record's own id, when it is a UUID that already exists
3. ISBN-13, then ISBN-10 (books columns, then ISBN rows in book_external_ids)
4. Otherwise a new UUID is minted

Because every provider id and ISBN is written back to book_external_ids,
any id a caller ever used for a book keeps resolving to the same row.
"""

import logging
from typing import Any, Optional

from sqlalchemy import String, cast, delete, func, or_, select
from sqlalchemy.orm import Session

from bookrec.models import (
    ALTERNATE_EDITION,
    INGESTION_LINK_SOURCE,
    Book,
    BookEditionLink,
    BookExternalId,
    BookRawData,
)
from bookrec.schemas.book import BookRecord, EditionInfo
from bookrec.schemas.image import ImageDetails
from bookrec.utils.book_json import build_edition_group_key
from bookrec.utils.identifiers import isbn_kind, looks_like_uuid, new_canonical_id, sanitize_isbn

logger = logging.getLogger(__name__)

# Columns copied between Book rows and BookRecord instances
_SCALAR_FIELDS = (
    "title",
    "subtitle",
    "description",
    "publisher",
    "published_date",
    "language",
    "page_count",
    "average_rating",
    "ratings_count",
    "info_link",
    "preview_link",
    "s3_image_path",
    "external_image_url",
    "cover_image_width",
    "cover_image_height",
    "is_cover_high_resolution",
    "edition_number",
    "edition_group_key",
)
_LIST_FIELDS = ("authors", "categories", "cached_recommendation_ids")


# =============================================================================
# Row Mapping
# =============================================================================


def to_record(row: Book, raw_json: Optional[str] = None) -> BookRecord:
    """Build a BookRecord from a Book row."""
    data: dict[str, Any] = {name: getattr(row, name) for name in _SCALAR_FIELDS}
    for name in _LIST_FIELDS:
        data[name] = list(getattr(row, name) or [])
    data["qualifiers"] = dict(row.qualifiers or {})
    return BookRecord(
        id=row.id,
        isbn10=row.isbn10,
        isbn13=row.isbn13,
        raw_json_response=raw_json,
        **data,
    )


def _coalesce_into(row: Book, book: BookRecord) -> None:
    """Copy non-empty values from book onto row; stored values win over nulls."""
    for name in _SCALAR_FIELDS:
        value = getattr(book, name)
        if value is not None:
            setattr(row, name, value)
    for name in _LIST_FIELDS:
        value = getattr(book, name)
        if value:
            setattr(row, name, list(value))
    if book.qualifiers:
        row.qualifiers = {**(row.qualifiers or {}), **book.qualifiers}


def _normalized_edition(number: Optional[int]) -> int:
    return number if number is not None and number > 0 else 1


class BookRepository:
    """
    Relational store accessor.

    Takes a Session; callers own its lifetime. Write methods commit.
    """

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------
    def find_by_id(self, book_id: str) -> Optional[BookRecord]:
        """Find a book by canonical id, with its edition siblings attached."""
        if not looks_like_uuid(book_id):
            return None
        row = self.db.get(Book, book_id)
        if row is None:
            return None
        record = to_record(row, self._latest_raw_json(row.id))
        record.other_editions = self._edition_infos(row.id)
        return record

    def find_by_external_id(self, source: str, external_id: str) -> Optional[BookRecord]:
        book_id = self._book_id_for_external(source, external_id)
        return self.find_by_id(book_id) if book_id else None

    def find_by_isbn(self, isbn: str) -> Optional[BookRecord]:
        book_id = self._book_id_for_isbn(isbn)
        return self.find_by_id(book_id) if book_id else None

    def find_many(self, book_ids: list[str]) -> list[BookRecord]:
        """Fetch several books, preserving the order of book_ids."""
        ids = [i for i in book_ids if looks_like_uuid(i)]
        if not ids:
            return []
        rows = self.db.execute(select(Book).where(Book.id.in_(ids))).scalars().all()
        by_id = {row.id: row for row in rows}
        return [to_record(by_id[i]) for i in ids if i in by_id]

    def exists(self, book_id: str) -> bool:
        if not looks_like_uuid(book_id):
            return False
        return self.db.execute(select(Book.id).where(Book.id == book_id)).first() is not None

    def search(self, query: str, limit: int = 20, offset: int = 0) -> tuple[list[BookRecord], int]:
        """
        LIKE search over title, authors and ISBN.

        Returns:
            (page of records, total matching rows)
        """
        search_term = f"%{query.lower()}%"
        conditions = [
            func.lower(Book.title).like(search_term),
            func.lower(cast(Book.authors, String)).like(search_term),
        ]
        isbn = sanitize_isbn(query)
        if isbn:
            conditions.extend([Book.isbn13 == isbn, Book.isbn10 == isbn])

        stmt = select(Book).where(or_(*conditions))
        total = self.db.execute(select(func.count()).select_from(stmt.subquery())).scalar() or 0

        rows = self.db.execute(
            stmt.order_by(Book.average_rating.desc().nullslast(), Book.title)
            .offset(offset)
            .limit(limit)
        ).scalars().all()
        return [to_record(row) for row in rows], total

    def find_similar_candidates(
        self,
        authors: list[str],
        categories: list[str],
        exclude_ids: set[str],
        limit: int = 100,
    ) -> list[BookRecord]:
        """Books sharing at least one author or category with the source book."""
        conditions = [
            func.lower(cast(Book.authors, String)).like(f"%{author.lower()}%")
            for author in authors if author
        ] + [
            func.lower(cast(Book.categories, String)).like(f"%{category.lower()}%")
            for category in categories if category
        ]
        if not conditions:
            return []
        stmt = select(Book).where(or_(*conditions))
        if exclude_ids:
            stmt = stmt.where(Book.id.notin_(exclude_ids))
        rows = self.db.execute(stmt.limit(limit)).scalars().all()
        return [to_record(row) for row in rows]

    def edition_sibling_ids(self, book_id: str) -> set[str]:
        """Ids of every other edition linked with book_id."""
        primary_id = self.db.execute(
            select(BookEditionLink.book_id).where(BookEditionLink.related_book_id == book_id)
        ).scalar() or book_id
        related = self.db.execute(
            select(BookEditionLink.related_book_id).where(BookEditionLink.book_id == primary_id)
        ).scalars().all()
        return ({primary_id, *related}) - {book_id}

    # -------------------------------------------------------------------------
    # Canonical ID Resolution
    # -------------------------------------------------------------------------
    def resolve_canonical_id(
        self,
        book: BookRecord,
        source: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> str:
        """
        Return the canonical id an incoming record belongs to.

        Mints a new UUID when nothing matches; nothing is written here.
        """
        if source and external_id:
            existing = self._book_id_for_external(source, external_id)
            if existing:
                return existing

        if book.id and looks_like_uuid(book.id) and self.exists(book.id):
            return book.id

        for isbn in (sanitize_isbn(book.isbn13), sanitize_isbn(book.isbn10)):
            if isbn:
                existing = self._book_id_for_isbn(isbn)
                if existing:
                    return existing

        return new_canonical_id()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------
    def upsert_book(
        self,
        book: BookRecord,
        source_json: Optional[str] = None,
        source: str = "GOOGLE_BOOKS",
        external_id: Optional[str] = None,
    ) -> str:
        """
        Insert or merge a provider record and relink its edition group.

        Args:
            book: Incoming record (id may be a provider id)
            source_json: Raw provider JSON, stored per source
            source: Provider name, e.g. GOOGLE_BOOKS
            external_id: Provider id; defaults to book.id when that is not a UUID

        Returns:
            Canonical id of the stored book
        """
        isbn13 = sanitize_isbn(book.isbn13)
        isbn10 = sanitize_isbn(book.isbn10)
        if external_id is None and book.id and not looks_like_uuid(book.id):
            external_id = book.id

        canonical_id = self.resolve_canonical_id(book, source, external_id)

        try:
            row = self.db.get(Book, canonical_id)
            if row is None:
                row = Book(
                    id=canonical_id,
                    title=book.title or "Unknown Title",
                    authors=[],
                    categories=[],
                    cached_recommendation_ids=[],
                    qualifiers={},
                )
                self.db.add(row)
                logger.info(f"Creating canonical book {canonical_id} ('{book.title}')")
            _coalesce_into(row, book)
            row.isbn13 = isbn13 or row.isbn13
            row.isbn10 = isbn10 or row.isbn10
            if not row.edition_group_key:
                row.edition_group_key = build_edition_group_key(row.title, row.authors)

            if external_id:
                self._ensure_external_id(canonical_id, source, external_id, isbn10, isbn13)
            for isbn in (isbn13, isbn10):
                if isbn:
                    self._ensure_external_id(canonical_id, isbn_kind(isbn), isbn, isbn10, isbn13)

            raw = source_json or book.raw_json_response
            if raw:
                self._store_raw_json(canonical_id, source, raw)

            self.db.flush()
            self.link_editions(row.edition_group_key, canonical_id, row.edition_number)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return canonical_id

    def link_editions(
        self,
        group_key: Optional[str],
        current_book_id: Optional[str] = None,
        current_edition_number: Optional[int] = None,
    ) -> None:
        """
        Rebuild the edition links of one group.

        The highest edition number is primary (ties: lowest id); missing or
        non-positive numbers count as 1. Every link touching the group is
        deleted and primary → sibling rows are recreated, so repeated runs
        leave the same rows. A group of one only clears links.

        Flushes but does not commit.
        """
        if not group_key:
            if current_book_id:
                self._delete_links({current_book_id})
            return

        members = {
            book_id: _normalized_edition(number)
            for book_id, number in self.db.execute(
                select(Book.id, Book.edition_number).where(Book.edition_group_key == group_key)
            ).all()
        }
        if current_book_id and current_book_id in members and current_edition_number is not None:
            members[current_book_id] = _normalized_edition(current_edition_number)

        if len(members) <= 1:
            self._delete_links(set(members) | ({current_book_id} if current_book_id else set()))
            return

        ordered = sorted(members.items(), key=lambda item: (-item[1], item[0]))
        primary_id = ordered[0][0]

        self._delete_links(set(members))
        for sibling_id, _ in ordered[1:]:
            self.db.add(
                BookEditionLink(
                    book_id=primary_id,
                    related_book_id=sibling_id,
                    link_source=INGESTION_LINK_SOURCE,
                    relationship_type=ALTERNATE_EDITION,
                )
            )
        self.db.flush()
        logger.debug(f"Linked {len(ordered) - 1} edition(s) to primary {primary_id} ({group_key})")

    def update_cover(self, book_id: str, details: ImageDetails) -> bool:
        """Record a resolved cover on the stored book."""
        row = self.db.get(Book, book_id) if looks_like_uuid(book_id) else None
        if row is None:
            return False
        if details.storage_location == "S3":
            row.s3_image_path = details.storage_key
        if details.source_url:
            row.external_image_url = details.source_url
        row.cover_image_width = details.width
        row.cover_image_height = details.height
        row.is_cover_high_resolution = details.is_high_resolution
        self.db.commit()
        return True

    def update_recommendation_ids(self, book_id: str, recommendation_ids: list[str]) -> None:
        row = self.db.get(Book, book_id) if looks_like_uuid(book_id) else None
        if row is None:
            return
        row.cached_recommendation_ids = list(recommendation_ids)
        self.db.commit()

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------
    def _book_id_for_external(self, source: str, external_id: str) -> Optional[str]:
        return self.db.execute(
            select(BookExternalId.book_id).where(
                BookExternalId.source == source,
                BookExternalId.external_id == external_id,
            )
        ).scalar()

    def _book_id_for_isbn(self, isbn: str) -> Optional[str]:
        cleaned = sanitize_isbn(isbn)
        if not cleaned:
            return None
        column = Book.isbn13 if len(cleaned) == 13 else Book.isbn10
        book_id = self.db.execute(select(Book.id).where(column == cleaned).limit(1)).scalar()
        return book_id or self._book_id_for_external(isbn_kind(cleaned), cleaned)

    def _ensure_external_id(
        self,
        book_id: str,
        source: str,
        external_id: str,
        isbn10: Optional[str],
        isbn13: Optional[str],
    ) -> None:
        mapped = self._book_id_for_external(source, external_id)
        if mapped is None:
            self.db.add(
                BookExternalId(
                    book_id=book_id,
                    source=source,
                    external_id=external_id,
                    provider_isbn10=isbn10,
                    provider_isbn13=isbn13,
                )
            )
            # Visible to the next lookup in this transaction
            self.db.flush()
        elif mapped != book_id:
            logger.warning(
                f"{source}:{external_id} already maps to {mapped}, not remapping to {book_id}"
            )

    def _store_raw_json(self, book_id: str, source: str, raw_json: str) -> None:
        row = self.db.execute(
            select(BookRawData).where(BookRawData.book_id == book_id, BookRawData.source == source)
        ).scalar_one_or_none()
        if row is None:
            self.db.add(BookRawData(book_id=book_id, source=source, raw_json=raw_json))
        else:
            row.raw_json = raw_json

    def _latest_raw_json(self, book_id: str) -> Optional[str]:
        return self.db.execute(
            select(BookRawData.raw_json)
            .where(BookRawData.book_id == book_id)
            .order_by(BookRawData.fetched_at.desc(), BookRawData.id.desc())
            .limit(1)
        ).scalar()

    def _edition_infos(self, book_id: str) -> list[EditionInfo]:
        sibling_ids = self.edition_sibling_ids(book_id)
        if not sibling_ids:
            return []
        rows = self.db.execute(
            select(Book).where(Book.id.in_(sibling_ids)).order_by(Book.edition_number.desc(), Book.id)
        ).scalars().all()
        return [
            EditionInfo(
                identifier=row.id,
                edition_type=f"EDITION_{_normalized_edition(row.edition_number)}",
                edition_isbn10=row.isbn10,
                edition_isbn13=row.isbn13,
                published_date=row.published_date,
                cover_image_url=row.s3_image_path or row.external_image_url,
            )
            for row in rows
        ]

    def _delete_links(self, book_ids: set[str]) -> None:
        if not book_ids:
            return
        self.db.execute(
            delete(BookEditionLink).where(
                or_(
                    BookEditionLink.book_id.in_(book_ids),
                    BookEditionLink.related_book_id.in_(book_ids),
                )
            )
        )
