"""
Identifier helpers.

Canonical book ids are UUID strings; everything else a caller hands us
(Google Books volume ids, Open Library keys, ISBNs) is an external id that
must go through the book_external_ids mapping first.
"""

import re
import uuid

UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)
ISBN10_PATTERN = re.compile(r"^\d{9}[\dX]$")
ISBN13_PATTERN = re.compile(r"^\d{13}$")


def looks_like_uuid(value: str | None) -> bool:
    """Return True when value has the canonical UUID shape."""
    if not value:
        return False
    return bool(UUID_PATTERN.match(value.strip()))


def new_canonical_id() -> str:
    """Mint a new canonical book id."""
    return str(uuid.uuid4())


def sanitize_isbn(value: str | None) -> str | None:
    """
    Strip hyphens and spaces from an ISBN and validate its shape.

    Examples:
        sanitize_isbn("978-0-553-29335-7") -> "9780553293357"
        sanitize_isbn("0-553-29335-x") -> "055329335X"
        sanitize_isbn("not an isbn") -> None

    Returns:
        The cleaned ISBN-10 or ISBN-13, or None when it is not one
    """
    if not value:
        return None
    cleaned = re.sub(r"[-\s]", "", value).upper()
    if ISBN13_PATTERN.match(cleaned) or ISBN10_PATTERN.match(cleaned):
        return cleaned
    return None


def is_isbn(value: str | None) -> bool:
    return sanitize_isbn(value) is not None


def isbn_kind(isbn: str) -> str:
    """Return "ISBN13" or "ISBN10" for an already sanitized ISBN."""
    return "ISBN13" if len(isbn) == 13 else "ISBN10"
