"""
Provider JSON Conversion

Turns raw provider payloads into BookRecord instances and derives the
fields the edition linker relies on.

Google Books volumes and Open Library records are both plain dicts here;
the adapters in bookrec.services.providers never interpret them beyond
pulling out items.

Payload parsing
===============
Stored payloads (migrations, bulk ingestion) are not always clean JSON:
several objects may be concatenated, control characters and leading
garbage show up, and some records are wrapped in a pre-processed envelope
whose real content lives in a "rawJsonResponse" string. parse_book_json_payload
recovers every usable object and drops the rest with a warning.
"""

import json
import logging
import re
import unicodedata
from typing import Any

from bookrec.schemas.book import BookRecord, EditionInfo
from bookrec.utils.identifiers import sanitize_isbn

logger = logging.getLogger(__name__)

EDITION_WORD_PATTERN = re.compile(r"(\d+)(?:st|nd|rd|th)?\s*(?:edition|ed\b)", re.IGNORECASE)
TRAILING_NUMBER_PATTERN = re.compile(r"(\d+)(?:\.\d+)*$")
QUALIFIER_NORMALIZE_PATTERN = re.compile(r"[^a-z0-9]+")

CONTROL_CHAR_PATTERN = re.compile(r"[\x01-\x08\x0B\x0C\x0E-\x1F\x7F]")
CONCATENATED_OBJECT_PATTERN = re.compile(r"\}\s*\{")
MAX_JSON_START_SCAN = 1000
JSON_START_HINTS = (
    '{"id":',
    '{"kind":',
    '{"title":',
    '{"volumeInfo":',
    '{ "id":',
    '{ "kind":',
    '[{"',
)

# Largest first
GOOGLE_IMAGE_SIZES = ("extraLarge", "large", "medium", "small", "thumbnail", "smallThumbnail")


# =============================================================================
# Google Books
# =============================================================================


def enhance_google_cover_url(url: str | None) -> str | None:
    """
    Normalize a Google Books image link.

    Forces https, drops the fife width parameter, and caps zoom at 2
    (higher zoom values often return Google's "image not available" tile).
    """
    if not url:
        return None
    enhanced = url
    if enhanced.startswith("http://"):
        enhanced = "https://" + enhanced[len("http://"):]
    enhanced = re.sub(r"&fife=w\d+", "", enhanced)
    enhanced = re.sub(r"\?fife=w\d+&?", "?", enhanced)
    enhanced = enhanced.rstrip("?&")

    match = re.search(r"zoom=(\d+)", enhanced)
    if match and int(match.group(1)) > 2:
        enhanced = re.sub(r"zoom=\d+", "zoom=2", enhanced)
    return enhanced


def google_image_links(
    volume: dict[str, Any] | None, largest_first: bool = False
) -> list[tuple[str, str]]:
    """
    Return (size, url) pairs from a volume's imageLinks.

    Links keep the order the API listed them in unless largest_first is set.
    Unknown size labels are ignored. Accepts a full volume item or its
    volumeInfo.
    """
    if not volume:
        return []
    volume_info = volume.get("volumeInfo", volume)
    image_links = volume_info.get("imageLinks") or {}
    links = []
    for size, raw_url in image_links.items():
        url = enhance_google_cover_url(raw_url) if size in GOOGLE_IMAGE_SIZES else None
        if url:
            links.append((size, url))
    if largest_first:
        links.sort(key=lambda link: GOOGLE_IMAGE_SIZES.index(link[0]))
    return links


def _authors(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    authors = []
    for author in value:
        if isinstance(author, dict):
            author = author.get("name")
        if author is None:
            continue
        text = str(author).strip()
        if text:
            authors.append(text)
    return authors


def google_volume_to_book(item: dict[str, Any] | None) -> BookRecord | None:
    """
    Convert a Google Books volume into a BookRecord.

    The record keeps the volume id as its id; the repository swaps it for a
    canonical UUID when the record is persisted.

    Returns:
        BookRecord, or None when item is empty
    """
    if not item:
        logger.warning("Empty Google Books volume, nothing to convert")
        return None

    book = BookRecord(id=item.get("id"), raw_json_response=json.dumps(item))
    volume_info = item.get("volumeInfo")

    if isinstance(volume_info, dict):
        book.title = volume_info.get("title")
        book.subtitle = volume_info.get("subtitle")
        book.authors = _authors(volume_info.get("authors"))
        publisher = volume_info.get("publisher")
        book.publisher = publisher.strip('"') if isinstance(publisher, str) else None
        book.published_date = volume_info.get("publishedDate")
        book.description = volume_info.get("description")
        book.language = volume_info.get("language")
        book.page_count = volume_info.get("pageCount")
        book.categories = [str(c) for c in volume_info.get("categories") or []]
        book.average_rating = volume_info.get("averageRating")
        book.ratings_count = volume_info.get("ratingsCount")
        book.info_link = volume_info.get("infoLink")
        book.preview_link = volume_info.get("previewLink")

        links = google_image_links(volume_info, largest_first=True)
        if links:
            book.external_image_url = links[0][1]

        editions = []
        for identifier in volume_info.get("industryIdentifiers") or []:
            kind = identifier.get("type")
            value = identifier.get("identifier")
            if not kind or not value:
                continue
            editions.append(EditionInfo(identifier=value, edition_type=kind))
            if kind == "ISBN_10" and book.isbn10 is None:
                book.isbn10 = value
            elif kind == "ISBN_13" and book.isbn13 is None:
                book.isbn13 = value
        book.other_editions = editions
    else:
        logger.debug(f"Volume {item.get('id')} has no volumeInfo, record will be sparse")

    qualifiers = item.get("qualifiers")
    if isinstance(qualifiers, dict):
        book.qualifiers = normalize_qualifier_keys(qualifiers)

    apply_edition_metadata(book, item)
    return book


# =============================================================================
# Open Library
# =============================================================================


def _strip_ol_key(key: str | None) -> str | None:
    if not key:
        return None
    return key.rstrip("/").rsplit("/", 1)[-1]


def open_library_to_book(data: dict[str, Any] | None) -> BookRecord | None:
    """
    Convert an Open Library record into a BookRecord.

    Handles both shapes the adapter returns:
    - /api/books?jscmd=data entries (authors as [{"name": ...}], identifiers map)
    - /search.json docs (author_name, isbn list, cover_i)
    """
    if not data:
        return None

    book = BookRecord(id=_strip_ol_key(data.get("key")), raw_json_response=json.dumps(data))
    book.title = data.get("title")
    book.subtitle = data.get("subtitle")

    if "author_name" in data:
        # search.json doc
        book.authors = _authors(data.get("author_name"))
        isbns = [sanitize_isbn(i) for i in data.get("isbn") or []]
        book.isbn13 = next((i for i in isbns if i and len(i) == 13), None)
        book.isbn10 = next((i for i in isbns if i and len(i) == 10), None)
        publishers = data.get("publisher") or []
        book.publisher = publishers[0] if publishers else None
        year = data.get("first_publish_year")
        book.published_date = str(year) if year else None
        book.page_count = data.get("number_of_pages_median")
        book.categories = [str(s) for s in (data.get("subject") or [])[:10]]
        book.average_rating = data.get("ratings_average")
        book.ratings_count = data.get("ratings_count")
        languages = data.get("language") or []
        book.language = languages[0] if languages else None
        if data.get("cover_i"):
            book.external_image_url = (
                f"https://covers.openlibrary.org/b/id/{data['cover_i']}-L.jpg"
            )
    else:
        book.authors = _authors(data.get("authors"))
        identifiers = data.get("identifiers") or {}
        isbn13 = identifiers.get("isbn_13") or []
        isbn10 = identifiers.get("isbn_10") or []
        book.isbn13 = isbn13[0] if isbn13 else None
        book.isbn10 = isbn10[0] if isbn10 else None
        publishers = data.get("publishers") or []
        if publishers:
            first = publishers[0]
            book.publisher = first.get("name") if isinstance(first, dict) else str(first)
        book.published_date = data.get("publish_date")
        book.page_count = data.get("number_of_pages")
        book.categories = [
            s.get("name") if isinstance(s, dict) else str(s)
            for s in (data.get("subjects") or [])[:10]
        ]
        book.info_link = data.get("url")
        cover = data.get("cover") or {}
        book.external_image_url = cover.get("large") or cover.get("medium") or cover.get("small")

    apply_edition_metadata(book, data)
    return book


# =============================================================================
# Edition Metadata
# =============================================================================


def parse_edition_candidate(value: Any) -> int | None:
    """
    Parse one edition hint into a positive edition number.

    Examples:
        parse_edition_candidate(3) -> 3
        parse_edition_candidate("2nd Edition") -> 2
        parse_edition_candidate("Version 4.1") -> 4
        parse_edition_candidate("Foundation") -> None
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        candidate = int(value)
        return candidate if candidate > 0 else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        direct = int(text)
    except ValueError:
        pass
    else:
        return direct if direct > 0 else None

    match = EDITION_WORD_PATTERN.search(text) or TRAILING_NUMBER_PATTERN.search(text)
    if match:
        candidate = int(match.group(1))
        return candidate if candidate > 0 else None
    return None


def derive_edition_number(book: BookRecord, item: dict[str, Any] | None = None) -> int | None:
    """
    Pick the first edition hint found, in priority order:
    volumeInfo fields, top-level item fields, qualifiers, then the title.
    """
    candidates: list[Any] = []
    if item:
        volume_info = item.get("volumeInfo")
        if isinstance(volume_info, dict):
            for key in ("edition", "editionInformation", "editionInfo", "contentVersion",
                        "subtitle", "title"):
                candidates.append(volume_info.get(key))
        for key in ("edition", "editionNumber", "edition_number"):
            candidates.append(item.get(key))

    qualifiers = book.qualifiers or {}
    for key in ("edition_number", "edition-number", "edition"):
        candidates.append(qualifiers.get(key))
    candidates.append(book.title)

    for candidate in candidates:
        parsed = parse_edition_candidate(candidate)
        if parsed is not None:
            return parsed
    return None


def normalize_key_component(value: str | None) -> str:
    """Fold accents, lowercase, and reduce to [a-z0-9] words."""
    if not value:
        return ""
    folded = unicodedata.normalize("NFKD", value)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch)).lower()
    folded = re.sub(r"[^a-z0-9\s]+", " ", folded)
    return re.sub(r"\s+", " ", folded).strip()


def build_edition_group_key(title: str | None, authors: list[str] | None) -> str | None:
    """
    Key shared by all editions of a work: normalized title + "__" + first author.

    Returns None when the title normalizes to nothing.
    """
    title_part = normalize_key_component(title)
    if not title_part:
        return None
    author_part = normalize_key_component(authors[0]) if authors else ""
    return f"{title_part}__{author_part}" if author_part else title_part


def apply_edition_metadata(book: BookRecord, item: dict[str, Any] | None = None) -> BookRecord:
    number = derive_edition_number(book, item)
    if number is not None:
        book.edition_number = number
    group_key = build_edition_group_key(book.title, book.authors)
    if group_key:
        book.edition_group_key = group_key
    return book


# =============================================================================
# Qualifiers
# =============================================================================


def normalize_qualifier_keys(qualifiers: dict[str, Any]) -> dict[str, Any]:
    """
    Canonicalize qualifier keys to snake case.

    Example:
        {"NYT Bestseller": True, "edition-number": 2}
        -> {"nyt_bestseller": True, "edition_number": 2}
    """
    normalized: dict[str, Any] = {}
    for key, value in qualifiers.items():
        if key is None:
            continue
        canonical = QUALIFIER_NORMALIZE_PATTERN.sub("_", str(key).strip().lower()).strip("_")
        if canonical:
            normalized[canonical] = value
    return normalized


def extract_qualifiers_from_search_query(query: str | None) -> dict[str, Any]:
    """
    Derive qualifiers from the query that surfaced a book.

    Books found through external search fallback are tagged with these so
    list-style queries ("nyt bestseller", "pulitzer") stay attached to them.
    """
    if not query or not query.strip():
        return {}
    normalized = re.sub(r"\s+", " ", query.strip().lower())

    qualifiers: dict[str, Any] = {}
    if any(p in normalized for p in ("new york times bestseller", "nyt bestseller",
                                     "ny times bestseller")):
        qualifiers["nyt_bestseller"] = True
    if any(p in normalized for p in ("award winner", "prize winner", "pulitzer", "nobel")):
        qualifiers["award_winner"] = True
        if "pulitzer" in normalized:
            qualifiers["pulitzer_prize"] = True
        if "nobel" in normalized:
            qualifiers["nobel_prize"] = True
    if any(p in normalized for p in ("best books", "top books", "must read")):
        qualifiers["recommended_list"] = True

    qualifiers["query_terms"] = normalized.split(" ")
    qualifiers["search_query"] = query.strip()
    return qualifiers


def book_dedup_key(book: BookRecord) -> str:
    """Merge key for search results: ISBN-13, ISBN-10, else title + first author."""
    if book.isbn13:
        return f"isbn13:{book.isbn13}"
    if book.isbn10:
        return f"isbn10:{book.isbn10}"
    author = book.authors[0] if book.authors else ""
    return f"title:{normalize_key_component(book.title)}:{normalize_key_component(author)}"


# =============================================================================
# Payload Parsing
# =============================================================================


def _find_json_start(payload: str) -> int:
    starts = [i for i in (payload.find("{"), payload.find("[")) if i >= 0]
    if starts and min(starts) <= MAX_JSON_START_SCAN:
        return min(starts)
    hints = [i for i in (payload.find(h) for h in JSON_START_HINTS) if i >= 0]
    return min(hints) if hints else -1


def _decode_values(payload: str, label: str) -> list[Any]:
    """
    Decode every top-level JSON value in `{...}{...}` style payloads.

    Values are read with JSONDecoder.raw_decode, so braces inside strings
    never split an object. After an undecodable stretch, decoding resumes
    at the next `}{` boundary.
    """
    decoder = json.JSONDecoder()
    values: list[Any] = []
    idx = 0
    end = len(payload)
    while idx < end:
        while idx < end and payload[idx].isspace():
            idx += 1
        if idx >= end:
            break
        try:
            value, idx = decoder.raw_decode(payload, idx)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse JSON fragment for {label}: {e}")
            logger.debug(f"Fragment preview: {payload[idx:idx + 200]}")
            boundary = CONCATENATED_OBJECT_PATTERN.search(payload, idx + 1)
            if boundary is None:
                break
            idx = boundary.end() - 1
            continue
        values.append(value)
    return values


def _unwrap_preprocessed(node: dict[str, Any], label: str) -> dict[str, Any]:
    """
    Return the inner volume of a pre-processed envelope.

    An envelope has a rawJsonResponse, no volumeInfo, and id == title.
    """
    raw = node.get("rawJsonResponse")
    if raw is None or "volumeInfo" in node:
        return node
    node_id = node.get("id")
    if node_id is None or node_id != node.get("title"):
        return node

    try:
        if isinstance(raw, str):
            inner = json.loads(raw)
            # double-encoded string
            if isinstance(inner, str):
                inner = json.loads(inner)
        else:
            inner = raw
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to unwrap rawJsonResponse for {label}: {e}")
        return node

    if isinstance(inner, dict) and ("volumeInfo" in inner or inner.get("kind") == "books#volume"):
        return inner
    return node


def payload_dedup_key(node: dict[str, Any]) -> str:
    """ISBN identifier first, then provider id, then title:author; lowercased."""
    volume = node.get("volumeInfo") if isinstance(node.get("volumeInfo"), dict) else node
    for identifier in volume.get("industryIdentifiers") or []:
        kind = str(identifier.get("type") or "")
        value = str(identifier.get("identifier") or "")
        if value and kind.upper() in ("ISBN_13", "ISBN_10"):
            return f"{kind}:{value}".lower()

    node_id = node.get("id")
    if node_id and str(node_id).strip():
        return f"id:{node_id}".lower()

    authors = volume.get("authors") or []
    author = str(authors[0]) if isinstance(authors, list) and authors else ""
    return f"{volume.get('title') or ''}:{author}".lower()


def parse_book_json_payload(raw_payload: str | None, label: str = "payload") -> list[dict[str, Any]]:
    """
    Recover every book object from a possibly malformed payload.

    Steps:
    1. Strip NUL and other control characters, trim
    2. Skip leading non-JSON text
    3. Decode concatenated top-level values one after another
    4. Expand arrays; undecodable stretches are dropped with a warning
    5. Unwrap pre-processed rawJsonResponse envelopes
    6. Collapse duplicates (same ISBN, else same id, else same title/author)

    Args:
        raw_payload: Raw text as read from storage
        label: Name used in log messages (e.g. the S3 key)

    Returns:
        Book JSON objects in input order, possibly empty
    """
    if not raw_payload or not raw_payload.strip():
        logger.warning(f"Empty JSON payload for {label}")
        return []

    sanitized = CONTROL_CHAR_PATTERN.sub("", raw_payload.replace("\u0000", "")).strip()
    if not sanitized:
        logger.warning(f"Payload for {label} became empty after sanitization")
        return []

    if not sanitized.startswith(("{", "[")):
        start = _find_json_start(sanitized)
        if start < 0:
            logger.warning(f"Unable to locate JSON start for {label}, skipping payload")
            return []
        logger.warning(f"Stripping {start} leading non-JSON characters for {label}")
        sanitized = sanitized[start:]

    nodes: list[Any] = []
    for parsed in _decode_values(sanitized, label):
        if isinstance(parsed, list):
            nodes.extend(parsed)
        else:
            nodes.append(parsed)

    unique: dict[str, dict[str, Any]] = {}
    for node in nodes:
        if not isinstance(node, dict):
            logger.debug(f"Ignoring non-object JSON value in {label}")
            continue
        node = _unwrap_preprocessed(node, label)
        key = payload_dedup_key(node)
        if key in unique:
            logger.debug(f"Deduplicated book fragment for {label} using key {key}")
            continue
        unique[key] = node

    return list(unique.values())
