"""
External Provider Adapters

httpx-based clients for the external sources behind the last tier of the
book cache and the cover chain:
- GoogleBooksClient: volumes by id / ISBN, search, cover links
- OpenLibraryClient: books by ISBN / OLID, search, cover URLs
- LongitoodClient: cover URL lookup by ISBN
- ImageFetcher: cover downloads classified into attempt statuses

Adapters never raise to their callers. Network and HTTP failures are
logged and become None / []; the request helpers raise ProviderError
internally so each public method has one place to degrade.

Every adapter shares one synchronous httpx.Client (timeouts come from
settings.http_timeout), safe to use from the background worker threads.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from bookrec.config import Settings, get_settings
from bookrec.exceptions import ProviderError
from bookrec.schemas.book import BookRecord
from bookrec.schemas.image import ImageAttemptStatus
from bookrec.utils.book_json import google_volume_to_book, open_library_to_book
from bookrec.utils.identifiers import sanitize_isbn

logger = logging.getLogger(__name__)

USER_AGENT = "book-recommendation-engine/0.1"


def build_http_client(settings: Optional[Settings] = None) -> httpx.Client:
    """Create the shared HTTP client used by every adapter."""
    settings = settings or get_settings()
    return httpx.Client(
        timeout=settings.http_timeout,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
    )


class _JsonProvider:
    """Shared request handling for the JSON providers."""

    name = "UNKNOWN"

    def __init__(self, client: httpx.Client):
        self._client = client

    def _request_json(self, url: str, params: Optional[dict] = None) -> Optional[Any]:
        """
        GET url and decode the JSON body.

        Returns:
            Decoded JSON, or None on 404

        Raises:
            ProviderError: On timeouts, transport errors, other HTTP errors
                or undecodable bodies
        """
        try:
            response = self._client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise ProviderError(self.name, f"timeout calling {url}") from e
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"request to {url} failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ProviderError(self.name, f"HTTP {response.status_code} from {url}")
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(self.name, f"invalid JSON from {url}") from e


# =============================================================================
# Google Books
# =============================================================================


class GoogleBooksClient(_JsonProvider):
    """
    Google Books volumes API.

    Ids that look like ISBNs are looked up with an `isbn:` query; anything
    else is treated as a volume id.
    """

    name = "GOOGLE_BOOKS"

    def __init__(self, client: httpx.Client, settings: Optional[Settings] = None):
        super().__init__(client)
        settings = settings or get_settings()
        self.base_url = settings.google_books_base_url.rstrip("/")
        self.api_key = settings.google_books_api_key

    def _params(self, **params) -> dict:
        if self.api_key:
            params["key"] = self.api_key
        return params

    def fetch_by_id(self, identifier: str) -> Optional[dict]:
        isbn = sanitize_isbn(identifier)
        try:
            if isbn:
                data = self._request_json(
                    f"{self.base_url}/volumes", self._params(q=f"isbn:{isbn}", maxResults=1)
                )
                items = (data or {}).get("items") or []
                return items[0] if items else None
            return self._request_json(f"{self.base_url}/volumes/{identifier}", self._params())
        except ProviderError as e:
            logger.warning(f"Google Books lookup failed for {identifier}: {e}")
            return None

    def search(self, query: str, limit: int = 20) -> list[dict]:
        if not query or not query.strip():
            return []
        try:
            data = self._request_json(
                f"{self.base_url}/volumes",
                self._params(q=query, maxResults=max(1, min(limit, 40))),
            )
        except ProviderError as e:
            logger.warning(f"Google Books search failed for '{query}': {e}")
            return []
        return (data or {}).get("items") or []

    def to_book(self, raw: dict) -> Optional[BookRecord]:
        return google_volume_to_book(raw)


# =============================================================================
# Open Library
# =============================================================================


class OpenLibraryClient(_JsonProvider):
    """Open Library books, search and covers APIs."""

    name = "OPEN_LIBRARY"

    def __init__(self, client: httpx.Client, settings: Optional[Settings] = None):
        super().__init__(client)
        settings = settings or get_settings()
        self.base_url = settings.open_library_base_url.rstrip("/")
        self.covers_base_url = settings.open_library_covers_base_url.rstrip("/")

    def fetch_by_id(self, identifier: str) -> Optional[dict]:
        isbn = sanitize_isbn(identifier)
        bibkey = f"ISBN:{isbn}" if isbn else f"OLID:{identifier.rstrip('/').rsplit('/', 1)[-1]}"
        try:
            data = self._request_json(
                f"{self.base_url}/api/books",
                {"bibkeys": bibkey, "format": "json", "jscmd": "data"},
            )
        except ProviderError as e:
            logger.warning(f"Open Library lookup failed for {identifier}: {e}")
            return None
        return (data or {}).get(bibkey)

    def search(self, query: str, limit: int = 20) -> list[dict]:
        if not query or not query.strip():
            return []
        try:
            data = self._request_json(f"{self.base_url}/search.json", {"q": query, "limit": limit})
        except ProviderError as e:
            logger.warning(f"Open Library search failed for '{query}': {e}")
            return []
        return (data or {}).get("docs") or []

    def cover_urls(self, isbn: str) -> list[tuple[str, str]]:
        """(size, url) pairs for an ISBN, largest first."""
        return [
            (size, f"{self.covers_base_url}/b/isbn/{isbn}-{size}.jpg")
            for size in ("L", "M", "S")
        ]

    def to_book(self, raw: dict) -> Optional[BookRecord]:
        return open_library_to_book(raw)


# =============================================================================
# Longitood
# =============================================================================


class LongitoodClient(_JsonProvider):
    """bookcover.longitood.com: resolves an ISBN to a Goodreads cover URL."""

    name = "LONGITOOD"

    def __init__(self, client: httpx.Client, settings: Optional[Settings] = None):
        super().__init__(client)
        settings = settings or get_settings()
        self.base_url = settings.longitood_base_url.rstrip("/")

    def cover_url(self, isbn: str) -> Optional[str]:
        try:
            data = self._request_json(f"{self.base_url}/bookcover/{isbn}")
        except ProviderError as e:
            logger.warning(f"Longitood lookup failed for {isbn}: {e}")
            return None
        if isinstance(data, dict) and data.get("url"):
            return data["url"]
        return None


# =============================================================================
# Image Downloads
# =============================================================================


@dataclass(frozen=True)
class ImageDownload:
    status: ImageAttemptStatus
    data: Optional[bytes] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ImageAttemptStatus.SUCCESS


class ImageFetcher:
    """Download cover bytes and classify the outcome for provenance."""

    def __init__(self, client: httpx.Client):
        self._client = client

    def fetch(self, url: Optional[str]) -> ImageDownload:
        if not url or not url.startswith(("http://", "https://")):
            return ImageDownload(ImageAttemptStatus.SKIPPED_BAD_URL, reason="not an http(s) URL")
        try:
            response = self._client.get(url)
        except httpx.TimeoutException:
            return ImageDownload(ImageAttemptStatus.FAILURE_TIMEOUT, reason="timeout")
        except httpx.HTTPError as e:
            return ImageDownload(ImageAttemptStatus.FAILURE_GENERIC_DOWNLOAD, reason=str(e))

        if response.status_code == 404:
            return ImageDownload(ImageAttemptStatus.FAILURE_404, reason="HTTP 404")
        if response.status_code >= 400:
            return ImageDownload(
                ImageAttemptStatus.FAILURE_GENERIC, reason=f"HTTP {response.status_code}"
            )
        if not response.content:
            return ImageDownload(ImageAttemptStatus.FAILURE_EMPTY_CONTENT, reason="empty body")
        return ImageDownload(ImageAttemptStatus.SUCCESS, data=response.content)
