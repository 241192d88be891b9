"""
Provider Adapter Tests

Tests for the httpx adapters over httpx.MockTransport:
- GoogleBooksClient: ISBN / volume id lookups, search, API key
- OpenLibraryClient: bibkey lookups, search, cover URLs
- LongitoodClient: cover URL lookup
- ImageFetcher: attempt status classification
"""

import httpx
import pytest

from bookrec.config import get_settings
from bookrec.schemas.image import ImageAttemptStatus
from bookrec.services.providers import (
    GoogleBooksClient,
    ImageFetcher,
    LongitoodClient,
    OpenLibraryClient,
)
from tests.conftest import make_image_bytes, make_volume

VOLUMES_URL = "https://www.googleapis.com/books/v1/volumes"


@pytest.fixture
def google(http_client) -> GoogleBooksClient:
    return GoogleBooksClient(http_client)


@pytest.fixture
def open_library(http_client) -> OpenLibraryClient:
    return OpenLibraryClient(http_client)


# =============================================================================
# Google Books
# =============================================================================


class TestGoogleBooksClient:
    """Tests for GoogleBooksClient."""

    def test_fetch_by_isbn_uses_isbn_query(self, google, fake_http, foundation_volume):
        fake_http.add_json(VOLUMES_URL, {"totalItems": 1, "items": [foundation_volume]})

        volume = google.fetch_by_id("978-0-553-29335-7")

        assert volume["id"] == "zyTCAlFPjgYC"
        request = fake_http.requests[0]
        assert request.url.params["q"] == "isbn:9780553293357"
        assert request.url.params["maxResults"] == "1"

    def test_fetch_by_isbn_without_items(self, google, fake_http):
        fake_http.add_json(VOLUMES_URL, {"totalItems": 0})

        assert google.fetch_by_id("9780553293357") is None

    def test_fetch_by_volume_id(self, google, fake_http, foundation_volume):
        fake_http.add_json(f"{VOLUMES_URL}/zyTCAlFPjgYC", foundation_volume)

        volume = google.fetch_by_id("zyTCAlFPjgYC")

        assert volume["volumeInfo"]["title"] == "Foundation"

    @pytest.mark.parametrize("status_code", [404, 500, 503])
    def test_fetch_http_errors_return_none(self, google, fake_http, status_code):
        fake_http.add_json(f"{VOLUMES_URL}/zyTCAlFPjgYC", {"error": "x"}, status_code=status_code)

        assert google.fetch_by_id("zyTCAlFPjgYC") is None

    def test_fetch_invalid_json_returns_none(self, google, fake_http):
        fake_http.add_handler(
            f"{VOLUMES_URL}/zyTCAlFPjgYC",
            lambda request: httpx.Response(200, content=b"<html>quota</html>"),
        )

        assert google.fetch_by_id("zyTCAlFPjgYC") is None

    def test_fetch_timeout_returns_none(self, google, fake_http):
        def timeout(request):
            raise httpx.ReadTimeout("timed out", request=request)

        fake_http.add_handler(f"{VOLUMES_URL}/zyTCAlFPjgYC", timeout)

        assert google.fetch_by_id("zyTCAlFPjgYC") is None

    def test_search(self, google, fake_http):
        fake_http.add_json(VOLUMES_URL, {"items": [make_volume(), make_volume(volume_id="b")]})

        results = google.search("asimov", limit=100)

        assert [v["id"] for v in results] == ["zyTCAlFPjgYC", "b"]
        assert fake_http.requests[0].url.params["maxResults"] == "40"

    def test_search_blank_query_skips_request(self, google, fake_http):
        assert google.search("  ") == []
        assert fake_http.requests == []

    def test_api_key_is_sent(self, http_client, fake_http, foundation_volume):
        settings = get_settings().model_copy(update={"google_books_api_key": "secret"})
        client = GoogleBooksClient(http_client, settings)
        fake_http.add_json(f"{VOLUMES_URL}/zyTCAlFPjgYC", foundation_volume)

        client.fetch_by_id("zyTCAlFPjgYC")

        assert fake_http.requests[0].url.params["key"] == "secret"

    def test_to_book(self, google, foundation_volume):
        book = google.to_book(foundation_volume)

        assert book.id == "zyTCAlFPjgYC"
        assert book.isbn13 == "9780553293357"


# =============================================================================
# Open Library
# =============================================================================


class TestOpenLibraryClient:
    """Tests for OpenLibraryClient."""

    def test_fetch_by_isbn(self, open_library, fake_http):
        fake_http.add_json(
            "https://openlibrary.org/api/books",
            {"ISBN:9780140328721": {"title": "Fantastic Mr Fox"}},
        )

        record = open_library.fetch_by_id("9780140328721")

        assert record == {"title": "Fantastic Mr Fox"}
        assert fake_http.requests[0].url.params["bibkeys"] == "ISBN:9780140328721"

    def test_fetch_by_olid(self, open_library, fake_http):
        fake_http.add_json("https://openlibrary.org/api/books", {"OLID:OL7353617M": {"title": "Fox"}})

        record = open_library.fetch_by_id("/books/OL7353617M")

        assert record["title"] == "Fox"
        assert fake_http.requests[0].url.params["bibkeys"] == "OLID:OL7353617M"

    def test_fetch_unknown_returns_none(self, open_library, fake_http):
        fake_http.add_json("https://openlibrary.org/api/books", {})

        assert open_library.fetch_by_id("9780140328721") is None

    def test_search(self, open_library, fake_http):
        fake_http.add_json(
            "https://openlibrary.org/search.json",
            {"numFound": 1, "docs": [{"key": "/works/OL45804W", "title": "Fantastic Mr Fox"}]},
        )

        docs = open_library.search("dahl", limit=5)

        assert docs[0]["title"] == "Fantastic Mr Fox"
        assert fake_http.requests[0].url.params["limit"] == "5"

    def test_search_failure_returns_empty(self, open_library, fake_http):
        fake_http.add_json("https://openlibrary.org/search.json", {}, status_code=500)

        assert open_library.search("dahl") == []

    def test_cover_urls_largest_first(self, open_library):
        urls = open_library.cover_urls("9780140328721")

        assert urls == [
            ("L", "https://covers.openlibrary.org/b/isbn/9780140328721-L.jpg"),
            ("M", "https://covers.openlibrary.org/b/isbn/9780140328721-M.jpg"),
            ("S", "https://covers.openlibrary.org/b/isbn/9780140328721-S.jpg"),
        ]


# =============================================================================
# Longitood
# =============================================================================


class TestLongitoodClient:
    def test_cover_url(self, http_client, fake_http):
        fake_http.add_json(
            "https://bookcover.longitood.com/bookcover/9780553293357",
            {"url": "https://images.gr-assets.com/books/foundation.jpg"},
        )

        url = LongitoodClient(http_client).cover_url("9780553293357")

        assert url == "https://images.gr-assets.com/books/foundation.jpg"

    def test_cover_url_missing(self, http_client, fake_http):
        fake_http.add_json("https://bookcover.longitood.com/bookcover/9780553293357", {"error": "none"})

        assert LongitoodClient(http_client).cover_url("9780553293357") is None


# =============================================================================
# Image Downloads
# =============================================================================


class TestImageFetcher:
    """Tests for ImageFetcher status classification."""

    URL = "https://covers.example.com/cover.jpg"

    def test_success(self, http_client, fake_http):
        data = make_image_bytes(300, 450)
        fake_http.add_bytes(self.URL, data)

        download = ImageFetcher(http_client).fetch(self.URL)

        assert download.ok
        assert download.data == data

    @pytest.mark.parametrize("url", [None, "", "/images/cover.jpg", "ftp://x/cover.jpg"])
    def test_bad_url(self, http_client, url):
        download = ImageFetcher(http_client).fetch(url)

        assert download.status == ImageAttemptStatus.SKIPPED_BAD_URL
        assert not download.ok

    @pytest.mark.parametrize(
        "response,expected",
        [
            (httpx.Response(404), ImageAttemptStatus.FAILURE_404),
            (httpx.Response(500), ImageAttemptStatus.FAILURE_GENERIC),
            (httpx.Response(403), ImageAttemptStatus.FAILURE_GENERIC),
            (httpx.Response(200, content=b""), ImageAttemptStatus.FAILURE_EMPTY_CONTENT),
        ],
    )
    def test_http_outcomes(self, http_client, fake_http, response, expected):
        fake_http.add_handler(self.URL, lambda request: response)

        download = ImageFetcher(http_client).fetch(self.URL)

        assert download.status == expected

    def test_timeout(self, http_client, fake_http):
        def timeout(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        fake_http.add_handler(self.URL, timeout)

        assert ImageFetcher(http_client).fetch(self.URL).status == ImageAttemptStatus.FAILURE_TIMEOUT

    def test_transport_error(self, http_client, fake_http):
        def refused(request):
            raise httpx.ConnectError("connection refused", request=request)

        fake_http.add_handler(self.URL, refused)

        download = ImageFetcher(http_client).fetch(self.URL)

        assert download.status == ImageAttemptStatus.FAILURE_GENERIC_DOWNLOAD
        assert "connection refused" in download.reason
