"""
Tests for Books and Search API Endpoints

This module tests the HTTP surface over a full service container:
- GET /health
- GET /api/v1/books/{book_id}
- GET /api/v1/books/isbn/{isbn}
- GET /api/v1/books/{book_id}/cover and /cover/initial
- GET /api/v1/books/{book_id}/similar
- GET /api/v1/search

Google Books is served by the FakeHttp route table; Open Library and
Longitood are left unrouted, so they answer 404.

TEST NAMING CONVENTION:
- test_<action>_<scenario>
"""

import httpx
import pytest
from fastapi import status

from bookrec.utils.identifiers import looks_like_uuid
from tests.conftest import make_image_bytes, make_volume

ISBN = "9780553293357"
THUMBNAIL = "https://books.google.com/covers/foundation.jpg"


@pytest.fixture
def google_api(fake_http) -> dict[str, list[dict]]:
    """
    Route the Google Books volumes API.

    Returns the mutable volume lists: "lookup" answers isbn: queries and
    volume ids, "search" answers every other query.
    """
    volumes = {
        "lookup": [make_volume(image_links={"thumbnail": THUMBNAIL})],
        "search": [],
    }

    def volumes_endpoint(request: httpx.Request) -> httpx.Response:
        query = request.url.params.get("q", "")
        if query.startswith("isbn:"):
            isbn = query[len("isbn:"):]
            items = [
                v for v in volumes["lookup"]
                if any(i["identifier"] == isbn for i in v["volumeInfo"]["industryIdentifiers"])
            ]
        else:
            items = volumes["search"]
        return httpx.Response(200, json={"totalItems": len(items), "items": items})

    def volume_endpoint(request: httpx.Request) -> httpx.Response:
        volume_id = request.url.path.rsplit("/", 1)[-1]
        for volume in volumes["lookup"]:
            if volume["id"] == volume_id:
                return httpx.Response(200, json=volume)
        return httpx.Response(404)

    fake_http.add_handler("https://www.googleapis.com/books/v1/volumes", volumes_endpoint)
    fake_http.add_handler("https://www.googleapis.com/books/v1/volumes/zyTCAlFPjgYC", volume_endpoint)
    return volumes


class TestHealth:
    """Tests for GET /health."""

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert data["redis"]["status"] == "connected"
        assert data["s3_enabled"] is False
        assert data["local_cache"]["entries"] == 0


class TestGetBook:
    """Tests for GET /api/v1/books/{book_id}."""

    def test_get_book_by_isbn_from_provider(self, client, google_api):
        """Test an unknown ISBN is fetched from Google Books."""
        response = client.get(f"/api/v1/books/{ISBN}")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["title"] == "Foundation"
        assert data["isbn13"] == ISBN
        assert "raw_json_response" not in data

    def test_get_book_returns_canonical_id_once_persisted(self, client, google_api):
        client.get(f"/api/v1/books/{ISBN}")

        by_volume = client.get("/api/v1/books/zyTCAlFPjgYC").json()
        by_uuid = client.get(f"/api/v1/books/{by_volume['id']}").json()

        assert looks_like_uuid(by_volume["id"])
        assert by_uuid["id"] == by_volume["id"]

    def test_get_book_not_found(self, client, google_api):
        """Test 404 when no tier knows the id."""
        response = client.get("/api/v1/books/no-such-volume")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"] == "Book with id no-such-volume not found"

    def test_health_counts_cached_book(self, client, google_api):
        client.get(f"/api/v1/books/{ISBN}")

        data = client.get("/health").json()

        assert data["local_cache"]["entries"] >= 1


class TestGetBooksByIsbn:
    """Tests for GET /api/v1/books/isbn/{isbn}."""

    def test_get_books_by_isbn(self, client, google_api):
        response = client.get(f"/api/v1/books/isbn/{ISBN}")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert len(data) == 1
        assert data[0]["title"] == "Foundation"
        assert data[0]["raw_json_response"] is None

    @pytest.mark.parametrize("isbn", ["foundation", "12345", "9780000000000"])
    def test_get_books_by_isbn_not_found(self, client, google_api, isbn):
        response = client.get(f"/api/v1/books/isbn/{isbn}")

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestCover:
    """Tests for the cover endpoints."""

    def test_resolve_cover(self, client, google_api, fake_http):
        fake_http.add_bytes(THUMBNAIL, make_image_bytes(400, 600))

        response = client.get(f"/api/v1/books/{ISBN}/cover")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["image"]["source_name"] == "GOOGLE_BOOKS"
        assert data["image"]["width"] == 400
        assert data["provenance"]["google_books_api_response"] is None
        assert data["provenance"]["selected_image_info"]["source_name"] == "GOOGLE_BOOKS"

    def test_resolve_cover_placeholder(self, client, google_api):
        response = client.get(f"/api/v1/books/{ISBN}/cover?preference=HIGH_ONLY")

        assert response.status_code == status.HTTP_200_OK
        image = response.json()["image"]
        assert image["placeholder"] is True
        assert image["url_or_path"] == "/images/placeholder-book-cover.svg"

    def test_resolve_cover_invalid_preference(self, client, google_api):
        response = client.get(f"/api/v1/books/{ISBN}/cover?preference=HUGE")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_initial_cover_uses_external_url(self, client, google_api):
        response = client.get(f"/api/v1/books/{ISBN}/cover/initial")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["url_or_path"] == THUMBNAIL
        assert data["storage_location"] == "REMOTE"


class TestSimilarBooks:
    """Tests for GET /api/v1/books/{book_id}/similar."""

    def test_similar_books(self, client, services, google_api):
        google = services.books.providers[0]
        robot = make_volume(volume_id="robotVol", title="I, Robot", isbn13="9780553382563", isbn10=None)
        source_id = services.orchestrator.persist_fetched_book(None, google.to_book(make_volume()))
        services.orchestrator.persist_fetched_book(None, google.to_book(robot))

        response = client.get(f"/api/v1/books/{source_id}/similar?limit=5")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert [item["book"]["title"] for item in data] == ["I, Robot"]
        assert "Same author(s)" in data[0]["reasons"]

    def test_similar_books_invalid_limit(self, client, google_api):
        response = client.get(f"/api/v1/books/{ISBN}/similar?limit=0")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestSearch:
    """Tests for GET /api/v1/search."""

    def test_search_falls_back_to_provider(self, client, google_api):
        google_api["search"].append(make_volume())

        response = client.get("/api/v1/search?q=asimov")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["fallback"] is True
        assert data["total"] == 1
        assert data["items"][0]["title"] == "Foundation"

    def test_search_no_results(self, client, google_api):
        response = client.get("/api/v1/search?q=zzzz")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["items"] == []
        assert data["pages"] == 0

    @pytest.mark.parametrize(
        "query",
        [
            "",
            "?q=",
            "?q=asimov&size=41",
            "?q=asimov&page=0",
        ],
    )
    def test_search_invalid_params(self, client, query):
        response = client.get(f"/api/v1/search{query}")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
