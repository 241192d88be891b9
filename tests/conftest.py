"""
pytest Fixtures for Book Recommendation Engine Tests

Shared fixtures used across all test files.

TEST DOUBLES:
=============
The engine talks to four kinds of infrastructure. Tests replace each with
an in-memory stand-in implementing the same interface:

- Relational store: SQLite in-memory engine (StaticPool), fresh per test
- Redis: FakeRedisClient behind the real RedisCache accessor
- S3: FakeObjectStorage (get_object / put_object / public_url)
- Providers: FakeProvider (fetch_by_id / search / to_book) and
  httpx.MockTransport for the real HTTP adapters

Background work runs on InlineExecutor, so anything the engine schedules
has finished by the time the call that scheduled it returns.
"""

# =============================================================================
# TEST ENVIRONMENT SETUP
# =============================================================================
# IMPORTANT: Set environment variables BEFORE importing the app
import os

os.environ["ENVIRONMENT"] = "test"
os.environ["REDIS_ENABLED"] = "false"
os.environ["S3_ENABLED"] = "false"

import json
from collections.abc import Callable, Generator
from concurrent.futures import Future
from io import BytesIO
from typing import Any, Optional

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bookrec.config import get_settings
from bookrec.database import Base
from bookrec.dependencies import ServiceContainer, build_services
from bookrec.main import create_app
from bookrec.services.background import BackgroundTasks
from bookrec.services.cache import RedisCache
from bookrec.services.events import EventPublisher
from bookrec.services.memory_cache import LocalBookCache
from bookrec.services.orchestrator import BookDataOrchestrator
from bookrec.services.tiered_cache import TieredBookCache
from bookrec.utils.book_json import google_volume_to_book


# =============================================================================
# TEST DOUBLES
# =============================================================================


class InlineExecutor:
    """Executor that runs work immediately on the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait: bool = True) -> None:
        pass


class FakeRedisClient:
    """Dict-backed stand-in for redis.Redis (string values, TTL ignored)."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.published: list[tuple[str, str]] = []
        self.ttls: dict[str, int] = {}

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, key: str) -> int:
        return 1 if self.store.pop(key, None) is not None else 0

    def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 0

    def info(self, section: str = "stats") -> dict:
        return {"keyspace_hits": 0, "keyspace_misses": 0}

    def dbsize(self) -> int:
        return len(self.store)

    def close(self) -> None:
        pass


class FakeObjectStorage:
    """Dict-backed S3 accessor."""

    def __init__(self, objects: Optional[dict[str, bytes]] = None):
        self.objects: dict[str, bytes] = dict(objects or {})
        self.content_types: dict[str, str] = {}

    def get_object(self, key: str) -> Optional[bytes]:
        return self.objects.get(key)

    def put_object(self, key: str, data: bytes, content_type: str = "image/jpeg") -> bool:
        self.objects[key] = data
        self.content_types[key] = content_type
        return True

    def public_url(self, key: str) -> str:
        return f"https://cdn.example.com/{key}"

    def list_keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self.objects if k.startswith(prefix))


class FakeProvider:
    """Google Books shaped provider serving volumes from memory."""

    name = "GOOGLE_BOOKS"

    def __init__(self, volumes: Optional[list[dict]] = None, name: Optional[str] = None):
        self.volumes = list(volumes or [])
        self.fetch_calls: list[str] = []
        self.search_calls: list[str] = []
        if name:
            self.name = name

    def fetch_by_id(self, identifier: str) -> Optional[dict]:
        self.fetch_calls.append(identifier)
        for volume in self.volumes:
            if volume.get("id") == identifier:
                return volume
            identifiers = volume.get("volumeInfo", {}).get("industryIdentifiers", [])
            if any(i.get("identifier") == identifier for i in identifiers):
                return volume
        return None

    def search(self, query: str, limit: int = 20) -> list[dict]:
        self.search_calls.append(query)
        return self.volumes[:limit]

    def to_book(self, raw: dict):
        return google_volume_to_book(raw)


class FakeLongitood:
    def __init__(self, urls: Optional[dict[str, str]] = None):
        self.urls = urls or {}

    def cover_url(self, isbn: str) -> Optional[str]:
        return self.urls.get(isbn)


# =============================================================================
# DATA BUILDERS
# =============================================================================


def make_image_bytes(width: int, height: int, fmt: str = "JPEG") -> bytes:
    """Encode a solid-colour image of the given size."""
    buffer = BytesIO()
    Image.new("RGB", (width, height), color=(120, 40, 200)).save(buffer, format=fmt)
    return buffer.getvalue()


def make_volume(
    volume_id: str = "zyTCAlFPjgYC",
    title: str = "Foundation",
    authors: Optional[list[str]] = None,
    isbn13: Optional[str] = "9780553293357",
    isbn10: Optional[str] = "0553293354",
    categories: Optional[list[str]] = None,
    image_links: Optional[dict[str, str]] = None,
    **volume_info: Any,
) -> dict:
    """Build a Google Books volume item."""
    identifiers = []
    if isbn13:
        identifiers.append({"type": "ISBN_13", "identifier": isbn13})
    if isbn10:
        identifiers.append({"type": "ISBN_10", "identifier": isbn10})
    info = {
        "title": title,
        "authors": ["Isaac Asimov"] if authors is None else authors,
        "publisher": "Spectra",
        "publishedDate": "1991-10-01",
        "industryIdentifiers": identifiers,
        "categories": ["Fiction"] if categories is None else categories,
        "averageRating": 4.5,
        "ratingsCount": 120,
        "language": "en",
        **volume_info,
    }
    if image_links is not None:
        info["imageLinks"] = image_links
    return {"kind": "books#volume", "id": volume_id, "volumeInfo": info}


# =============================================================================
# DATABASE FIXTURES
# =============================================================================
# SQLite in-memory keeps tests fast and isolated. StaticPool shares one
# connection, so every session (and the worker "threads") sees the same data.


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    """Session factory the services open their own sessions from."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# CACHE AND INFRASTRUCTURE FIXTURES
# =============================================================================


@pytest.fixture
def redis_client() -> FakeRedisClient:
    return FakeRedisClient()


@pytest.fixture
def redis_cache(redis_client: FakeRedisClient) -> RedisCache:
    cache = RedisCache(url="redis://fake:6379/0", default_ttl=300, client=redis_client)
    cache.open()
    return cache


@pytest.fixture
def local_cache() -> LocalBookCache:
    cache = LocalBookCache(max_entries=100, ttl_seconds=600)
    cache.open()
    return cache


@pytest.fixture
def inline_executor() -> InlineExecutor:
    return InlineExecutor()


@pytest.fixture
def background(inline_executor: InlineExecutor) -> BackgroundTasks:
    return BackgroundTasks(executor=inline_executor)


@pytest.fixture
def events(redis_cache: RedisCache) -> EventPublisher:
    return EventPublisher(redis_cache)


@pytest.fixture
def foundation_volume() -> dict:
    return make_volume()


@pytest.fixture
def provider(foundation_volume: dict) -> FakeProvider:
    return FakeProvider([foundation_volume])


@pytest.fixture
def tiered_cache(local_cache, redis_cache, session_factory, provider) -> TieredBookCache:
    return TieredBookCache(
        local_cache,
        redis_cache,
        session_factory,
        [provider],
        book_ttl=3600,
    )


@pytest.fixture
def orchestrator(tiered_cache, session_factory, background, events) -> BookDataOrchestrator:
    return BookDataOrchestrator(tiered_cache, session_factory, background, events)


# =============================================================================
# HTTP FIXTURES
# =============================================================================


class FakeHttp:
    """
    Route table for httpx.MockTransport.

    Routes are keyed by (host, path). Values are httpx.Response objects or
    callables taking the request. Unknown routes answer 404.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], Any] = {}
        self.requests: list[httpx.Request] = []

    def add_json(self, url: str, payload: Any, status_code: int = 200) -> None:
        request_url = httpx.URL(url)
        self.routes[(request_url.host, request_url.path)] = httpx.Response(
            status_code, content=json.dumps(payload), headers={"Content-Type": "application/json"}
        )

    def add_bytes(self, url: str, data: bytes, content_type: str = "image/jpeg") -> None:
        request_url = httpx.URL(url)
        self.routes[(request_url.host, request_url.path)] = httpx.Response(
            200, content=data, headers={"Content-Type": content_type}
        )

    def add_handler(self, url: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        request_url = httpx.URL(url)
        self.routes[(request_url.host, request_url.path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.url.host, request.url.path))
        if route is None:
            return httpx.Response(404)
        if callable(route):
            return route(request)
        return route


@pytest.fixture
def fake_http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def http_client(fake_http: FakeHttp) -> Generator[httpx.Client, None, None]:
    client = httpx.Client(transport=httpx.MockTransport(fake_http))
    yield client
    client.close()


@pytest.fixture
def test_settings(tmp_path):
    """Settings with the local cover cache pointed at a temp dir."""
    return get_settings().model_copy(update={"cover_cache_dir": str(tmp_path / "book-covers")})


@pytest.fixture
def services(
    test_settings,
    session_factory,
    http_client,
    redis_cache,
    inline_executor,
) -> ServiceContainer:
    """Full service graph over SQLite, fake Redis and mocked HTTP."""
    return build_services(
        settings=test_settings,
        session_factory=session_factory,
        http_client=http_client,
        redis_cache=redis_cache,
        executor=inline_executor,
    )


@pytest.fixture
def client(services: ServiceContainer) -> Generator[TestClient, None, None]:
    """
    Test client over an app built with the test service container.

    The lifespan opens and closes the container like in production.
    """
    app = create_app(services)
    with TestClient(app) as test_client:
        yield test_client
