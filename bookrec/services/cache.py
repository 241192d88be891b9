"""
Redis Caching Service

Distributed tier of the book cache, shared by every engine instance.

Features:
- Connection pooling to Redis
- get/put/evict with automatic JSON serialization
- Cache key generation helpers
- Graceful degradation when Redis is unavailable

Every Redis failure is soft: it is logged and treated as a miss, so the
cascade falls through to the relational store instead of failing the
request.

Cache Strategy:
- Book records: book_cache_ttl (1 day)
- Search results: search_cache_ttl (2 minutes)
- Recommendation lists: recommendation_cache_ttl (1 hour)
"""

import json
import logging
from typing import Any, Optional

import redis
from redis.exceptions import RedisError

from bookrec.config import get_settings

logger = logging.getLogger(__name__)


# =============================================================================
# Cache Key Generation
# =============================================================================

def make_cache_key(prefix: str, *args, **kwargs) -> str:
    """
    Generate a consistent cache key from prefix and arguments.

    Examples:
        make_cache_key("book", "9780553293357") -> "book:9780553293357"
        make_cache_key("search", q="asimov", page=1, size=10) -> "search:page=1:q=asimov:size=10"
        make_cache_key("similar", book_id, limit=6) -> "similar:<id>:limit=6"

    Args:
        prefix: Cache key prefix (e.g., "book", "search", "similar")
        *args: Positional arguments to include in key
        **kwargs: Keyword arguments to include in key (sorted for consistency)

    Returns:
        Cache key string
    """
    parts = [prefix]

    for arg in args:
        if arg is not None:
            parts.append(str(arg))

    # Sorted for consistent key generation
    for key in sorted(kwargs.keys()):
        value = kwargs[key]
        if value is not None:
            parts.append(f"{key}={value}")

    return ":".join(parts)


# =============================================================================
# Redis Cache
# =============================================================================

class RedisCache:
    """
    Distributed cache accessor.

    The client is created in open() and dropped in close(); until open()
    succeeds every operation is a no-op miss.

    Args:
        url: Redis connection URL (defaults to settings.redis_url)
        default_ttl: TTL used by put() when none is given
        client: Pre-built client, mainly for tests
    """

    def __init__(
        self,
        url: Optional[str] = None,
        default_ttl: Optional[int] = None,
        client: Optional[redis.Redis] = None,
    ):
        settings = get_settings()
        self.url = url or settings.redis_url
        self.default_ttl = default_ttl or settings.book_cache_ttl
        self._client = client

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._client

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    def open(self) -> bool:
        """
        Connect and ping Redis.

        Returns:
            True when Redis answered, False when caching is disabled
        """
        try:
            if self._client is None:
                self._client = redis.from_url(
                    self.url,
                    decode_responses=True,  # Return strings instead of bytes
                    socket_connect_timeout=5,
                    socket_timeout=5,
                )
            self._client.ping()
            logger.info("Successfully connected to Redis")
            return True
        except RedisError as e:
            logger.warning(f"Failed to connect to Redis: {e}. Distributed cache disabled.")
            self._client = None
            return False

    def close(self) -> None:
        """Close the Redis connection on shutdown."""
        if self._client is not None:
            try:
                self._client.close()
            except RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._client = None
            logger.info("Redis connection closed")

    # -------------------------------------------------------------------------
    # Core Cache Operations
    # -------------------------------------------------------------------------
    def get(self, key: str) -> Optional[Any]:
        """
        Get a value from the cache.

        Returns:
            Cached value (deserialized from JSON) or None if not found/error
        """
        if self._client is None:
            return None

        try:
            value = self._client.get(key)
            if value is not None:
                logger.debug(f"Cache HIT: {key}")
                return json.loads(value)
            logger.debug(f"Cache MISS: {key}")
            return None
        except RedisError as e:
            logger.warning(f"Cache get error for {key}: {e}")
            return None
        except json.JSONDecodeError as e:
            logger.warning(f"Cache JSON decode error for {key}: {e}")
            return None

    def put(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set a value in the cache with optional TTL.

        Returns:
            True if successfully cached, False otherwise
        """
        if self._client is None:
            return False

        if ttl is None:
            ttl = self.default_ttl

        try:
            serialized = json.dumps(value, default=str)  # default=str handles datetimes
            self._client.setex(key, ttl, serialized)
            logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
            return True
        except RedisError as e:
            logger.warning(f"Cache set error for {key}: {e}")
            return False
        except (TypeError, ValueError) as e:
            logger.warning(f"Cache serialization error for {key}: {e}")
            return False

    def evict(self, key: str) -> bool:
        if self._client is None:
            return False

        try:
            self._client.delete(key)
            logger.debug(f"Cache DELETE: {key}")
            return True
        except RedisError as e:
            logger.warning(f"Cache delete error for {key}: {e}")
            return False

    def publish(self, channel: str, message: str) -> bool:
        """Publish to a pub/sub channel; used by the event publisher."""
        if self._client is None:
            return False
        try:
            self._client.publish(channel, message)
            return True
        except RedisError as e:
            logger.warning(f"Failed to publish to Redis channel {channel}: {e}")
            return False

    # -------------------------------------------------------------------------
    # Cache Statistics (for monitoring)
    # -------------------------------------------------------------------------
    def stats(self) -> dict:
        if self._client is None:
            return {"status": "disconnected"}

        try:
            info = self._client.info("stats")
            return {
                "status": "connected",
                "hits": info.get("keyspace_hits", 0),
                "misses": info.get("keyspace_misses", 0),
                "keys": self._client.dbsize(),
            }
        except RedisError:
            return {"status": "error"}
