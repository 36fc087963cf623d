"""
Cache layer for search results and analytics reports.

Backends store opaque strings with store-side expiry. SearchCache wraps each
value in an envelope carrying its creation time and ttl, and re-checks the
age on every read so that store and application ttl always agree.
"""
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from shared.schemas import CachedSearch

logger = structlog.get_logger()


class CacheBackend(ABC):
    """Abstract key/value store with per-entry expiry."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the raw value for key, or None."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        """Store value under key for ttl seconds."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class RedisCacheBackend(CacheBackend):
    """Redis-backed cache (distributed, shared by all workers)."""

    def __init__(self, url: str, client: Any = None):
        if client is None:
            import redis.asyncio as redis_async

            client = redis_async.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        self.client = client

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self.client.set(key, value, ex=ttl)

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        await self.client.aclose()


class InMemoryCacheBackend(CacheBackend):
    """Process-local cache for tests and single-worker development."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (value, self._clock() + ttl)


def normalize_query(query: str) -> str:
    """Lowercase and trim a query so equivalent queries share a cache entry."""
    return query.strip().lower()


def search_cache_key(principal_id: str, query: str) -> str:
    return f"search:{principal_id}:{normalize_query(query)}"


def analytics_cache_key(report_type: str, window_days: int) -> str:
    return f"analytics:{report_type}:{window_days}"


class SearchCache:
    """
    Cache façade used by the orchestrator and analytics service.

    All failures degrade to a miss (reads) or a no-op (writes).
    """

    def __init__(
        self,
        backend: CacheBackend,
        search_ttl: int = 3600,
        analytics_ttl: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.search_ttl = search_ttl
        self.analytics_ttl = analytics_ttl
        self._clock = clock

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when absent, expired or unreadable."""
        try:
            raw = await self.backend.get(key)
        except Exception as e:
            logger.warning("cache_get_failed", key_prefix=key.split(":", 1)[0], error=str(e))
            return None

        if raw is None:
            return None

        try:
            envelope = json.loads(raw)
            created_at = float(envelope["created_at"])
            ttl = float(envelope["ttl"])
            value = envelope["value"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("cache_entry_malformed", key_prefix=key.split(":", 1)[0], error=str(e))
            return None

        if self._clock() - created_at >= ttl:
            return None
        return value

    async def put(self, key: str, value: Any, ttl: int) -> None:
        """Store value under key; failures are logged and ignored."""
        envelope = {"value": value, "created_at": self._clock(), "ttl": ttl}
        try:
            await self.backend.set(key, json.dumps(envelope), ttl)
        except Exception as e:
            logger.warning("cache_set_failed", key_prefix=key.split(":", 1)[0], error=str(e))

    async def get_search(self, principal_id: str, query: str) -> Optional[CachedSearch]:
        value = await self.get(search_cache_key(principal_id, query))
        if value is None:
            return None
        try:
            return CachedSearch.model_validate(value)
        except ValueError as e:
            logger.warning("cached_search_invalid", error=str(e))
            return None

    async def put_search(self, principal_id: str, query: str, matched_ids: List[str], explanation: str) -> None:
        cached = CachedSearch(matched_ids=list(matched_ids), explanation=explanation)
        await self.put(search_cache_key(principal_id, query), cached.model_dump(), self.search_ttl)

    async def get_analytics(self, report_type: str, window_days: int) -> Optional[Dict[str, Any]]:
        return await self.get(analytics_cache_key(report_type, window_days))

    async def put_analytics(self, report_type: str, window_days: int, data: Dict[str, Any]) -> None:
        await self.put(analytics_cache_key(report_type, window_days), data, self.analytics_ttl)
