"""
Append-only search event log and the analytics queries over it.
"""
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List

import structlog

from shared.schemas import SearchEvent, utc_now

logger = structlog.get_logger()

POPULAR_WINDOW_DAYS = 30


class EventLog(ABC):
    """Search analytics records."""

    @abstractmethod
    async def append(self, event: SearchEvent) -> None:
        """Persist one event. May raise; callers treat failures as non-fatal."""

    @abstractmethod
    async def daily_stats(self, window_days: int) -> List[Dict[str, Any]]:
        """Per-day search_count, unique_users and avg_results, newest day first."""

    @abstractmethod
    async def popular_queries(self, limit: int) -> List[Dict[str, Any]]:
        """Most frequent queries of the last 30 days with their avg_results."""

    @abstractmethod
    async def performance_stats(self, window_days: int) -> Dict[str, float]:
        """cache_hit_rate, avg_latency_ms and unique_users over the window."""


async def record_event(event_log: EventLog, event: SearchEvent) -> bool:
    """
    Append an event without letting a failure reach the caller.

    Returns:
        True if the event was written
    """
    try:
        await event_log.append(event)
        return True
    except Exception as e:
        logger.warning(
            "search_event_write_failed",
            error=str(e),
            error_type=type(e).__name__,
            cache_hit=event.cache_hit,
        )
        return False


class InMemoryEventLog(EventLog):
    """Event log kept in a list; aggregations computed in Python."""

    def __init__(self):
        self.events: List[SearchEvent] = []

    async def append(self, event: SearchEvent) -> None:
        self.events.append(event)

    def _since(self, days: int) -> List[SearchEvent]:
        cutoff = utc_now() - timedelta(days=days)
        return [e for e in self.events if e.timestamp > cutoff]

    async def daily_stats(self, window_days: int) -> List[Dict[str, Any]]:
        buckets: Dict[Any, List[SearchEvent]] = defaultdict(list)
        for event in self._since(window_days):
            buckets[event.timestamp.date()].append(event)

        rows = []
        for day in sorted(buckets, reverse=True):
            events = buckets[day]
            rows.append({
                "day": day.isoformat(),
                "search_count": len(events),
                "unique_users": len({e.principal_id for e in events}),
                "avg_results": sum(e.result_count for e in events) / len(events),
            })
        return rows

    async def popular_queries(self, limit: int) -> List[Dict[str, Any]]:
        groups: Dict[str, List[SearchEvent]] = defaultdict(list)
        for event in self._since(POPULAR_WINDOW_DAYS):
            groups[event.query].append(event)

        ranked = sorted(groups.items(), key=lambda item: (-len(item[1]), item[0]))
        return [
            {
                "query": query,
                "count": len(events),
                "avg_results": sum(e.result_count for e in events) / len(events),
            }
            for query, events in ranked[:limit]
        ]

    async def performance_stats(self, window_days: int) -> Dict[str, float]:
        events = self._since(window_days)
        if not events:
            return {"cache_hit_rate": 0.0, "avg_latency_ms": 0.0, "unique_users": 0}
        return {
            "cache_hit_rate": sum(1 for e in events if e.cache_hit) / len(events),
            "avg_latency_ms": sum(e.latency_ms for e in events) / len(events),
            "unique_users": len({e.principal_id for e in events}),
        }


class PostgresEventLog(EventLog):
    """Event log backed by the search_logs table."""

    def __init__(self, pool):
        self.pool = pool

    async def append(self, event: SearchEvent) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO search_logs
                    (user_id, query, conversation_id, results_count, response,
                     tokens_used, latency_ms, cache_hit, timestamp)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                """,
                event.principal_id,
                event.query,
                event.conversation_id,
                event.result_count,
                event.response_text,
                event.tokens_used,
                event.latency_ms,
                event.cache_hit,
                event.timestamp,
            )

    async def daily_stats(self, window_days: int) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT
                    DATE_TRUNC('day', timestamp) AS day,
                    COUNT(*) AS search_count,
                    COUNT(DISTINCT user_id) AS unique_users,
                    AVG(results_count)::float AS avg_results
                FROM search_logs
                WHERE timestamp > NOW() - make_interval(days => $1)
                GROUP BY day
                ORDER BY day DESC
                """,
                window_days,
            )
        return [
            {
                "day": row["day"].date().isoformat() if isinstance(row["day"], datetime) else str(row["day"]),
                "search_count": row["search_count"],
                "unique_users": row["unique_users"],
                "avg_results": row["avg_results"] or 0.0,
            }
            for row in rows
        ]

    async def popular_queries(self, limit: int) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT query, COUNT(*) AS count, AVG(results_count)::float AS avg_results
                FROM search_logs
                WHERE timestamp > NOW() - make_interval(days => $2)
                GROUP BY query
                ORDER BY count DESC, query
                LIMIT $1
                """,
                limit,
                POPULAR_WINDOW_DAYS,
            )
        return [dict(row) for row in rows]

    async def performance_stats(self, window_days: int) -> Dict[str, float]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT
                    COALESCE(AVG(CASE WHEN cache_hit THEN 1.0 ELSE 0.0 END), 0)::float AS cache_hit_rate,
                    COALESCE(AVG(latency_ms), 0)::float AS avg_latency_ms,
                    COUNT(DISTINCT user_id) AS unique_users
                FROM search_logs
                WHERE timestamp > NOW() - make_interval(days => $1)
                """,
                window_days,
            )
        return {
            "cache_hit_rate": row["cache_hit_rate"],
            "avg_latency_ms": row["avg_latency_ms"],
            "unique_users": row["unique_users"],
        }
