"""
Admin analytics over the search event log.
"""
from typing import Any, Dict

import structlog

from shared.schemas import AnalyticsReport, Principal, Role
from src.services.auth import require_role
from src.services.cache import SearchCache
from src.services.event_log import EventLog
from src.services.exceptions import InvalidInput, PersistenceUnavailable

logger = structlog.get_logger()

REPORT_TYPES = ("overview", "searches")
MAX_WINDOW_DAYS = 365


class AnalyticsService:
    """Builds cached analytics reports for admins."""

    def __init__(self, event_log: EventLog, cache: SearchCache):
        self.event_log = event_log
        self.cache = cache

    async def report(self, principal: Principal, report_type: str = "overview", window_days: int = 7) -> AnalyticsReport:
        """
        Build (or fetch from cache) an analytics report.

        Raises:
            Forbidden: If principal is not an admin
            InvalidInput: If window_days is outside 1-365
        """
        require_role(principal, Role.ADMIN)
        if not 1 <= window_days <= MAX_WINDOW_DAYS:
            raise InvalidInput(f"days must be between 1 and {MAX_WINDOW_DAYS}")
        if report_type not in REPORT_TYPES:
            report_type = "overview"

        cached = await self.cache.get_analytics(report_type, window_days)
        if cached is not None:
            logger.info("analytics_cache_hit", report_type=report_type, window_days=window_days)
            return AnalyticsReport.model_validate(cached)

        try:
            data = await self._build(report_type, window_days)
        except Exception as e:
            logger.error("analytics_query_failed", error=str(e), error_type=type(e).__name__)
            raise PersistenceUnavailable() from e

        await self.cache.put_analytics(report_type, window_days, data)
        return AnalyticsReport.model_validate(data)

    async def _build(self, report_type: str, window_days: int) -> Dict[str, Any]:
        daily = await self.event_log.daily_stats(window_days)

        if report_type == "searches":
            return {
                "report_type": report_type,
                "window_days": window_days,
                "daily": daily,
                "popular": await self.event_log.popular_queries(20),
            }

        popular = await self.event_log.popular_queries(10)
        performance = await self.event_log.performance_stats(window_days)
        total = sum(day["search_count"] for day in daily)
        weighted_results = sum(day["avg_results"] * day["search_count"] for day in daily)
        return {
            "report_type": report_type,
            "window_days": window_days,
            "daily": daily,
            "popular": popular,
            "summary": {
                "total_searches": total,
                "unique_users": performance["unique_users"],
                "avg_results_per_search": weighted_results / total if total else 0.0,
                "cache_hit_rate": performance["cache_hit_rate"],
                "avg_latency_ms": performance["avg_latency_ms"],
            },
        }
