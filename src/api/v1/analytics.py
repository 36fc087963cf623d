"""
Admin analytics API endpoints.
"""
from fastapi import APIRouter, Depends, Query

from shared.schemas import AnalyticsReport, Principal
from src.api.v1.dependencies import get_analytics_service, get_principal
from src.services.analytics import AnalyticsService

router = APIRouter(prefix="/api/v1/analytics", tags=["analytics"])


@router.get("", response_model=AnalyticsReport)
async def analytics(
    report_type: str = Query("overview", alias="type", description="overview or searches"),
    days: int = Query(7, description="Window in days (1-365)"),
    principal: Principal = Depends(get_principal),
    service: AnalyticsService = Depends(get_analytics_service),
) -> AnalyticsReport:
    """Search analytics for admins, cached for a few minutes."""
    return await service.report(principal, report_type, days)
