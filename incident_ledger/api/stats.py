"""Dashboard statistics routes. Require view_stats."""

from fastapi import APIRouter, Query

from ..core import CurrentUserDep
from ..schemas import DashboardStatsResponse, TagStatResponse, TrendPeriod
from .deps import AuditTrailDep, StatsServiceDep

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/dashboard", response_model=DashboardStatsResponse)
async def get_dashboard(
    current_user: CurrentUserDep,
    stats: StatsServiceDep,
    audit: AuditTrailDep,
    period: TrendPeriod = Query(default="daily"),
):
    """Totals, counts by severity and status, the 10 latest incidents and a trend."""
    dashboard = await stats.dashboard(current_user, period=period)
    await audit.record()
    return DashboardStatsResponse.model_validate(dashboard)


@router.get("/tags", response_model=list[TagStatResponse])
async def get_tag_stats(
    current_user: CurrentUserDep,
    stats: StatsServiceDep,
    audit: AuditTrailDep,
):
    items = await stats.tag_stats(current_user)
    await audit.record()
    return [TagStatResponse.model_validate(i) for i in items]
