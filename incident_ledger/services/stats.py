"""
Dashboard statistics over live (not deleted) incidents.

Counts come from grouped queries; trend buckets are filled in Python
so that empty days, weeks and months still show up with a zero count.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import ValidationError
from ..core.permissions import Permission, Principal, require_permission
from ..models import Incident, IncidentSeverity, IncidentStatus, Tag, as_utc, incident_tags

logger = logging.getLogger(__name__)

RECENT_LIMIT = 10
DAILY_BUCKETS = 30
WEEKLY_BUCKETS = 12
MONTHLY_BUCKETS = 12
TREND_PERIODS = ("daily", "weekly", "monthly")


@dataclass
class TrendPoint:
    label: str
    count: int


@dataclass
class DashboardStats:
    total_incidents: int
    by_severity: dict[str, int]
    by_status: dict[str, int]
    recent_incidents: Sequence[Incident]
    trend: list[TrendPoint] = field(default_factory=list)


@dataclass
class TagStat:
    tag_id: UUID
    name: str
    color: str
    count: int
    percentage: float


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def build_trend(detected: list[datetime], period: str, now: datetime) -> list[TrendPoint]:
    """
    Bucket detection times into a fixed number of periods ending at ``now``.

    - daily: the last 30 calendar days, labelled MM/DD
    - weekly: 12 rolling 7-day windows, labelled by their first day
    - monthly: the last 12 calendar months, labelled YYYY-MM
    """
    if period not in TREND_PERIODS:
        raise ValidationError(f"period must be one of {', '.join(TREND_PERIODS)}", field="period")
    detected = [as_utc(d) for d in detected]

    if period == "daily":
        today = now.date()
        days = [today - timedelta(days=DAILY_BUCKETS - 1 - i) for i in range(DAILY_BUCKETS)]
        counts = {day: 0 for day in days}
        for d in detected:
            if d.date() in counts:
                counts[d.date()] += 1
        return [TrendPoint(day.strftime("%m/%d"), counts[day]) for day in days]

    if period == "weekly":
        points = []
        for i in range(WEEKLY_BUCKETS):
            start = now - timedelta(days=7 * (WEEKLY_BUCKETS - i))
            end = start + timedelta(days=7)
            count = sum(1 for d in detected if start < d <= end)
            points.append(TrendPoint(start.strftime("%m/%d"), count))
        return points

    months = [_shift_month(now.year, now.month, -(MONTHLY_BUCKETS - 1 - i)) for i in range(MONTHLY_BUCKETS)]
    counts = {m: 0 for m in months}
    for d in detected:
        if (d.year, d.month) in counts:
            counts[(d.year, d.month)] += 1
    return [TrendPoint(f"{year:04d}-{month:02d}", counts[(year, month)]) for year, month in months]


def _trend_cutoff(period: str, now: datetime) -> datetime:
    if period == "weekly":
        return now - timedelta(days=7 * WEEKLY_BUCKETS)
    if period == "monthly":
        year, month = _shift_month(now.year, now.month, -(MONTHLY_BUCKETS - 1))
        return datetime(year, month, 1, tzinfo=timezone.utc)
    start = now.date() - timedelta(days=DAILY_BUCKETS - 1)
    return datetime(start.year, start.month, start.day, tzinfo=timezone.utc)


class StatsService:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def dashboard(
        self,
        actor: Principal,
        period: str = "daily",
        now: datetime | None = None,
    ) -> DashboardStats:
        """Totals, per-severity and per-status counts, the latest incidents and a trend."""
        require_permission(actor, Permission.VIEW_STATS)
        if period not in TREND_PERIODS:
            raise ValidationError(f"period must be one of {', '.join(TREND_PERIODS)}", field="period")
        now = as_utc(now) or datetime.now(timezone.utc)
        live = Incident.deleted_at.is_(None)

        total_result = await self._session.execute(
            select(func.count()).select_from(Incident).where(live)
        )
        total = total_result.scalar_one()

        severity_result = await self._session.execute(
            select(Incident.severity, func.count().label("count"))
            .where(live)
            .group_by(Incident.severity)
        )
        by_severity = {s.value: 0 for s in IncidentSeverity}
        by_severity.update({row.severity.value: row.count for row in severity_result.all()})

        status_result = await self._session.execute(
            select(Incident.status, func.count().label("count"))
            .where(live)
            .group_by(Incident.status)
        )
        by_status = {s.value: 0 for s in IncidentStatus}
        by_status.update({row.status.value: row.count for row in status_result.all()})

        recent_result = await self._session.execute(
            select(Incident)
            .where(live)
            .order_by(Incident.created_at.desc())
            .limit(RECENT_LIMIT)
        )

        detected_result = await self._session.execute(
            select(Incident.detected_at).where(live, Incident.detected_at >= _trend_cutoff(period, now))
        )
        trend = build_trend(list(detected_result.scalars().all()), period, now)

        return DashboardStats(
            total_incidents=total,
            by_severity=by_severity,
            by_status=by_status,
            recent_incidents=recent_result.scalars().all(),
            trend=trend,
        )

    async def tag_stats(self, actor: Principal) -> list[TagStat]:
        """Incidents per tag, most used first. Percentages are of all live incidents."""
        require_permission(actor, Permission.VIEW_STATS)
        live = Incident.deleted_at.is_(None)

        total_result = await self._session.execute(
            select(func.count()).select_from(Incident).where(live)
        )
        total = total_result.scalar_one()

        result = await self._session.execute(
            select(Tag.id, Tag.name, Tag.color, func.count().label("count"))
            .select_from(Tag)
            .join(incident_tags, incident_tags.c.tag_id == Tag.id)
            .join(Incident, Incident.id == incident_tags.c.incident_id)
            .where(live)
            .group_by(Tag.id, Tag.name, Tag.color)
            .order_by(func.count().desc(), Tag.name)
        )
        return [
            TagStat(
                tag_id=row.id,
                name=row.name,
                color=row.color,
                count=row.count,
                percentage=round(row.count / total * 100, 2) if total else 0.0,
            )
            for row in result.all()
        ]
