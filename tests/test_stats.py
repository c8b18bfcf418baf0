"""Tests for dashboard and tag statistics."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from incident_ledger.core.errors import AuthorizationDenied, ValidationError
from incident_ledger.models import User
from incident_ledger.services import (
    CreateIncidentInput,
    IncidentEngine,
    StatsService,
    TagService,
    build_trend,
)

NOW = datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc)


async def open_incident(session: AsyncSession, actor: User, **overrides):
    data = {"title": "Checkout errors", "description": "5xx on checkout"}
    data.update(overrides)
    return await IncidentEngine(session).create_incident(CreateIncidentInput(**data), actor)


class TestTrend:
    def test_daily_covers_thirty_days(self):
        detected = [NOW, NOW - timedelta(hours=2), NOW - timedelta(days=29), NOW - timedelta(days=30)]

        points = build_trend(detected, "daily", NOW)

        assert len(points) == 30
        assert (points[0].label, points[0].count) == ("05/17", 1)
        assert (points[-1].label, points[-1].count) == ("06/15", 2)
        assert sum(p.count for p in points) == 3

    def test_weekly_windows_end_now(self):
        detected = [NOW - timedelta(days=1), NOW - timedelta(days=8), NOW - timedelta(days=90)]

        points = build_trend(detected, "weekly", NOW)

        assert len(points) == 12
        assert points[-1].label == "06/08"
        assert [p.count for p in points[-2:]] == [1, 1]
        assert sum(p.count for p in points) == 2

    def test_monthly_crosses_year_boundary(self):
        detected = [datetime(2025, 7, 3, tzinfo=timezone.utc), datetime(2026, 6, 1, tzinfo=timezone.utc)]

        points = build_trend(detected, "monthly", NOW)

        assert [p.label for p in points[:2]] == ["2025-07", "2025-08"]
        assert points[-1].label == "2026-06"
        assert (points[0].count, points[-1].count) == (1, 1)

    def test_naive_timestamps_are_utc(self):
        points = build_trend([datetime(2026, 6, 15, 0, 30)], "daily", NOW)
        assert points[-1].count == 1

    def test_unknown_period(self):
        with pytest.raises(ValidationError):
            build_trend([], "hourly", NOW)


class TestDashboard:
    async def test_counts_exclude_deleted_incidents(
        self, session: AsyncSession, editor: User, admin: User, viewer: User
    ):
        await open_incident(session, editor, severity="critical")
        await open_incident(session, editor, severity="low", status="resolved")
        doomed = await open_incident(session, editor, severity="critical")
        await IncidentEngine(session).delete_incident(doomed.id, admin)

        stats = await StatsService(session).dashboard(viewer)

        assert stats.total_incidents == 2
        assert stats.by_severity == {"critical": 1, "high": 0, "medium": 0, "low": 1}
        assert stats.by_status == {"open": 1, "investigating": 0, "resolved": 1, "closed": 0}
        assert doomed.id not in {i.id for i in stats.recent_incidents}
        assert len(stats.trend) == 30
        assert stats.trend[-1].count == 2

    async def test_recent_is_limited_to_ten(self, session: AsyncSession, editor: User):
        for n in range(12):
            await open_incident(session, editor, title=f"Incident {n}")

        stats = await StatsService(session).dashboard(editor, period="monthly")

        assert stats.total_incidents == 12
        assert len(stats.recent_incidents) == 10
        assert len(stats.trend) == 12

    async def test_requires_view_stats(self, session: AsyncSession):
        outsider = SimpleNamespace(id=uuid4(), role="guest")
        with pytest.raises(AuthorizationDenied):
            await StatsService(session).dashboard(outsider)

    async def test_bad_period(self, session: AsyncSession, viewer: User):
        with pytest.raises(ValidationError):
            await StatsService(session).dashboard(viewer, period="yearly")


class TestTagStats:
    async def test_counts_and_percentages(self, session: AsyncSession, editor: User, admin: User):
        tags = TagService(session)
        database = await tags.create_tag("database", None, editor)
        network = await tags.create_tag("network", "#00FF00", editor)
        await tags.create_tag("unused", None, editor)

        await open_incident(session, editor, tag_ids=[database.id, network.id])
        await open_incident(session, editor, tag_ids=[database.id])
        await open_incident(session, editor)
        doomed = await open_incident(session, editor, tag_ids=[network.id])
        await IncidentEngine(session).delete_incident(doomed.id, admin)

        stats = await StatsService(session).tag_stats(editor)

        assert [(s.name, s.count, s.percentage) for s in stats] == [
            ("database", 2, 66.67),
            ("network", 1, 33.33),
        ]
        assert stats[1].color == "#00FF00"
