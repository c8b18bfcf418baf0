"""
Tests for the Incident Engine - Verifying State Machine Guarantees.

These tests verify:
1. CREATE: One 'created' activity, resolved_at derived from status
2. STATUS: resolved_at set on entry to resolved/closed, cleared on exit
3. TRACKING: Exactly one activity per status/severity/assignee change
4. SILENT EDITS: title/description/impact_scope produce no activity
5. AUTHORIZATION: Denials have zero side effects
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from incident_ledger.core.errors import (
    AuthorizationDenied,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from incident_ledger.models import (
    ActivityType,
    Incident,
    IncidentActivity,
    IncidentSeverity,
    IncidentStatus,
    Tag,
    User,
)
from incident_ledger.services import (
    CreateIncidentInput,
    IncidentEngine,
    IncidentFilters,
    UpdateIncidentInput,
)


# =============================================================================
# HELPERS
# =============================================================================


async def activities_of(session: AsyncSession, incident_id) -> list[IncidentActivity]:
    result = await session.execute(
        select(IncidentActivity)
        .where(IncidentActivity.incident_id == incident_id)
        .order_by(IncidentActivity.id)
    )
    return list(result.scalars().all())


async def open_incident(session: AsyncSession, actor: User, **overrides) -> Incident:
    data = {
        "title": "Checkout latency spike",
        "description": "p99 latency above 5s on checkout",
        "severity": IncidentSeverity.HIGH,
    }
    data.update(overrides)
    return await IncidentEngine(session).create_incident(CreateIncidentInput(**data), actor)


# =============================================================================
# TEST: CREATE
# =============================================================================


class TestCreateIncident:
    async def test_create_records_single_created_activity(self, session: AsyncSession, editor: User):
        incident = await open_incident(session, editor)

        assert incident.status == IncidentStatus.OPEN
        assert incident.resolved_at is None
        assert incident.creator_id == editor.id

        activities = await activities_of(session, incident.id)
        assert [a.activity_type for a in activities] == [ActivityType.CREATED]
        assert activities[0].user_id == editor.id

    async def test_create_resolved_sets_resolved_at(self, session: AsyncSession, admin: User):
        incident = await open_incident(session, admin, status="resolved")

        assert incident.status == IncidentStatus.RESOLVED
        assert incident.resolved_at is not None

    async def test_create_with_tags(self, session: AsyncSession, admin: User):
        tag = Tag(name="database", color="#FF0000")
        session.add(tag)
        await session.flush()

        incident = await open_incident(session, admin, tag_ids=[tag.id, tag.id])

        assert incident.tag_ids == [tag.id]

    async def test_viewer_cannot_create(self, session: AsyncSession, viewer: User):
        with pytest.raises(AuthorizationDenied):
            await open_incident(session, viewer)

        count = (await session.execute(select(func.count()).select_from(Incident))).scalar_one()
        assert count == 0

    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"title": "   "}, "title"),
            ({"title": "x" * 501}, "title"),
            ({"description": ""}, "description"),
            ({"severity": "apocalyptic"}, "severity"),
            ({"status": "snoozed"}, "status"),
            ({"tag_ids": [uuid4()]}, "tag_ids"),
            ({"assignee_id": uuid4()}, "assignee_id"),
        ],
    )
    async def test_invalid_input_is_rejected(self, session: AsyncSession, editor: User, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            await open_incident(session, editor, **overrides)
        assert exc_info.value.field == field

        count = (await session.execute(select(func.count()).select_from(IncidentActivity))).scalar_one()
        assert count == 0

    async def test_detected_after_resolution_is_rejected(self, session: AsyncSession, editor: User):
        with pytest.raises(ValidationError):
            await open_incident(
                session,
                editor,
                status="closed",
                detected_at=datetime.now(timezone.utc) + timedelta(days=1),
            )


# =============================================================================
# TEST: STATUS TRANSITIONS
# =============================================================================


class TestStatusTransitions:
    async def test_resolve_then_reopen(self, session: AsyncSession, editor: User):
        """Open -> resolved sets resolved_at; resolved -> open clears it."""
        engine = IncidentEngine(session)
        incident = await open_incident(session, editor)

        await engine.update_incident(incident.id, UpdateIncidentInput(status="resolved"), editor)
        assert incident.status == IncidentStatus.RESOLVED
        resolved_at = incident.resolved_at
        assert resolved_at is not None

        await engine.update_incident(incident.id, UpdateIncidentInput(status="open"), editor)
        assert incident.status == IncidentStatus.OPEN
        assert incident.resolved_at is None

        changes = [
            (a.old_value, a.new_value)
            for a in await activities_of(session, incident.id)
            if a.activity_type == ActivityType.STATUS_CHANGE
        ]
        assert changes == [("open", "resolved"), ("resolved", "open")]

    async def test_resolved_to_closed_keeps_resolved_at(self, session: AsyncSession, editor: User):
        engine = IncidentEngine(session)
        incident = await open_incident(session, editor)

        await engine.set_status(incident, IncidentStatus.RESOLVED, editor)
        resolved_at = incident.resolved_at
        await engine.set_status(incident, IncidentStatus.CLOSED, editor)

        assert incident.status == IncidentStatus.CLOSED
        assert incident.resolved_at == resolved_at

    async def test_same_status_is_noop(self, session: AsyncSession, editor: User):
        engine = IncidentEngine(session)
        incident = await open_incident(session, editor, status="resolved")
        resolved_at = incident.resolved_at

        changed = await engine.set_status(incident, "resolved", editor)

        assert changed is False
        assert incident.resolved_at == resolved_at
        types = [a.activity_type for a in await activities_of(session, incident.id)]
        assert types == [ActivityType.CREATED]

    @pytest.mark.parametrize("old", list(IncidentStatus))
    @pytest.mark.parametrize("new", list(IncidentStatus))
    async def test_every_transition_is_allowed(self, session: AsyncSession, admin: User, old, new):
        engine = IncidentEngine(session)
        incident = await open_incident(session, admin, status=old)

        await engine.set_status(incident, new, admin)

        assert incident.status == new
        assert (incident.resolved_at is not None) == (new in (IncidentStatus.RESOLVED, IncidentStatus.CLOSED))


# =============================================================================
# TEST: TRACKED AND SILENT FIELDS
# =============================================================================


class TestTrackedChanges:
    async def test_severity_change_records_activity(self, session: AsyncSession, editor: User):
        engine = IncidentEngine(session)
        incident = await open_incident(session, editor, severity="low")

        await engine.update_incident(incident.id, UpdateIncidentInput(severity="critical"), editor)

        activity = (await activities_of(session, incident.id))[-1]
        assert activity.activity_type == ActivityType.SEVERITY_CHANGE
        assert (activity.old_value, activity.new_value) == ("low", "critical")

    async def test_assignee_change_records_user_names(
        self, session: AsyncSession, editor: User, other_editor: User
    ):
        engine = IncidentEngine(session)
        incident = await open_incident(session, editor)

        await engine.assign_incident(incident.id, other_editor.id, editor)
        await engine.assign_incident(incident.id, None, editor)

        changes = [
            (a.old_value, a.new_value)
            for a in await activities_of(session, incident.id)
            if a.activity_type == ActivityType.ASSIGNEE_CHANGE
        ]
        assert changes == [
            ("unassigned", "Olive Editor"),
            ("Olive Editor", "unassigned"),
        ]

    async def test_combined_update_records_one_activity_per_field(self, session: AsyncSession, admin: User):
        engine = IncidentEngine(session)
        incident = await open_incident(session, admin)

        await engine.update_incident(
            incident.id,
            UpdateIncidentInput(
                title="Checkout down",
                status="investigating",
                severity="critical",
                assignee_id=admin.id,
            ),
            admin,
        )

        types = [a.activity_type for a in await activities_of(session, incident.id)]
        assert types == [
            ActivityType.CREATED,
            ActivityType.STATUS_CHANGE,
            ActivityType.SEVERITY_CHANGE,
            ActivityType.ASSIGNEE_CHANGE,
        ]
        assert incident.title == "Checkout down"

    async def test_title_edit_by_creator_records_nothing(self, session: AsyncSession, editor: User):
        """Editor edits the title of their own incident: allowed, no activity."""
        engine = IncidentEngine(session)
        incident = await open_incident(session, editor)

        await engine.update_incident(
            incident.id,
            UpdateIncidentInput(
                title="Renamed",
                description="More detail",
                impact_scope="EU customers",
            ),
            editor,
        )

        assert incident.title == "Renamed"
        assert incident.impact_scope == "EU customers"
        types = [a.activity_type for a in await activities_of(session, incident.id)]
        assert types == [ActivityType.CREATED]

    async def test_invalid_update_changes_nothing(self, session: AsyncSession, editor: User):
        engine = IncidentEngine(session)
        incident = await open_incident(session, editor)

        with pytest.raises(ValidationError):
            await engine.update_incident(
                incident.id,
                UpdateIncidentInput(title="New title", status="investigating", severity="bogus"),
                editor,
            )

        assert incident.title == "Checkout latency spike"
        assert incident.status == IncidentStatus.OPEN
        assert len(await activities_of(session, incident.id)) == 1


# =============================================================================
# TEST: AUTHORIZATION
# =============================================================================


class TestAuthorization:
    async def test_editor_cannot_edit_someone_elses_incident(
        self, session: AsyncSession, editor: User, other_editor: User
    ):
        engine = IncidentEngine(session)
        incident = await open_incident(session, editor)

        with pytest.raises(AuthorizationDenied):
            await engine.update_incident(incident.id, UpdateIncidentInput(status="closed"), other_editor)

        assert incident.status == IncidentStatus.OPEN
        assert len(await activities_of(session, incident.id)) == 1

    async def test_viewer_cannot_delete(self, session: AsyncSession, admin: User, viewer: User):
        engine = IncidentEngine(session)
        incident = await open_incident(session, admin)

        with pytest.raises(AuthorizationDenied):
            await engine.delete_incident(incident.id, viewer)

        assert await session.get(Incident, incident.id) is not None
        assert len(await activities_of(session, incident.id)) == 1

    async def test_admin_delete_keeps_activity_history(self, session: AsyncSession, admin: User, viewer: User):
        engine = IncidentEngine(session)
        incident = await open_incident(session, admin)
        await engine.set_status(incident, "investigating", admin)
        await session.flush()

        await engine.delete_incident(incident.id, admin)

        row = await session.get(Incident, incident.id)
        assert row is not None and row.deleted_at is not None
        assert [a.activity_type for a in await activities_of(session, incident.id)] == [
            ActivityType.CREATED,
            ActivityType.STATUS_CHANGE,
        ]

        with pytest.raises(NotFoundError):
            await engine.get_incident(incident.id, viewer)
        items, total = await engine.list_incidents(viewer, IncidentFilters())
        assert total == 0 and items == []

    async def test_deleted_incident_cannot_be_edited(self, session: AsyncSession, admin: User):
        engine = IncidentEngine(session)
        incident = await open_incident(session, admin)
        await engine.delete_incident(incident.id, admin)

        with pytest.raises(NotFoundError):
            await engine.update_incident(incident.id, UpdateIncidentInput(title="Back again"), admin)
        with pytest.raises(NotFoundError):
            await engine.delete_incident(incident.id, admin)

    async def test_missing_incident(self, session: AsyncSession, admin: User):
        with pytest.raises(NotFoundError):
            await IncidentEngine(session).get_incident(uuid4(), admin)


# =============================================================================
# TEST: LISTING AND SUMMARY
# =============================================================================


class TestListIncidents:
    async def test_filters_and_severity_sort(self, session: AsyncSession, editor: User, viewer: User):
        await open_incident(session, editor, title="Disk full", severity="low")
        await open_incident(session, editor, title="API outage", severity="critical")
        await open_incident(session, editor, title="Slow search", severity="medium", status="resolved")

        engine = IncidentEngine(session)
        items, total = await engine.list_incidents(viewer, IncidentFilters(sort="severity"))
        assert total == 3
        assert [i.title for i in items] == ["API outage", "Slow search", "Disk full"]

        items, total = await engine.list_incidents(viewer, IncidentFilters(status="resolved"))
        assert total == 1 and items[0].title == "Slow search"

        items, total = await engine.list_incidents(viewer, IncidentFilters(search="outage"))
        assert [i.title for i in items] == ["API outage"]

    async def test_pagination(self, session: AsyncSession, editor: User):
        for n in range(5):
            await open_incident(session, editor, title=f"Incident {n}")

        items, total = await IncidentEngine(session).list_incidents(editor, limit=2, offset=4)
        assert total == 5
        assert len(items) == 1


class TestRegenerateSummary:
    async def test_overwrites_summary(self, session: AsyncSession, editor: User, make_analyzer):
        incident = await open_incident(session, editor, summary="old summary")
        engine = IncidentEngine(session, analyzer=make_analyzer("Checkout was slow for 20 minutes."))

        await engine.regenerate_summary(incident.id, editor)

        assert incident.summary == "Checkout was slow for 20 minutes."

    async def test_ai_failure_keeps_summary(self, session: AsyncSession, editor: User, make_analyzer):
        incident = await open_incident(session, editor, summary="old summary")
        engine = IncidentEngine(session, analyzer=make_analyzer(status_code=500))

        with pytest.raises(ExternalServiceError):
            await engine.regenerate_summary(incident.id, editor)

        assert incident.summary == "old summary"
