"""Tests for the activity recorder and activity formatting."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from incident_ledger.core.errors import AuthorizationDenied, NotFoundError, ValidationError
from incident_ledger.models import ActivityType, NotificationEvent, User
from incident_ledger.services import (
    ActivityRecorder,
    CreateIncidentInput,
    IncidentEngine,
    NotificationDispatcher,
    describe_activity,
)
from incident_ledger.services.activity import ACTIVITY_FORMATTERS


async def open_incident(session: AsyncSession, actor: User, **extra):
    return await IncidentEngine(session).create_incident(
        CreateIncidentInput(title="Queue backlog", description="Workers stalled", **extra),
        actor,
    )


class TestAddComment:
    async def test_comment_is_appended(self, session: AsyncSession, editor: User):
        incident = await open_incident(session, editor)
        recorder = ActivityRecorder(session)

        activity = await recorder.add_comment(incident.id, editor, "  Restarted the workers  ")

        assert activity.activity_type == ActivityType.COMMENT
        assert activity.comment == "Restarted the workers"
        assert activity.user_id == editor.id

    async def test_any_editor_may_comment(self, session: AsyncSession, editor: User, other_editor: User):
        incident = await open_incident(session, editor)

        activity = await ActivityRecorder(session).add_comment(incident.id, other_editor, "Seeing it too")

        assert activity.user_id == other_editor.id

    async def test_viewer_cannot_comment(self, session: AsyncSession, editor: User, viewer: User):
        incident = await open_incident(session, editor)
        recorder = ActivityRecorder(session)

        with pytest.raises(AuthorizationDenied):
            await recorder.add_comment(incident.id, viewer, "hello")

        assert len(await recorder.list_activities(incident.id, viewer)) == 1

    @pytest.mark.parametrize("text", ["", "   ", "x" * 5001])
    async def test_invalid_comment(self, session: AsyncSession, editor: User, text):
        incident = await open_incident(session, editor)

        with pytest.raises(ValidationError):
            await ActivityRecorder(session).add_comment(incident.id, editor, text)

    async def test_unknown_incident(self, session: AsyncSession, editor: User):
        with pytest.raises(NotFoundError):
            await ActivityRecorder(session).add_comment(uuid4(), editor, "hello")

    async def test_comment_notifies_creator_and_assignee_but_not_commenter(
        self, session: AsyncSession, editor: User, other_editor: User, admin: User
    ):
        incident = await open_incident(session, editor, assignee_id=other_editor.id)
        dispatcher = NotificationDispatcher(session)

        await ActivityRecorder(session).add_comment(incident.id, other_editor, "Looking into it")

        intents = [
            i for i in await dispatcher.pending_intents()
            if i.event_type == NotificationEvent.COMMENT
        ]
        assert [i.user_id for i in intents] == [editor.id]


class TestTimelineEvents:
    async def test_event_time_is_kept_separate(self, session: AsyncSession, editor: User):
        incident = await open_incident(session, editor)
        earlier = datetime.now(timezone.utc) - timedelta(hours=3)

        activity = await ActivityRecorder(session).add_timeline_event(
            incident.id,
            editor,
            event_type="detected",
            event_time=earlier,
            description="Alert fired in PagerDuty",
        )

        assert activity.activity_type == ActivityType.DETECTED
        assert activity.event_time == earlier
        assert activity.created_at > earlier

    async def test_unknown_event_type(self, session: AsyncSession, editor: User):
        incident = await open_incident(session, editor)

        with pytest.raises(ValidationError) as exc_info:
            await ActivityRecorder(session).add_timeline_event(
                incident.id,
                editor,
                event_type="comment",
                event_time=datetime.now(timezone.utc),
                description="not a timeline event",
            )
        assert exc_info.value.field == "event_type"


class TestListActivities:
    async def test_oldest_first(self, session: AsyncSession, editor: User, viewer: User):
        incident = await open_incident(session, editor)
        recorder = ActivityRecorder(session)
        await recorder.add_comment(incident.id, editor, "first")
        await recorder.add_comment(incident.id, editor, "second")

        activities = await recorder.list_activities(incident.id, viewer)

        assert [a.activity_type for a in activities] == [
            ActivityType.CREATED,
            ActivityType.COMMENT,
            ActivityType.COMMENT,
        ]
        assert [a.comment for a in activities[1:]] == ["first", "second"]

    async def test_recent_is_newest_first(self, session: AsyncSession, editor: User):
        incident = await open_incident(session, editor)
        recorder = ActivityRecorder(session)
        await recorder.add_comment(incident.id, editor, "latest")

        recent = await recorder.recent_activities(editor, limit=1)

        assert [a.comment for a in recent] == ["latest"]


class TestDescribeActivity:
    def test_every_type_has_a_formatter(self):
        assert set(ACTIVITY_FORMATTERS) == set(ActivityType)

    @pytest.mark.parametrize(
        "activity_type,old,new,comment,expected",
        [
            (ActivityType.CREATED, None, None, None, "Incident created"),
            (ActivityType.COMMENT, None, None, "On it", "Comment: On it"),
            (ActivityType.STATUS_CHANGE, "open", "resolved", None, "Status changed from open to resolved"),
            (ActivityType.ASSIGNEE_CHANGE, "unassigned", "bob", None, "Assignee changed from unassigned to bob"),
            (ActivityType.MITIGATION, None, None, "Rolled back", "Mitigation: Rolled back"),
            (ActivityType.OTHER, None, None, None, "Event"),
        ],
    )
    def test_formats(self, activity_type, old, new, comment, expected):
        activity = SimpleNamespace(activity_type=activity_type, old_value=old, new_value=new, comment=comment)
        assert describe_activity(activity) == expected

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            describe_activity(SimpleNamespace(activity_type="teleported"))
