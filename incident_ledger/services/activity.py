"""Activity recorder: the append-only history of each incident.

Rows are only ever inserted. There is deliberately no update or delete
path in this module.
"""

import logging
from datetime import datetime, timezone
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, ValidationError
from ..core.permissions import Permission, Principal, require_permission
from ..models import ActivityType, Incident, IncidentActivity
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 5000

TIMELINE_EVENT_TYPES: dict[str, ActivityType] = {
    "detected": ActivityType.DETECTED,
    "investigation_started": ActivityType.INVESTIGATION_STARTED,
    "root_cause_identified": ActivityType.ROOT_CAUSE_IDENTIFIED,
    "mitigation": ActivityType.MITIGATION,
    "timeline_resolved": ActivityType.TIMELINE_RESOLVED,
    "other": ActivityType.OTHER,
}


# =============================================================================
# FORMATTING
# =============================================================================


def _change(label: str):
    def fmt(a: IncidentActivity) -> str:
        return f"{label} changed from {a.old_value} to {a.new_value}"
    return fmt


def _timeline(label: str):
    def fmt(a: IncidentActivity) -> str:
        return f"{label}: {a.comment}" if a.comment else label
    return fmt


ACTIVITY_FORMATTERS = {
    ActivityType.CREATED: lambda a: "Incident created",
    ActivityType.COMMENT: lambda a: f"Comment: {a.comment}",
    ActivityType.STATUS_CHANGE: _change("Status"),
    ActivityType.SEVERITY_CHANGE: _change("Severity"),
    ActivityType.ASSIGNEE_CHANGE: _change("Assignee"),
    ActivityType.RESOLVED: lambda a: "Incident resolved",
    ActivityType.REOPENED: lambda a: "Incident reopened",
    ActivityType.DETECTED: _timeline("Detected"),
    ActivityType.INVESTIGATION_STARTED: _timeline("Investigation started"),
    ActivityType.ROOT_CAUSE_IDENTIFIED: _timeline("Root cause identified"),
    ActivityType.MITIGATION: _timeline("Mitigation"),
    ActivityType.TIMELINE_RESOLVED: _timeline("Resolved"),
    ActivityType.OTHER: _timeline("Event"),
}


def describe_activity(activity: IncidentActivity) -> str:
    """Human readable one-liner for any activity variant."""
    try:
        formatter = ACTIVITY_FORMATTERS[ActivityType(activity.activity_type)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown activity type: {activity.activity_type!r}")
    return formatter(activity)


def _validate_text(value: str, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} must not be empty", field=field)
    if len(value) > MAX_TEXT_LENGTH:
        raise ValidationError(
            f"{field} must be at most {MAX_TEXT_LENGTH} characters", field=field
        )
    return value


# =============================================================================
# ACTIVITY RECORDER
# =============================================================================


class ActivityRecorder:
    """Appends and lists incident activities."""

    def __init__(
        self,
        session: AsyncSession,
        notifications: NotificationDispatcher | None = None,
    ):
        self._session = session
        self._notifications = notifications or NotificationDispatcher(session)

    def record(
        self,
        incident_id: UUID,
        user_id: UUID | None,
        activity_type: ActivityType,
        old_value: str | None = None,
        new_value: str | None = None,
        comment: str | None = None,
        event_time: datetime | None = None,
    ) -> IncidentActivity:
        """Stage a new activity row in the current transaction."""
        activity = IncidentActivity(
            incident_id=incident_id,
            user_id=user_id,
            activity_type=activity_type,
            old_value=old_value,
            new_value=new_value,
            comment=comment,
            event_time=event_time,
            created_at=datetime.now(timezone.utc),
        )
        self._session.add(activity)
        return activity

    async def _get_incident_or_raise(self, incident_id: UUID) -> Incident:
        incident = await self._session.get(Incident, incident_id)
        if not incident or incident.is_deleted:
            raise NotFoundError(f"Incident {incident_id} not found")
        return incident

    async def add_comment(
        self,
        incident_id: UUID,
        actor: Principal,
        text: str,
    ) -> IncidentActivity:
        """Append a comment and notify the incident's assignee and creator."""
        require_permission(actor, Permission.EDIT_INCIDENTS)
        text = _validate_text(text, "comment")
        incident = await self._get_incident_or_raise(incident_id)

        activity = self.record(incident.id, actor.id, ActivityType.COMMENT, comment=text)
        await self._notifications.notify_comment(incident, actor.id, text)
        await self._session.flush()

        logger.info(f"Comment added to incident {incident.id} by {actor.id}")
        return activity

    async def add_timeline_event(
        self,
        incident_id: UUID,
        actor: Principal,
        event_type: str,
        event_time: datetime,
        description: str,
    ) -> IncidentActivity:
        """Append a timeline event with its own event time."""
        require_permission(actor, Permission.EDIT_INCIDENTS)
        activity_type = TIMELINE_EVENT_TYPES.get(getattr(event_type, "value", event_type))
        if activity_type is None:
            raise ValidationError(
                f"Invalid event_type '{event_type}'. Must be one of: {', '.join(TIMELINE_EVENT_TYPES)}",
                field="event_type",
            )
        if event_time is None:
            raise ValidationError("event_time is required", field="event_time")
        description = _validate_text(description, "description")
        incident = await self._get_incident_or_raise(incident_id)

        activity = self.record(
            incident.id,
            actor.id,
            activity_type,
            comment=description,
            event_time=event_time,
        )
        await self._session.flush()

        logger.info(f"Timeline event {activity_type.value} added to incident {incident.id}")
        return activity

    async def list_activities(
        self,
        incident_id: UUID,
        actor: Principal,
    ) -> Sequence[IncidentActivity]:
        """All activities of one incident, oldest first."""
        require_permission(actor, Permission.VIEW_INCIDENTS)
        await self._get_incident_or_raise(incident_id)

        result = await self._session.execute(
            select(IncidentActivity)
            .where(IncidentActivity.incident_id == incident_id)
            .order_by(IncidentActivity.created_at.asc(), IncidentActivity.id.asc())
        )
        return result.scalars().all()

    async def recent_activities(
        self,
        actor: Principal,
        limit: int = 20,
    ) -> Sequence[IncidentActivity]:
        """Newest activities across all incidents (dashboard feed)."""
        require_permission(actor, Permission.VIEW_INCIDENTS)
        result = await self._session.execute(
            select(IncidentActivity)
            .join(Incident, Incident.id == IncidentActivity.incident_id)
            .where(Incident.deleted_at.is_(None))
            .order_by(IncidentActivity.created_at.desc(), IncidentActivity.id.desc())
            .limit(limit)
        )
        return result.scalars().all()
