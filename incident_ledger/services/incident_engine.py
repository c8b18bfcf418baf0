"""
Incident Engine: lifecycle management for incidents.

This module owns the incident state machine:
- Every mutation is authorized before anything is touched
- Status, severity and assignee changes each append exactly one activity
- resolved_at is derived from status, never set directly
- Setting a field to its current value is a no-op (no activity, no notification)
- All writes share the caller's transaction; services only flush
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, ValidationError
from ..core.permissions import (
    Permission,
    Principal,
    can_delete_incident,
    can_edit_incident,
    require,
    require_permission,
)
from ..models import (
    ActionItem,
    ActivityType,
    Attachment,
    Incident,
    IncidentActivity,
    IncidentSeverity,
    IncidentStatus,
    PostMortem,
    Tag,
    User,
    as_utc,
)
from .activity import ActivityRecorder
from .ai_analyzer import AIAnalyzerService
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

RESOLVED_STATES = frozenset({IncidentStatus.RESOLVED, IncidentStatus.CLOSED})
UNASSIGNED = "unassigned"
MAX_TITLE_LENGTH = 500


class _Unset:
    """Marker for 'field not provided' where None is a meaningful value."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class CreateIncidentInput:
    """Input for opening a new incident."""
    title: str
    description: str
    severity: IncidentSeverity | str = IncidentSeverity.MEDIUM
    status: IncidentStatus | str = IncidentStatus.OPEN
    impact_scope: str | None = None
    summary: str | None = None
    detected_at: datetime | None = None  # defaults to now
    assignee_id: UUID | None = None
    tag_ids: list[UUID] | None = None


@dataclass
class UpdateIncidentInput:
    """Partial update. Fields left as UNSET are not touched."""
    title: str = UNSET
    description: str = UNSET
    impact_scope: str | None = UNSET
    detected_at: datetime = UNSET
    severity: IncidentSeverity | str = UNSET
    status: IncidentStatus | str = UNSET
    assignee_id: UUID | None = UNSET
    tag_ids: list[UUID] = UNSET


@dataclass
class IncidentFilters:
    """Listing filters and sort order."""
    severity: IncidentSeverity | str | None = None
    status: IncidentStatus | str | None = None
    tag_id: UUID | None = None
    assignee_id: UUID | None = None
    search: str | None = None
    sort: str = "created_at"  # created_at | detected_at | severity
    order: str = "desc"


def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Invalid {field} '{value}'. Must be one of: {allowed}", field=field)


def _require_text(value: str | None, field: str, max_length: int | None = None) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} is required", field=field)
    if max_length and len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", field=field)
    return value


# =============================================================================
# INCIDENT ENGINE
# =============================================================================


class IncidentEngine:
    """
    Core engine for the incident lifecycle.

    Guarantees:
    1. A rejected mutation has no side effects
    2. Each status/severity/assignee change yields exactly one activity
    3. resolved_at is non-null iff status is resolved or closed
    """

    def __init__(
        self,
        session: AsyncSession,
        analyzer: AIAnalyzerService | None = None,
    ):
        self._session = session
        self._notifications = NotificationDispatcher(session)
        self._activities = ActivityRecorder(session, self._notifications)
        self._analyzer = analyzer

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_incident_or_raise(self, incident_id: UUID) -> Incident:
        incident = await self._session.get(Incident, incident_id)
        if not incident or incident.is_deleted:
            raise NotFoundError(f"Incident {incident_id} not found")
        return incident

    async def resolve_tags(self, tag_ids: list[UUID]) -> list[Tag]:
        unique_ids = list(dict.fromkeys(tag_ids))
        if not unique_ids:
            return []
        result = await self._session.execute(select(Tag).where(Tag.id.in_(unique_ids)))
        tags = result.scalars().all()
        missing = set(unique_ids) - {t.id for t in tags}
        if missing:
            raise ValidationError(
                f"Unknown tag id(s): {', '.join(sorted(str(m) for m in missing))}",
                field="tag_ids",
            )
        return list(tags)

    async def _check_assignee(self, assignee_id: UUID | None) -> User | None:
        if assignee_id is None:
            return None
        assignee = await self._session.get(User, assignee_id)
        if not assignee:
            raise ValidationError(f"Assignee {assignee_id} does not exist", field="assignee_id")
        return assignee

    async def _assignee_label(self, assignee_id: UUID | None) -> str:
        """Name shown in assignee_change activities."""
        if assignee_id is None:
            return UNASSIGNED
        user = await self._session.get(User, assignee_id)
        return user.name if user else str(assignee_id)

    @staticmethod
    def _apply_status(incident: Incident, new_status: IncidentStatus) -> None:
        """Set status and derive resolved_at."""
        incident.status = new_status
        if new_status in RESOLVED_STATES:
            if incident.resolved_at is None:
                incident.resolved_at = datetime.now(timezone.utc)
        else:
            incident.resolved_at = None

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_incident(
        self,
        input: CreateIncidentInput,
        actor: Principal,
    ) -> Incident:
        """
        Open a new incident.

        Flow:
        1. Authorize (create_incidents)
        2. Validate fields, tags and assignee
        3. Insert the incident with derived resolved_at
        4. Append a single 'created' activity
        5. Notify the assignee (when it isn't the creator)
        """
        require_permission(actor, Permission.CREATE_INCIDENTS)

        title = _require_text(input.title, "title", MAX_TITLE_LENGTH)
        description = _require_text(input.description, "description")
        severity = _parse_enum(IncidentSeverity, input.severity, "severity")
        status = _parse_enum(IncidentStatus, input.status, "status")
        tags = await self.resolve_tags(input.tag_ids or [])
        await self._check_assignee(input.assignee_id)

        incident = Incident(
            title=title,
            description=description,
            summary=input.summary,
            impact_scope=input.impact_scope,
            severity=severity,
            status=IncidentStatus.OPEN,
            detected_at=input.detected_at or datetime.now(timezone.utc),
            resolved_at=None,
            assignee_id=input.assignee_id,
            creator_id=actor.id,
            tags=tags,
        )
        self._apply_status(incident, status)
        if incident.resolved_at and as_utc(incident.detected_at) > incident.resolved_at:
            raise ValidationError("resolved_at must be after detected_at", field="detected_at")
        self._session.add(incident)
        await self._session.flush()

        self._activities.record(incident.id, actor.id, ActivityType.CREATED)
        await self._notifications.notify_incident_created(incident, actor.id)
        await self._session.flush()

        logger.info(f"Incident {incident.id} created by {actor.id} ({severity.value}/{incident.status.value})")
        return incident

    # =========================================================================
    # READ
    # =========================================================================

    async def get_incident(self, incident_id: UUID, actor: Principal) -> Incident:
        require_permission(actor, Permission.VIEW_INCIDENTS)
        return await self._get_incident_or_raise(incident_id)

    async def list_incidents(
        self,
        actor: Principal,
        filters: IncidentFilters | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[Incident], int]:
        """List incidents with filters. Returns (page, total)."""
        require_permission(actor, Permission.VIEW_INCIDENTS)
        filters = filters or IncidentFilters()

        query = select(Incident).where(Incident.deleted_at.is_(None))
        if filters.severity:
            query = query.where(
                Incident.severity == _parse_enum(IncidentSeverity, filters.severity, "severity")
            )
        if filters.status:
            query = query.where(
                Incident.status == _parse_enum(IncidentStatus, filters.status, "status")
            )
        if filters.assignee_id:
            query = query.where(Incident.assignee_id == filters.assignee_id)
        if filters.tag_id:
            query = query.where(Incident.tags.any(Tag.id == filters.tag_id))
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            query = query.where(
                or_(Incident.title.ilike(pattern), Incident.description.ilike(pattern))
            )

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self._session.execute(count_query)).scalar_one()

        if filters.sort == "severity":
            sort_column = case(
                (Incident.severity == IncidentSeverity.CRITICAL, 3),
                (Incident.severity == IncidentSeverity.HIGH, 2),
                (Incident.severity == IncidentSeverity.MEDIUM, 1),
                else_=0,
            )
        elif filters.sort == "detected_at":
            sort_column = Incident.detected_at
        elif filters.sort == "created_at":
            sort_column = Incident.created_at
        else:
            raise ValidationError(f"Invalid sort '{filters.sort}'", field="sort")

        if filters.order == "asc":
            query = query.order_by(sort_column.asc(), Incident.id.asc())
        else:
            query = query.order_by(sort_column.desc(), Incident.id.desc())

        result = await self._session.execute(query.limit(limit).offset(offset))
        return result.scalars().all(), total

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    async def set_status(
        self,
        incident: Incident,
        new_status: IncidentStatus | str,
        actor: Principal,
    ) -> bool:
        """Apply a status transition. Returns False when it was a no-op."""
        require(can_edit_incident(actor, incident), actor, "edit this incident")
        new_status = _parse_enum(IncidentStatus, new_status, "status")

        old_status = incident.status
        if new_status == old_status:
            return False

        self._apply_status(incident, new_status)
        self._activities.record(
            incident.id,
            actor.id,
            ActivityType.STATUS_CHANGE,
            old_value=old_status.value,
            new_value=new_status.value,
        )
        await self._notifications.notify_status_change(incident, old_status, new_status, actor.id)
        logger.info(f"Incident {incident.id} status {old_status.value} -> {new_status.value}")
        return True

    async def set_severity(
        self,
        incident: Incident,
        new_severity: IncidentSeverity | str,
        actor: Principal,
    ) -> bool:
        """Apply a severity change. Returns False when it was a no-op."""
        require(can_edit_incident(actor, incident), actor, "edit this incident")
        new_severity = _parse_enum(IncidentSeverity, new_severity, "severity")

        old_severity = incident.severity
        if new_severity == old_severity:
            return False

        incident.severity = new_severity
        self._activities.record(
            incident.id,
            actor.id,
            ActivityType.SEVERITY_CHANGE,
            old_value=old_severity.value,
            new_value=new_severity.value,
        )
        await self._notifications.notify_severity_change(incident, old_severity, new_severity, actor.id)
        logger.info(f"Incident {incident.id} severity {old_severity.value} -> {new_severity.value}")
        return True

    async def set_assignee(
        self,
        incident: Incident,
        assignee_id: UUID | None,
        actor: Principal,
    ) -> bool:
        """Change (or clear) the assignee. Returns False when it was a no-op."""
        require(can_edit_incident(actor, incident), actor, "edit this incident")

        old_assignee = incident.assignee_id
        if assignee_id == old_assignee:
            return False
        new_assignee = await self._check_assignee(assignee_id)
        old_label = await self._assignee_label(old_assignee)

        incident.assignee_id = assignee_id
        self._activities.record(
            incident.id,
            actor.id,
            ActivityType.ASSIGNEE_CHANGE,
            old_value=old_label,
            new_value=new_assignee.name if new_assignee else UNASSIGNED,
        )
        await self._notifications.notify_assigned(incident, actor.id)
        logger.info(f"Incident {incident.id} assignee {old_assignee} -> {assignee_id}")
        return True

    # =========================================================================
    # UPDATE / ASSIGN / DELETE
    # =========================================================================

    async def update_incident(
        self,
        incident_id: UUID,
        input: UpdateIncidentInput,
        actor: Principal,
    ) -> Incident:
        """
        Partial update.

        Everything is validated before the first attribute is written, so a
        rejected update leaves the incident untouched. Title, description,
        impact scope, detection time and tags change silently; status,
        severity and assignee go through the typed setters above.
        """
        incident = await self._get_incident_or_raise(incident_id)
        require(can_edit_incident(actor, incident), actor, "edit this incident")

        changes: dict[str, Any] = {}
        if input.title is not UNSET:
            changes["title"] = _require_text(input.title, "title", MAX_TITLE_LENGTH)
        if input.description is not UNSET:
            changes["description"] = _require_text(input.description, "description")
        if input.impact_scope is not UNSET:
            changes["impact_scope"] = input.impact_scope
        if input.detected_at is not UNSET:
            if input.detected_at is None:
                raise ValidationError("detected_at cannot be cleared", field="detected_at")
            changes["detected_at"] = input.detected_at

        severity = None
        if input.severity is not UNSET:
            severity = _parse_enum(IncidentSeverity, input.severity, "severity")
        status = None
        if input.status is not UNSET:
            status = _parse_enum(IncidentStatus, input.status, "status")
        tags = None
        if input.tag_ids is not UNSET:
            tags = await self.resolve_tags(input.tag_ids or [])
        if input.assignee_id is not UNSET:
            await self._check_assignee(input.assignee_id)

        # resolved_at must not precede detection
        detected_at = as_utc(changes.get("detected_at", incident.detected_at))
        will_be_resolved = (status or incident.status) in RESOLVED_STATES
        resolved_at = as_utc(incident.resolved_at) if will_be_resolved else None
        if will_be_resolved and resolved_at is None:
            resolved_at = datetime.now(timezone.utc)
        if resolved_at is not None and detected_at > resolved_at:
            raise ValidationError("resolved_at must be after detected_at", field="detected_at")

        for field, value in changes.items():
            setattr(incident, field, value)
        if tags is not None:
            incident.tags = tags

        if status is not None:
            await self.set_status(incident, status, actor)
        if severity is not None:
            await self.set_severity(incident, severity, actor)
        if input.assignee_id is not UNSET:
            await self.set_assignee(incident, input.assignee_id, actor)

        await self._session.flush()
        logger.info(f"Incident {incident.id} updated by {actor.id}")
        return incident

    async def assign_incident(
        self,
        incident_id: UUID,
        assignee_id: UUID | None,
        actor: Principal,
    ) -> Incident:
        incident = await self._get_incident_or_raise(incident_id)
        await self.set_assignee(incident, assignee_id, actor)
        await self._session.flush()
        return incident

    async def delete_incident(self, incident_id: UUID, actor: Principal) -> None:
        """
        Delete an incident. Admin only.

        The incident row is soft-deleted and its activity log is kept as is.
        The post-mortem, its action items and attachment rows are removed.
        """
        require(can_delete_incident(actor), actor, "delete incidents")
        incident = await self._get_incident_or_raise(incident_id)

        post_mortem_ids = select(PostMortem.id).where(PostMortem.incident_id == incident.id)
        await self._session.execute(
            delete(ActionItem).where(ActionItem.post_mortem_id.in_(post_mortem_ids))
        )
        await self._session.execute(delete(PostMortem).where(PostMortem.incident_id == incident.id))
        await self._session.execute(delete(Attachment).where(Attachment.incident_id == incident.id))
        incident.deleted_at = datetime.now(timezone.utc)
        await self._session.flush()

        logger.info(f"Incident {incident_id} deleted by {actor.id}")

    # =========================================================================
    # AI SUMMARY
    # =========================================================================

    async def regenerate_summary(self, incident_id: UUID, actor: Principal) -> Incident:
        """Overwrite incident.summary with a freshly generated one."""
        incident = await self._get_incident_or_raise(incident_id)
        require(can_edit_incident(actor, incident), actor, "edit this incident")

        analyzer = self._analyzer or AIAnalyzerService()
        result = await self._session.execute(
            select(IncidentActivity)
            .where(IncidentActivity.incident_id == incident.id)
            .order_by(IncidentActivity.created_at.asc(), IncidentActivity.id.asc())
        )
        summary = await analyzer.summarize_incident(incident, result.scalars().all())

        incident.summary = summary
        await self._session.flush()
        logger.info(f"Summary regenerated for incident {incident.id}")
        return incident
