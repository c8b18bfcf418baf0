"""Notification dispatcher.

Works out who should hear about an incident event and records one
NotificationIntent per recipient and enabled channel. Intents are added to
the caller's session, so they commit (or roll back) with the mutation that
produced them. Delivery is handled by an external worker.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    Incident,
    IncidentSeverity,
    IncidentStatus,
    NotificationEvent,
    NotificationIntent,
    NotificationSetting,
    NotificationStatus,
)

logger = logging.getLogger(__name__)

SEVERITY_RANK = {
    IncidentSeverity.LOW: 0,
    IncidentSeverity.MEDIUM: 1,
    IncidentSeverity.HIGH: 2,
    IncidentSeverity.CRITICAL: 3,
}

SETTING_FIELDS = (
    "email_enabled",
    "slack_enabled",
    "slack_webhook",
    "notify_on_incident_created",
    "notify_on_assigned",
    "notify_on_comment",
    "notify_on_status_change",
    "notify_on_severity_change",
    "notify_on_resolved",
    "notify_on_escalation",
)


@dataclass
class NotificationSettingsInput:
    """Partial update of a user's notification settings. None leaves a field alone."""
    email_enabled: bool | None = None
    slack_enabled: bool | None = None
    slack_webhook: str | None = None
    notify_on_incident_created: bool | None = None
    notify_on_assigned: bool | None = None
    notify_on_comment: bool | None = None
    notify_on_status_change: bool | None = None
    notify_on_severity_change: bool | None = None
    notify_on_resolved: bool | None = None
    notify_on_escalation: bool | None = None


def default_setting(user_id: UUID) -> NotificationSetting:
    """Email on, Slack off, every event on."""
    return NotificationSetting(
        user_id=user_id,
        email_enabled=True,
        slack_enabled=False,
        slack_webhook=None,
        notify_on_incident_created=True,
        notify_on_assigned=True,
        notify_on_comment=True,
        notify_on_status_change=True,
        notify_on_severity_change=True,
        notify_on_resolved=True,
        notify_on_escalation=True,
    )


def interested_users(incident: Incident) -> list[UUID]:
    """Creator plus assignee, deduplicated, creator first."""
    users = [incident.creator_id]
    if incident.assignee_id and incident.assignee_id != incident.creator_id:
        users.append(incident.assignee_id)
    return users


def is_escalation(old: IncidentSeverity, new: IncidentSeverity) -> bool:
    return SEVERITY_RANK[new] > SEVERITY_RANK[old]


class NotificationDispatcher:
    """Computes recipients per event and persists delivery intents."""

    def __init__(self, session: AsyncSession):
        self._session = session

    # =========================================================================
    # SETTINGS
    # =========================================================================

    async def _find_setting(self, user_id: UUID) -> NotificationSetting | None:
        result = await self._session.execute(
            select(NotificationSetting).where(NotificationSetting.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_settings(self, user_id: UUID) -> NotificationSetting:
        """Return the user's settings, creating the default row on first access."""
        setting = await self._find_setting(user_id)
        if setting is None:
            setting = default_setting(user_id)
            self._session.add(setting)
            await self._session.flush()
            logger.info(f"Created default notification settings for user {user_id}")
        return setting

    async def update_settings(
        self,
        user_id: UUID,
        data: NotificationSettingsInput,
    ) -> NotificationSetting:
        setting = await self.get_settings(user_id)
        for field in SETTING_FIELDS:
            value = getattr(data, field)
            if value is not None:
                setattr(setting, field, value)
        # An empty webhook string clears it
        if data.slack_webhook == "":
            setting.slack_webhook = None
        await self._session.flush()
        logger.info(f"Updated notification settings for user {user_id}")
        return setting

    # =========================================================================
    # EMISSION
    # =========================================================================

    async def _emit(
        self,
        event: NotificationEvent,
        recipients: Iterable[UUID],
        incident: Incident,
        subject: str,
        payload: dict,
    ) -> list[NotificationIntent]:
        intents: list[NotificationIntent] = []
        seen: set[UUID] = set()

        for user_id in recipients:
            if user_id is None or user_id in seen:
                continue
            seen.add(user_id)

            setting = await self._find_setting(user_id) or default_setting(user_id)
            if not setting.wants(event):
                continue

            for channel in setting.enabled_channels():
                intent = NotificationIntent(
                    user_id=user_id,
                    incident_id=incident.id,
                    channel=channel,
                    event_type=event,
                    subject=subject,
                    payload={"incident_id": str(incident.id), "title": incident.title, **payload},
                    status=NotificationStatus.PENDING,
                )
                self._session.add(intent)
                intents.append(intent)

        if intents:
            logger.info(
                f"Queued {len(intents)} {event.value} notification(s) for incident {incident.id}"
            )
        return intents

    async def notify_incident_created(
        self,
        incident: Incident,
        creator_id: UUID,
    ) -> list[NotificationIntent]:
        if not incident.assignee_id or incident.assignee_id == creator_id:
            return []
        return await self._emit(
            NotificationEvent.INCIDENT_CREATED,
            [incident.assignee_id],
            incident,
            f"[{incident.severity.value.upper()}] New incident assigned to you: {incident.title}",
            {"severity": incident.severity.value, "created_by": str(creator_id)},
        )

    async def notify_assigned(
        self,
        incident: Incident,
        assigned_by: UUID,
    ) -> list[NotificationIntent]:
        if not incident.assignee_id:
            return []
        return await self._emit(
            NotificationEvent.ASSIGNED,
            [incident.assignee_id],
            incident,
            f"You have been assigned to incident: {incident.title}",
            {"assigned_by": str(assigned_by)},
        )

    async def notify_comment(
        self,
        incident: Incident,
        commenter_id: UUID,
        comment: str,
    ) -> list[NotificationIntent]:
        recipients = [
            user_id
            for user_id in (incident.assignee_id, incident.creator_id)
            if user_id and user_id != commenter_id
        ]
        return await self._emit(
            NotificationEvent.COMMENT,
            recipients,
            incident,
            f"New comment on incident: {incident.title}",
            {"comment": comment[:500], "commented_by": str(commenter_id)},
        )

    async def notify_status_change(
        self,
        incident: Incident,
        old_status: IncidentStatus,
        new_status: IncidentStatus,
        changed_by: UUID,
    ) -> list[NotificationIntent]:
        recipients = interested_users(incident)
        intents = await self._emit(
            NotificationEvent.STATUS_CHANGE,
            recipients,
            incident,
            f"Incident status changed to {new_status.value}: {incident.title}",
            {"old_status": old_status.value, "new_status": new_status.value, "changed_by": str(changed_by)},
        )
        if new_status == IncidentStatus.RESOLVED:
            intents += await self._emit(
                NotificationEvent.RESOLVED,
                recipients,
                incident,
                f"Incident resolved: {incident.title}",
                {"resolved_by": str(changed_by)},
            )
        return intents

    async def notify_severity_change(
        self,
        incident: Incident,
        old_severity: IncidentSeverity,
        new_severity: IncidentSeverity,
        changed_by: UUID,
    ) -> list[NotificationIntent]:
        recipients = interested_users(incident)
        payload = {
            "old_severity": old_severity.value,
            "new_severity": new_severity.value,
            "changed_by": str(changed_by),
        }
        intents = await self._emit(
            NotificationEvent.SEVERITY_CHANGE,
            recipients,
            incident,
            f"Incident severity changed to {new_severity.value}: {incident.title}",
            payload,
        )
        if is_escalation(old_severity, new_severity):
            intents += await self._emit(
                NotificationEvent.ESCALATION,
                recipients,
                incident,
                f"Incident escalated to {new_severity.value}: {incident.title}",
                payload,
            )
        return intents

    async def pending_intents(self, user_id: UUID | None = None) -> Sequence[NotificationIntent]:
        """Intents not yet picked up by the delivery worker, oldest first."""
        query = select(NotificationIntent).where(
            NotificationIntent.status == NotificationStatus.PENDING
        )
        if user_id:
            query = query.where(NotificationIntent.user_id == user_id)
        result = await self._session.execute(query.order_by(NotificationIntent.created_at))
        return result.scalars().all()
