"""Pydantic schemas for notification settings."""

from uuid import UUID

from pydantic import BaseModel, Field

from .base import LedgerBaseModel


class NotificationSettingsResponse(LedgerBaseModel):
    user_id: UUID
    email_enabled: bool
    slack_enabled: bool
    slack_webhook: str | None = None
    notify_on_incident_created: bool
    notify_on_assigned: bool
    notify_on_comment: bool
    notify_on_status_change: bool
    notify_on_severity_change: bool
    notify_on_resolved: bool
    notify_on_escalation: bool


class NotificationSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their value."""

    email_enabled: bool | None = None
    slack_enabled: bool | None = None
    slack_webhook: str | None = Field(default=None, max_length=500)
    notify_on_incident_created: bool | None = None
    notify_on_assigned: bool | None = None
    notify_on_comment: bool | None = None
    notify_on_status_change: bool | None = None
    notify_on_severity_change: bool | None = None
    notify_on_resolved: bool | None = None
    notify_on_escalation: bool | None = None
