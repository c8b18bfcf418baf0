"""SQLAlchemy ORM Models for the Incident Ledger."""

from .base import Base, SoftDeleteMixin, TimestampMixin, UUIDMixin, as_utc, utcnow
from .models import (
    # Enums
    ActionItemPriority,
    ActionItemStatus,
    ActivityType,
    AuditAction,
    IncidentSeverity,
    IncidentStatus,
    NotificationChannel,
    NotificationEvent,
    NotificationStatus,
    PostMortemStatus,
    UserRole,
    # Users & tags
    User,
    Tag,
    incident_tags,
    # Incidents
    Attachment,
    Incident,
    IncidentActivity,
    # Templates
    IncidentTemplate,
    template_tags,
    # Post-mortems
    ActionItem,
    PostMortem,
    # Audit
    AuditLog,
    # Notifications
    NotificationIntent,
    NotificationSetting,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "SoftDeleteMixin",
    "utcnow",
    "as_utc",
    # Enums
    "UserRole",
    "IncidentSeverity",
    "IncidentStatus",
    "ActivityType",
    "PostMortemStatus",
    "ActionItemPriority",
    "ActionItemStatus",
    "AuditAction",
    "NotificationEvent",
    "NotificationChannel",
    "NotificationStatus",
    # Users & tags
    "User",
    "Tag",
    "incident_tags",
    # Incidents
    "Incident",
    "IncidentActivity",
    "Attachment",
    # Templates
    "IncidentTemplate",
    "template_tags",
    # Post-mortems
    "PostMortem",
    "ActionItem",
    # Audit
    "AuditLog",
    # Notifications
    "NotificationSetting",
    "NotificationIntent",
]
