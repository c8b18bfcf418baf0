"""SQLAlchemy ORM Models for the Incident Ledger.

The schema is portable between PostgreSQL (production) and SQLite (tests):
generic UUID and JSON types are used throughout, and the two append-only
logs use integer keys so that (created_at, id) is a total order.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType, SoftDeleteMixin, TimestampMixin, UUIDMixin, metadata, utcnow

# SQLite only autoincrements INTEGER PRIMARY KEY columns
LogId = BigInteger().with_variant(Integer(), "sqlite")


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# ENUMS
# =============================================================================


class UserRole(str, PyEnum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class IncidentSeverity(str, PyEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IncidentStatus(str, PyEnum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ActivityType(str, PyEnum):
    """Closed set of incident activity variants."""
    CREATED = "created"
    COMMENT = "comment"
    STATUS_CHANGE = "status_change"
    SEVERITY_CHANGE = "severity_change"
    ASSIGNEE_CHANGE = "assignee_change"
    RESOLVED = "resolved"
    REOPENED = "reopened"
    # Timeline events
    DETECTED = "detected"
    INVESTIGATION_STARTED = "investigation_started"
    ROOT_CAUSE_IDENTIFIED = "root_cause_identified"
    MITIGATION = "mitigation"
    TIMELINE_RESOLVED = "timeline_resolved"
    OTHER = "other"


class PostMortemStatus(str, PyEnum):
    DRAFT = "draft"
    PUBLISHED = "published"


class ActionItemPriority(str, PyEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActionItemStatus(str, PyEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AuditAction(str, PyEnum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LOGIN = "login"
    LOGOUT = "logout"


class NotificationEvent(str, PyEnum):
    """Events a user can subscribe to."""
    INCIDENT_CREATED = "incident_created"
    ASSIGNED = "assigned"
    COMMENT = "comment"
    STATUS_CHANGE = "status_change"
    SEVERITY_CHANGE = "severity_change"
    RESOLVED = "resolved"
    ESCALATION = "escalation"


class NotificationChannel(str, PyEnum):
    EMAIL = "email"
    SLACK = "slack"


class NotificationStatus(str, PyEnum):
    """Status of notification delivery."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# =============================================================================
# USER MODEL
# =============================================================================


class User(Base, UUIDMixin, TimestampMixin):
    """A user mirrored from the authentication boundary's token claims."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole, "user_role"), default=UserRole.VIEWER, nullable=False
    )


# =============================================================================
# TAG MODEL
# =============================================================================


incident_tags = Table(
    "incident_tags",
    metadata,
    Column("incident_id", ForeignKey("incidents.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Tag(Base, UUIDMixin, TimestampMixin):
    """Label shared across incidents."""

    __tablename__ = "tags"

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    color: Mapped[str] = mapped_column(String(7), default="#6B7280", nullable=False)


# =============================================================================
# INCIDENT MODELS
# =============================================================================


class Incident(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    """An operational incident moving through its lifecycle.

    Deleting an incident only stamps deleted_at, so its activity history
    outlives it.
    """

    __tablename__ = "incidents"

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text)
    impact_scope: Mapped[str | None] = mapped_column(Text)
    severity: Mapped[IncidentSeverity] = mapped_column(
        _enum(IncidentSeverity, "incident_severity"),
        default=IncidentSeverity.MEDIUM,
        nullable=False,
    )
    status: Mapped[IncidentStatus] = mapped_column(
        _enum(IncidentStatus, "incident_status"),
        default=IncidentStatus.OPEN,
        nullable=False,
    )
    detected_at: Mapped[datetime] = mapped_column(nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column()
    assignee_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    creator_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)

    # Relationships
    tags: Mapped[list["Tag"]] = relationship(secondary=incident_tags, lazy="selectin")

    __table_args__ = (
        Index("idx_incidents_status", "status"),
        Index("idx_incidents_severity", "severity"),
        Index("idx_incidents_created", "created_at"),
        Index("idx_incidents_assignee", "assignee_id"),
    )

    @property
    def tag_ids(self) -> list[UUID]:
        return [tag.id for tag in self.tags]


class IncidentActivity(Base):
    """Append-only event in an incident's history."""

    __tablename__ = "incident_activities"

    id: Mapped[int] = mapped_column(LogId, primary_key=True, autoincrement=True)
    incident_id: Mapped[UUID] = mapped_column(ForeignKey("incidents.id"), nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))
    activity_type: Mapped[ActivityType] = mapped_column(
        _enum(ActivityType, "activity_type"), nullable=False
    )
    old_value: Mapped[str | None] = mapped_column(Text)
    new_value: Mapped[str | None] = mapped_column(Text)
    comment: Mapped[str | None] = mapped_column(Text)
    event_time: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_incident_activities_incident", "incident_id", "created_at", "id"),
        Index("idx_incident_activities_created", "created_at"),
    )


class Attachment(Base, UUIDMixin):
    """Metadata for a file stored outside the database."""

    __tablename__ = "attachments"

    incident_id: Mapped[UUID] = mapped_column(
        ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False
    )
    uploader_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (Index("idx_attachments_incident", "incident_id"),)


# =============================================================================
# TEMPLATE MODELS
# =============================================================================


template_tags = Table(
    "template_tags",
    metadata,
    Column("template_id", ForeignKey("incident_templates.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class IncidentTemplate(Base, UUIDMixin, TimestampMixin):
    """Prefilled incident fields. Private to the creator unless public."""

    __tablename__ = "incident_templates"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[IncidentSeverity] = mapped_column(
        _enum(IncidentSeverity, "incident_severity"),
        default=IncidentSeverity.MEDIUM,
        nullable=False,
    )
    impact_scope: Mapped[str | None] = mapped_column(Text)
    creator_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    tags: Mapped[list["Tag"]] = relationship(secondary=template_tags, lazy="selectin")

    __table_args__ = (
        Index("idx_incident_templates_name", "name"),
        Index("idx_incident_templates_creator", "creator_id"),
        Index("idx_incident_templates_public", "is_public"),
    )

    @property
    def tag_ids(self) -> list[UUID]:
        return [tag.id for tag in self.tags]


# =============================================================================
# POST-MORTEM MODELS
# =============================================================================


class PostMortem(Base, UUIDMixin, TimestampMixin):
    """Retrospective for a single incident. Draft until published, then frozen."""

    __tablename__ = "post_mortems"

    incident_id: Mapped[UUID] = mapped_column(
        ForeignKey("incidents.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    author_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    status: Mapped[PostMortemStatus] = mapped_column(
        _enum(PostMortemStatus, "post_mortem_status"),
        default=PostMortemStatus.DRAFT,
        nullable=False,
    )
    root_cause: Mapped[str] = mapped_column(Text, default="", nullable=False)
    impact_analysis: Mapped[str] = mapped_column(Text, default="", nullable=False)
    what_went_well: Mapped[str] = mapped_column(Text, default="", nullable=False)
    what_went_wrong: Mapped[str] = mapped_column(Text, default="", nullable=False)
    lessons_learned: Mapped[str] = mapped_column(Text, default="", nullable=False)
    five_whys: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    ai_root_cause_suggestion: Mapped[str | None] = mapped_column(Text)
    published_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        Index("idx_post_mortems_status", "status"),
        Index("idx_post_mortems_author", "author_id"),
    )

    @property
    def is_published(self) -> bool:
        return self.status == PostMortemStatus.PUBLISHED


class ActionItem(Base, UUIDMixin, TimestampMixin):
    """Follow-up task owned by a post-mortem."""

    __tablename__ = "action_items"

    post_mortem_id: Mapped[UUID] = mapped_column(
        ForeignKey("post_mortems.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    assignee_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    priority: Mapped[ActionItemPriority] = mapped_column(
        _enum(ActionItemPriority, "action_item_priority"),
        default=ActionItemPriority.MEDIUM,
        nullable=False,
    )
    status: Mapped[ActionItemStatus] = mapped_column(
        _enum(ActionItemStatus, "action_item_status"),
        default=ActionItemStatus.PENDING,
        nullable=False,
    )
    due_date: Mapped[datetime | None] = mapped_column()
    related_links: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        Index("idx_action_items_post_mortem", "post_mortem_id"),
        Index("idx_action_items_assignee", "assignee_id"),
        Index("idx_action_items_status", "status"),
    )


# =============================================================================
# AUDIT MODEL
# =============================================================================


class AuditLog(Base):
    """Append-only, admin-readable request log."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(LogId, primary_key=True, autoincrement=True)
    user_id: Mapped[UUID | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    action: Mapped[AuditAction] = mapped_column(
        _enum(AuditAction, "audit_action"), nullable=False
    )
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(64))
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    path: Mapped[str] = mapped_column(String(500), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)
    details: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_audit_logs_user", "user_id", "created_at"),
        Index("idx_audit_logs_action", "action", "created_at"),
        Index("idx_audit_logs_resource", "resource_type", "created_at"),
        Index("idx_audit_logs_created", "created_at"),
    )


# =============================================================================
# NOTIFICATION MODELS
# =============================================================================


class NotificationSetting(Base, TimestampMixin):
    """Per-user delivery preferences. Created lazily with defaults."""

    __tablename__ = "notification_settings"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    email_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    slack_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    slack_webhook: Mapped[str | None] = mapped_column(String(500))
    notify_on_incident_created: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_on_assigned: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_on_comment: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_on_status_change: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_on_severity_change: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_on_resolved: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notify_on_escalation: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def wants(self, event: NotificationEvent) -> bool:
        return bool(getattr(self, f"notify_on_{event.value}"))

    def enabled_channels(self) -> list[NotificationChannel]:
        channels = []
        if self.email_enabled:
            channels.append(NotificationChannel.EMAIL)
        if self.slack_enabled and self.slack_webhook:
            channels.append(NotificationChannel.SLACK)
        return channels


class NotificationIntent(Base, UUIDMixin):
    """A notification waiting for an external delivery worker."""

    __tablename__ = "notification_intents"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    incident_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("incidents.id", ondelete="SET NULL")
    )
    channel: Mapped[NotificationChannel] = mapped_column(
        _enum(NotificationChannel, "notification_channel"), nullable=False
    )
    event_type: Mapped[NotificationEvent] = mapped_column(
        _enum(NotificationEvent, "notification_event"), nullable=False
    )
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    status: Mapped[NotificationStatus] = mapped_column(
        _enum(NotificationStatus, "notification_status"),
        default=NotificationStatus.PENDING,
        nullable=False,
    )
    sent_at: Mapped[datetime | None] = mapped_column()
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_notification_intents_user", "user_id", "created_at"),
        Index("idx_notification_intents_status", "status"),
    )
