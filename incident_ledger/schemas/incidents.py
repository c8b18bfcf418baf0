"""Pydantic schemas for incidents, their activity log, tags and attachments."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from ..models import ActivityType, IncidentSeverity, IncidentStatus
from .base import LedgerBaseModel, PaginatedResponse

TimelineEventType = Literal[
    "detected",
    "investigation_started",
    "root_cause_identified",
    "mitigation",
    "timeline_resolved",
    "other",
]


# =============================================================================
# TAGS
# =============================================================================


class TagRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class TagResponse(LedgerBaseModel):
    id: UUID
    name: str
    color: str


# =============================================================================
# INCIDENTS
# =============================================================================


class IncidentCreate(BaseModel):
    """Request to open a new incident."""

    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(..., min_length=1)
    impact_scope: str | None = None
    severity: IncidentSeverity = IncidentSeverity.MEDIUM
    status: IncidentStatus = IncidentStatus.OPEN
    detected_at: datetime | None = None
    assignee_id: UUID | None = None
    tag_ids: list[UUID] = Field(default_factory=list)


class IncidentUpdate(BaseModel):
    """Partial update. Only fields present in the request body are applied."""

    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = Field(default=None, min_length=1)
    impact_scope: str | None = None
    detected_at: datetime | None = None
    severity: IncidentSeverity | None = None
    status: IncidentStatus | None = None
    assignee_id: UUID | None = None
    tag_ids: list[UUID] | None = None


class AssignRequest(BaseModel):
    assignee_id: UUID | None = Field(
        default=None,
        description="User to assign; null clears the assignee",
    )


class IncidentResponse(LedgerBaseModel):
    id: UUID
    title: str
    description: str
    summary: str | None = None
    impact_scope: str | None = None
    severity: IncidentSeverity
    status: IncidentStatus
    detected_at: datetime
    resolved_at: datetime | None = None
    assignee_id: UUID | None = None
    creator_id: UUID
    tag_ids: list[UUID] = Field(default_factory=list)
    tags: list[TagResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime | None = None


class IncidentListResponse(PaginatedResponse):
    items: list[IncidentResponse]


# =============================================================================
# ACTIVITIES
# =============================================================================


class CommentRequest(BaseModel):
    comment: str = Field(..., min_length=1, max_length=5000)


class TimelineEventRequest(BaseModel):
    event_type: TimelineEventType
    event_time: datetime
    description: str = Field(..., min_length=1, max_length=5000)


class ActivityResponse(LedgerBaseModel):
    id: int
    incident_id: UUID
    user_id: UUID | None = None
    activity_type: ActivityType
    old_value: str | None = None
    new_value: str | None = None
    comment: str | None = None
    event_time: datetime | None = None
    created_at: datetime
    description: str


# =============================================================================
# ATTACHMENTS
# =============================================================================


class AttachmentResponse(LedgerBaseModel):
    id: UUID
    incident_id: UUID
    uploader_id: UUID
    file_name: str
    file_size: int
    mime_type: str
    created_at: datetime
