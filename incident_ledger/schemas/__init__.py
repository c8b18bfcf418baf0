"""Pydantic schemas for API request/response validation."""

from .audit import AuditLogEntry, AuditLogResponse
from .base import (
    ErrorResponse,
    LedgerBaseModel,
    PaginatedResponse,
)
from .incidents import (
    ActivityResponse,
    AssignRequest,
    AttachmentResponse,
    CommentRequest,
    IncidentCreate,
    IncidentListResponse,
    IncidentResponse,
    IncidentUpdate,
    TagRequest,
    TagResponse,
    TimelineEventRequest,
)
from .notifications import NotificationSettingsResponse, NotificationSettingsUpdate
from .post_mortems import (
    ActionItemCreate,
    ActionItemListResponse,
    ActionItemResponse,
    ActionItemUpdate,
    FiveWhys,
    PostMortemCreate,
    PostMortemListResponse,
    PostMortemResponse,
    PostMortemUpdate,
)
from .templates import (
    DashboardStatsResponse,
    IncidentFromTemplateRequest,
    TagStatResponse,
    TemplateRequest,
    TemplateResponse,
    TrendPeriod,
    TrendPointResponse,
)

__all__ = [
    # Base
    "LedgerBaseModel",
    "PaginatedResponse",
    "ErrorResponse",
    # Incidents
    "IncidentCreate",
    "IncidentUpdate",
    "IncidentResponse",
    "IncidentListResponse",
    "AssignRequest",
    "CommentRequest",
    "TimelineEventRequest",
    "ActivityResponse",
    "AttachmentResponse",
    "TagRequest",
    "TagResponse",
    # Post-mortems
    "FiveWhys",
    "PostMortemCreate",
    "PostMortemUpdate",
    "PostMortemResponse",
    "PostMortemListResponse",
    "ActionItemCreate",
    "ActionItemUpdate",
    "ActionItemResponse",
    "ActionItemListResponse",
    # Audit
    "AuditLogEntry",
    "AuditLogResponse",
    # Notifications
    "NotificationSettingsResponse",
    "NotificationSettingsUpdate",
    # Templates
    "TemplateRequest",
    "TemplateResponse",
    "IncidentFromTemplateRequest",
    # Stats
    "TrendPeriod",
    "TrendPointResponse",
    "DashboardStatsResponse",
    "TagStatResponse",
]
