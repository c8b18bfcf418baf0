"""Business logic services for the Incident Ledger."""

from .action_items import ActionItemInput, ActionItemTracker
from .activity import ActivityRecorder, describe_activity
from .ai_analyzer import AIAnalyzerService
from .attachments import AttachmentService, LocalFileStorage
from .audit import AuditService, classify_request
from .incident_engine import (
    UNSET,
    CreateIncidentInput,
    IncidentEngine,
    IncidentFilters,
    UpdateIncidentInput,
)
from .notifications import NotificationDispatcher, NotificationSettingsInput
from .post_mortems import (
    CreatePostMortemInput,
    PostMortemWorkflow,
    UpdatePostMortemInput,
)
from .stats import DashboardStats, StatsService, TagStat, TrendPoint, build_trend
from .tags import TagService
from .templates import TemplateInput, TemplateService

__all__ = [
    # Incidents
    "IncidentEngine",
    "CreateIncidentInput",
    "UpdateIncidentInput",
    "IncidentFilters",
    "UNSET",
    "ActivityRecorder",
    "describe_activity",
    "AttachmentService",
    "LocalFileStorage",
    "TemplateService",
    "TemplateInput",
    # Post-mortems
    "PostMortemWorkflow",
    "CreatePostMortemInput",
    "UpdatePostMortemInput",
    "ActionItemTracker",
    "ActionItemInput",
    # Cross-cutting
    "AuditService",
    "classify_request",
    "NotificationDispatcher",
    "NotificationSettingsInput",
    "AIAnalyzerService",
    "TagService",
    "StatsService",
    "DashboardStats",
    "TagStat",
    "TrendPoint",
    "build_trend",
]
