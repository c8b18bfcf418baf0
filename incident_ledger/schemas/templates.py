"""Pydantic schemas for incident templates and dashboard statistics."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from ..models import IncidentSeverity
from .base import LedgerBaseModel
from .incidents import IncidentResponse, TagResponse


# =============================================================================
# TEMPLATES
# =============================================================================


class TemplateRequest(BaseModel):
    """Full template body. Update replaces every field, tags included."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)
    severity: IncidentSeverity = IncidentSeverity.MEDIUM
    impact_scope: str | None = None
    is_public: bool = False
    tag_ids: list[UUID] = Field(default_factory=list)


class TemplateResponse(LedgerBaseModel):
    id: UUID
    name: str
    description: str
    title: str
    content: str
    severity: IncidentSeverity
    impact_scope: str | None = None
    creator_id: UUID
    is_public: bool
    usage_count: int
    tag_ids: list[UUID] = Field(default_factory=list)
    tags: list[TagResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime | None = None


class IncidentFromTemplateRequest(BaseModel):
    assignee_id: UUID | None = None
    detected_at: datetime | None = None


# =============================================================================
# STATS
# =============================================================================


TrendPeriod = Literal["daily", "weekly", "monthly"]


class TrendPointResponse(LedgerBaseModel):
    label: str
    count: int


class DashboardStatsResponse(LedgerBaseModel):
    total_incidents: int
    by_severity: dict[str, int]
    by_status: dict[str, int]
    recent_incidents: list[IncidentResponse]
    trend: list[TrendPointResponse]


class TagStatResponse(LedgerBaseModel):
    tag_id: UUID
    name: str
    color: str
    count: int
    percentage: float
