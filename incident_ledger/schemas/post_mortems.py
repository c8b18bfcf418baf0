"""Pydantic schemas for post-mortems and action items."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..models import ActionItemPriority, ActionItemStatus, PostMortemStatus
from .base import LedgerBaseModel, PaginatedResponse


# =============================================================================
# FIVE WHYS
# =============================================================================


class FiveWhys(BaseModel):
    """Structured five-whys analysis. Exactly why1..why5; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    why1: str = ""
    why2: str = ""
    why3: str = ""
    why4: str = ""
    why5: str = ""


# =============================================================================
# POST-MORTEM SCHEMAS
# =============================================================================


class PostMortemCreate(BaseModel):
    """Request to start a post-mortem draft."""

    incident_id: UUID
    root_cause: str = ""
    impact_analysis: str = ""
    what_went_well: str = ""
    what_went_wrong: str = ""
    lessons_learned: str = ""
    five_whys: FiveWhys | None = None


class PostMortemUpdate(BaseModel):
    """Partial update of a draft. Omitted fields are left unchanged."""

    root_cause: str | None = None
    impact_analysis: str | None = None
    what_went_well: str | None = None
    what_went_wrong: str | None = None
    lessons_learned: str | None = None
    five_whys: FiveWhys | None = None


class PostMortemResponse(LedgerBaseModel):
    id: UUID
    incident_id: UUID
    author_id: UUID
    status: PostMortemStatus
    root_cause: str
    impact_analysis: str
    what_went_well: str
    what_went_wrong: str
    lessons_learned: str
    five_whys: FiveWhys | None = None
    ai_root_cause_suggestion: str | None = None
    published_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None


class PostMortemListResponse(PaginatedResponse):
    items: list[PostMortemResponse]


# =============================================================================
# ACTION ITEM SCHEMAS
# =============================================================================


class ActionItemCreate(BaseModel):
    post_mortem_id: UUID
    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""
    assignee_id: UUID | None = None
    priority: ActionItemPriority = ActionItemPriority.MEDIUM
    status: ActionItemStatus = ActionItemStatus.PENDING
    due_date: datetime | None = None
    related_links: list[str] = Field(default_factory=list)


class ActionItemUpdate(BaseModel):
    """Full replacement of an action item's editable fields."""

    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""
    assignee_id: UUID | None = None
    priority: ActionItemPriority = ActionItemPriority.MEDIUM
    status: ActionItemStatus = ActionItemStatus.PENDING
    due_date: datetime | None = None
    related_links: list[str] = Field(default_factory=list)


class ActionItemResponse(LedgerBaseModel):
    id: UUID
    post_mortem_id: UUID
    title: str
    description: str
    assignee_id: UUID | None = None
    priority: ActionItemPriority
    status: ActionItemStatus
    due_date: datetime | None = None
    related_links: list[str]
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None


class ActionItemListResponse(PaginatedResponse):
    items: list[ActionItemResponse]
