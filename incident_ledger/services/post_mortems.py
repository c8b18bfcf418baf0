"""
Post-mortem workflow.

A post-mortem belongs to exactly one incident and moves one way:
draft -> published. While it is a draft its narrative fields, its
five-whys analysis and its action items may change; once published the
record is frozen and publishing again is a conflict.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import ConflictError, NotFoundError, ValidationError
from ..core.permissions import (
    Permission,
    Principal,
    can_edit_post_mortem,
    is_admin,
    require,
    require_permission,
)
from ..models import (
    ActionItem,
    Incident,
    IncidentActivity,
    PostMortem,
    PostMortemStatus,
)
from ..schemas.post_mortems import FiveWhys
from .ai_analyzer import AIAnalyzerService
from .incident_engine import UNSET

logger = logging.getLogger(__name__)

NARRATIVE_FIELDS = (
    "root_cause",
    "impact_analysis",
    "what_went_well",
    "what_went_wrong",
    "lessons_learned",
)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class CreatePostMortemInput:
    """Input for starting a post-mortem draft."""
    incident_id: UUID
    root_cause: str = ""
    impact_analysis: str = ""
    what_went_well: str = ""
    what_went_wrong: str = ""
    lessons_learned: str = ""
    five_whys: FiveWhys | dict | None = None


@dataclass
class UpdatePostMortemInput:
    """Partial update of a draft. UNSET fields are left alone."""
    root_cause: str = UNSET
    impact_analysis: str = UNSET
    what_went_well: str = UNSET
    what_went_wrong: str = UNSET
    lessons_learned: str = UNSET
    five_whys: FiveWhys | dict | None = UNSET


def validate_five_whys(value: FiveWhys | dict | None) -> dict | None:
    """Normalize the five-whys analysis to its stored form. None means 'not analyzed yet'."""
    if value is None:
        return None
    try:
        return FiveWhys.model_validate(value).model_dump()
    except PydanticValidationError as e:
        raise ValidationError(
            "five_whys must be an object with exactly why1..why5 string fields",
            field="five_whys",
            details={"errors": [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]},
        )


def ensure_draft(post_mortem: PostMortem) -> None:
    """Gate for anything that mutates a post-mortem or the action items it owns."""
    if post_mortem.status != PostMortemStatus.DRAFT:
        raise ConflictError(
            f"Post-mortem {post_mortem.id} is published and can no longer be changed",
            details={"post_mortem_id": str(post_mortem.id), "status": post_mortem.status.value},
        )


# =============================================================================
# POST-MORTEM SERVICE
# =============================================================================


class PostMortemWorkflow:
    """Draft/publish lifecycle of post-mortems."""

    def __init__(
        self,
        session: AsyncSession,
        analyzer: AIAnalyzerService | None = None,
    ):
        self._session = session
        self._analyzer = analyzer

    async def get_post_mortem_or_raise(self, post_mortem_id: UUID) -> PostMortem:
        post_mortem = await self._session.get(PostMortem, post_mortem_id)
        if not post_mortem:
            raise NotFoundError(f"Post-mortem {post_mortem_id} not found")
        return post_mortem

    async def _find_by_incident(self, incident_id: UUID) -> PostMortem | None:
        result = await self._session.execute(
            select(PostMortem).where(PostMortem.incident_id == incident_id)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_post_mortem(
        self,
        input: CreatePostMortemInput,
        actor: Principal,
    ) -> PostMortem:
        """Start the (single) post-mortem draft for an incident."""
        require_permission(actor, Permission.MANAGE_POSTMORTEMS)

        incident = await self._session.get(Incident, input.incident_id)
        if not incident or incident.is_deleted:
            raise NotFoundError(f"Incident {input.incident_id} not found")

        if await self._find_by_incident(incident.id):
            raise ConflictError(
                f"Incident {incident.id} already has a post-mortem",
                details={"incident_id": str(incident.id)},
            )

        five_whys = validate_five_whys(input.five_whys)

        post_mortem = PostMortem(
            incident_id=incident.id,
            author_id=actor.id,
            status=PostMortemStatus.DRAFT,
            root_cause=input.root_cause or "",
            impact_analysis=input.impact_analysis or "",
            what_went_well=input.what_went_well or "",
            what_went_wrong=input.what_went_wrong or "",
            lessons_learned=input.lessons_learned or "",
            five_whys=five_whys,
            ai_root_cause_suggestion=None,
            published_at=None,
        )
        self._session.add(post_mortem)
        await self._session.flush()

        logger.info(f"Post-mortem {post_mortem.id} created for incident {incident.id} by {actor.id}")
        return post_mortem

    # =========================================================================
    # READ
    # =========================================================================

    async def get_post_mortem(self, post_mortem_id: UUID, actor: Principal) -> PostMortem:
        require_permission(actor, Permission.VIEW_POSTMORTEMS)
        return await self.get_post_mortem_or_raise(post_mortem_id)

    async def get_by_incident(self, incident_id: UUID, actor: Principal) -> PostMortem:
        require_permission(actor, Permission.VIEW_POSTMORTEMS)
        post_mortem = await self._find_by_incident(incident_id)
        if not post_mortem:
            raise NotFoundError(f"No post-mortem for incident {incident_id}")
        return post_mortem

    async def list_post_mortems(
        self,
        actor: Principal,
        status: PostMortemStatus | str | None = None,
        author_id: UUID | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[PostMortem], int]:
        require_permission(actor, Permission.VIEW_POSTMORTEMS)

        query = select(PostMortem)
        if status:
            try:
                query = query.where(PostMortem.status == PostMortemStatus(status))
            except ValueError:
                raise ValidationError(f"Invalid status '{status}'", field="status")
        if author_id:
            query = query.where(PostMortem.author_id == author_id)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self._session.execute(count_query)).scalar_one()

        query = query.order_by(PostMortem.created_at.desc(), PostMortem.id).limit(limit).offset(offset)
        result = await self._session.execute(query)
        return result.scalars().all(), total

    # =========================================================================
    # UPDATE / PUBLISH
    # =========================================================================

    async def _load_for_edit(self, post_mortem_id: UUID, actor: Principal, action: str) -> PostMortem:
        require_permission(actor, Permission.MANAGE_POSTMORTEMS)
        post_mortem = await self.get_post_mortem_or_raise(post_mortem_id)
        require(can_edit_post_mortem(actor, post_mortem), actor, action)
        return post_mortem

    async def update_post_mortem(
        self,
        post_mortem_id: UUID,
        input: UpdatePostMortemInput,
        actor: Principal,
    ) -> PostMortem:
        """Edit a draft. Published records are rejected with a conflict and left unchanged."""
        post_mortem = await self._load_for_edit(post_mortem_id, actor, "edit this post-mortem")
        ensure_draft(post_mortem)

        changes: dict[str, Any] = {}
        for field in NARRATIVE_FIELDS:
            value = getattr(input, field)
            if value is not UNSET:
                changes[field] = value or ""
        if input.five_whys is not UNSET:
            changes["five_whys"] = validate_five_whys(input.five_whys)

        for field, value in changes.items():
            setattr(post_mortem, field, value)
        await self._session.flush()

        logger.info(f"Post-mortem {post_mortem.id} updated by {actor.id}: {sorted(changes)}")
        return post_mortem

    async def publish(self, post_mortem_id: UUID, actor: Principal) -> PostMortem:
        """Freeze the post-mortem. Publishing twice is a conflict."""
        post_mortem = await self._load_for_edit(post_mortem_id, actor, "publish this post-mortem")
        if post_mortem.status == PostMortemStatus.PUBLISHED:
            raise ConflictError(
                f"Post-mortem {post_mortem.id} is already published",
                details={"published_at": post_mortem.published_at.isoformat() if post_mortem.published_at else None},
            )

        post_mortem.status = PostMortemStatus.PUBLISHED
        post_mortem.published_at = datetime.now(timezone.utc)
        await self._session.flush()

        logger.info(f"Post-mortem {post_mortem.id} published by {actor.id}")
        return post_mortem

    # =========================================================================
    # AI SUGGESTION
    # =========================================================================

    async def generate_ai_suggestion(self, post_mortem_id: UUID, actor: Principal) -> PostMortem:
        """
        Ask the AI service for likely root causes.

        The text is stored as the advisory suggestion and also replaces the
        draft's root_cause. Nothing is written if the AI call fails.
        """
        post_mortem = await self._load_for_edit(post_mortem_id, actor, "edit this post-mortem")
        ensure_draft(post_mortem)

        incident = await self._session.get(Incident, post_mortem.incident_id)
        if not incident or incident.is_deleted:
            raise NotFoundError(f"Incident {post_mortem.incident_id} not found")
        result = await self._session.execute(
            select(IncidentActivity)
            .where(IncidentActivity.incident_id == incident.id)
            .order_by(IncidentActivity.created_at.asc(), IncidentActivity.id.asc())
        )

        analyzer = self._analyzer or AIAnalyzerService()
        suggestion = await analyzer.suggest_root_cause(incident, post_mortem, result.scalars().all())

        post_mortem.ai_root_cause_suggestion = suggestion
        post_mortem.root_cause = suggestion
        await self._session.flush()

        logger.info(f"AI root cause suggestion stored on post-mortem {post_mortem.id}")
        return post_mortem

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_post_mortem(self, post_mortem_id: UUID, actor: Principal) -> None:
        """Delete a post-mortem and its action items. Admin only."""
        require(is_admin(actor), actor, "delete post-mortems")
        post_mortem = await self.get_post_mortem_or_raise(post_mortem_id)

        await self._session.execute(
            delete(ActionItem).where(ActionItem.post_mortem_id == post_mortem.id)
        )
        await self._session.delete(post_mortem)
        await self._session.flush()

        logger.info(f"Post-mortem {post_mortem_id} deleted by {actor.id}")
