"""Action item tracker: follow-up tasks owned by a post-mortem."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, ValidationError
from ..core.permissions import Permission, Principal, is_admin, require, require_permission
from ..models import (
    ActionItem,
    ActionItemPriority,
    ActionItemStatus,
    PostMortem,
    User,
)
from .post_mortems import ensure_draft

logger = logging.getLogger(__name__)


@dataclass
class ActionItemInput:
    """Every editable field of an action item. Used for create and full replace."""
    title: str
    description: str = ""
    assignee_id: UUID | None = None
    priority: ActionItemPriority | str = ActionItemPriority.MEDIUM
    status: ActionItemStatus | str = ActionItemStatus.PENDING
    due_date: datetime | None = None
    related_links: list[str] = field(default_factory=list)


class ActionItemTracker:
    """CRUD for action items, gated by the owning post-mortem's draft state."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get_post_mortem_or_raise(self, post_mortem_id: UUID) -> PostMortem:
        post_mortem = await self._session.get(PostMortem, post_mortem_id)
        if not post_mortem:
            raise NotFoundError(f"Post-mortem {post_mortem_id} not found")
        return post_mortem

    async def _get_item_or_raise(self, action_item_id: UUID) -> ActionItem:
        item = await self._session.get(ActionItem, action_item_id)
        if not item:
            raise NotFoundError(f"Action item {action_item_id} not found")
        return item

    async def _validate(self, data: ActionItemInput) -> tuple[ActionItemPriority, ActionItemStatus]:
        if not (data.title or "").strip():
            raise ValidationError("title is required", field="title")
        try:
            priority = ActionItemPriority(data.priority)
        except ValueError:
            raise ValidationError(
                f"Invalid priority '{data.priority}'. Must be one of: high, medium, low",
                field="priority",
            )
        try:
            status = ActionItemStatus(data.status)
        except ValueError:
            raise ValidationError(
                f"Invalid status '{data.status}'. Must be one of: pending, in_progress, completed",
                field="status",
            )
        if not all(isinstance(link, str) for link in data.related_links or []):
            raise ValidationError("related_links must be a list of strings", field="related_links")
        if data.assignee_id and not await self._session.get(User, data.assignee_id):
            raise ValidationError(f"Assignee {data.assignee_id} does not exist", field="assignee_id")
        return priority, status

    @staticmethod
    def _apply_status(item: ActionItem, new_status: ActionItemStatus) -> None:
        """Stamp completed_at on entering completed, clear it on leaving."""
        if new_status == ActionItemStatus.COMPLETED:
            if item.status != ActionItemStatus.COMPLETED or item.completed_at is None:
                item.completed_at = datetime.now(timezone.utc)
        else:
            item.completed_at = None
        item.status = new_status

    # =========================================================================
    # CREATE / READ
    # =========================================================================

    async def create_action_item(
        self,
        post_mortem_id: UUID,
        data: ActionItemInput,
        actor: Principal,
    ) -> ActionItem:
        require_permission(actor, Permission.MANAGE_POSTMORTEMS)
        post_mortem = await self._get_post_mortem_or_raise(post_mortem_id)
        priority, status = await self._validate(data)

        item = ActionItem(
            post_mortem_id=post_mortem.id,
            title=data.title.strip(),
            description=data.description or "",
            assignee_id=data.assignee_id,
            priority=priority,
            status=ActionItemStatus.PENDING,
            due_date=data.due_date,
            related_links=list(data.related_links or []),
            completed_at=None,
        )
        self._apply_status(item, status)
        self._session.add(item)
        await self._session.flush()

        logger.info(f"Action item {item.id} created on post-mortem {post_mortem.id}")
        return item

    async def get_action_item(self, action_item_id: UUID, actor: Principal) -> ActionItem:
        require_permission(actor, Permission.VIEW_POSTMORTEMS)
        return await self._get_item_or_raise(action_item_id)

    async def list_for_post_mortem(
        self,
        post_mortem_id: UUID,
        actor: Principal,
    ) -> Sequence[ActionItem]:
        require_permission(actor, Permission.VIEW_POSTMORTEMS)
        await self._get_post_mortem_or_raise(post_mortem_id)
        result = await self._session.execute(
            select(ActionItem)
            .where(ActionItem.post_mortem_id == post_mortem_id)
            .order_by(ActionItem.created_at.asc(), ActionItem.id)
        )
        return result.scalars().all()

    async def list_action_items(
        self,
        actor: Principal,
        status: ActionItemStatus | str | None = None,
        priority: ActionItemPriority | str | None = None,
        assignee_id: UUID | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[ActionItem], int]:
        require_permission(actor, Permission.VIEW_POSTMORTEMS)

        query = select(ActionItem)
        try:
            if status:
                query = query.where(ActionItem.status == ActionItemStatus(status))
            if priority:
                query = query.where(ActionItem.priority == ActionItemPriority(priority))
        except ValueError as e:
            raise ValidationError(str(e))
        if assignee_id:
            query = query.where(ActionItem.assignee_id == assignee_id)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self._session.execute(count_query)).scalar_one()

        query = query.order_by(ActionItem.due_date.asc().nulls_last(), ActionItem.created_at.desc())
        result = await self._session.execute(query.limit(limit).offset(offset))
        return result.scalars().all(), total

    # =========================================================================
    # UPDATE / DELETE
    # =========================================================================

    async def update_action_item(
        self,
        action_item_id: UUID,
        data: ActionItemInput,
        actor: Principal,
    ) -> ActionItem:
        """Replace every editable field. Only while the post-mortem is a draft."""
        require_permission(actor, Permission.MANAGE_POSTMORTEMS)
        item = await self._get_item_or_raise(action_item_id)
        ensure_draft(await self._get_post_mortem_or_raise(item.post_mortem_id))
        priority, status = await self._validate(data)

        item.title = data.title.strip()
        item.description = data.description or ""
        item.assignee_id = data.assignee_id
        item.priority = priority
        item.due_date = data.due_date
        item.related_links = list(data.related_links or [])
        self._apply_status(item, status)
        await self._session.flush()

        logger.info(f"Action item {item.id} updated by {actor.id} (status={status.value})")
        return item

    async def delete_action_item(self, action_item_id: UUID, actor: Principal) -> None:
        """Admin only, and only while the post-mortem is a draft."""
        require(is_admin(actor), actor, "delete action items")
        item = await self._get_item_or_raise(action_item_id)
        ensure_draft(await self._get_post_mortem_or_raise(item.post_mortem_id))

        await self._session.delete(item)
        await self._session.flush()
        logger.info(f"Action item {action_item_id} deleted by {actor.id}")
