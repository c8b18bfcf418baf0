"""Tag catalog: labels shared across incidents."""

import logging
import re
from typing import Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import ConflictError, NotFoundError, ValidationError
from ..core.permissions import Permission, Principal, require_permission
from ..models import Tag, incident_tags, template_tags

logger = logging.getLogger(__name__)

COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
DEFAULT_COLOR = "#6B7280"


def _validate(name: str | None, color: str | None) -> tuple[str, str]:
    name = (name or "").strip()
    if not name or len(name) > 50:
        raise ValidationError("name must be 1-50 characters", field="name")
    color = color or DEFAULT_COLOR
    if not COLOR_PATTERN.match(color):
        raise ValidationError("color must be a hex value like #FF5733", field="color")
    return name, color.upper()


class TagService:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get_or_raise(self, tag_id: UUID) -> Tag:
        tag = await self._session.get(Tag, tag_id)
        if not tag:
            raise NotFoundError(f"Tag {tag_id} not found")
        return tag

    async def _ensure_unique(self, name: str, exclude_id: UUID | None = None) -> None:
        query = select(Tag).where(Tag.name == name)
        if exclude_id:
            query = query.where(Tag.id != exclude_id)
        if (await self._session.execute(query)).scalar_one_or_none():
            raise ConflictError(f"Tag '{name}' already exists", details={"name": name})

    async def list_tags(self, actor: Principal) -> Sequence[Tag]:
        require_permission(actor, Permission.VIEW_TAGS)
        result = await self._session.execute(select(Tag).order_by(Tag.name))
        return result.scalars().all()

    async def create_tag(self, name: str, color: str | None, actor: Principal) -> Tag:
        require_permission(actor, Permission.MANAGE_TAGS)
        name, color = _validate(name, color)
        await self._ensure_unique(name)

        tag = Tag(name=name, color=color)
        self._session.add(tag)
        await self._session.flush()
        logger.info(f"Tag '{name}' created by {actor.id}")
        return tag

    async def update_tag(self, tag_id: UUID, name: str, color: str | None, actor: Principal) -> Tag:
        require_permission(actor, Permission.MANAGE_TAGS)
        tag = await self._get_or_raise(tag_id)
        name, color = _validate(name, color or tag.color)
        await self._ensure_unique(name, exclude_id=tag.id)

        tag.name = name
        tag.color = color
        await self._session.flush()
        return tag

    async def delete_tag(self, tag_id: UUID, actor: Principal) -> None:
        require_permission(actor, Permission.MANAGE_TAGS)
        tag = await self._get_or_raise(tag_id)
        await self._session.execute(delete(incident_tags).where(incident_tags.c.tag_id == tag.id))
        await self._session.execute(delete(template_tags).where(template_tags.c.tag_id == tag.id))
        await self._session.delete(tag)
        await self._session.flush()
        logger.info(f"Tag {tag_id} deleted by {actor.id}")
