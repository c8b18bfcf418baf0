"""
Incident templates: reusable prefilled incidents.

A template is private to its creator unless marked public. Only the
creator or an admin may change or remove it. Opening an incident from a
template goes through the regular incident engine, so the usual
'created' activity and notifications are produced.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, ValidationError
from ..core.permissions import Permission, Principal, is_admin, require, require_permission
from ..models import Incident, IncidentSeverity, IncidentTemplate
from .incident_engine import CreateIncidentInput, IncidentEngine

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200
MAX_TITLE_LENGTH = 500


@dataclass
class TemplateInput:
    """Full set of template fields. Used for both create and replace."""
    name: str
    title: str
    content: str
    description: str = ""
    severity: IncidentSeverity | str = IncidentSeverity.MEDIUM
    impact_scope: str | None = None
    is_public: bool = False
    tag_ids: list[UUID] | None = None


def _text(value: str | None, field: str, max_length: int | None = None) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} is required", field=field)
    if max_length and len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", field=field)
    return value


def _severity(value: IncidentSeverity | str) -> IncidentSeverity:
    try:
        return IncidentSeverity(value)
    except ValueError:
        raise ValidationError(f"Invalid severity: {value}", field="severity")


class TemplateService:
    def __init__(self, session: AsyncSession, engine: IncidentEngine | None = None):
        self._session = session
        self._engine = engine or IncidentEngine(session)

    def _visible(self, template: IncidentTemplate, actor: Principal) -> bool:
        return template.is_public or template.creator_id == actor.id or is_admin(actor)

    async def _get_or_raise(self, template_id: UUID, actor: Principal) -> IncidentTemplate:
        template = await self._session.get(IncidentTemplate, template_id)
        # Private templates of other users are reported as missing
        if not template or not self._visible(template, actor):
            raise NotFoundError(f"Template {template_id} not found")
        return template

    async def _apply(self, template: IncidentTemplate, input: TemplateInput) -> None:
        template.name = _text(input.name, "name", MAX_NAME_LENGTH)
        template.title = _text(input.title, "title", MAX_TITLE_LENGTH)
        template.content = _text(input.content, "content")
        template.description = input.description or ""
        template.severity = _severity(input.severity)
        template.impact_scope = input.impact_scope
        template.is_public = input.is_public
        template.tags = await self._engine.resolve_tags(input.tag_ids or [])

    async def create_template(self, input: TemplateInput, actor: Principal) -> IncidentTemplate:
        require_permission(actor, Permission.MANAGE_TEMPLATES)

        template = IncidentTemplate(creator_id=actor.id, usage_count=0)
        await self._apply(template, input)
        self._session.add(template)
        await self._session.flush()

        logger.info(f"Template {template.id} '{template.name}' created by {actor.id}")
        return template

    async def list_templates(self, actor: Principal) -> Sequence[IncidentTemplate]:
        """The actor's own templates plus every public one, most used first."""
        require_permission(actor, Permission.VIEW_TEMPLATES)
        result = await self._session.execute(
            select(IncidentTemplate)
            .where(or_(IncidentTemplate.creator_id == actor.id, IncidentTemplate.is_public.is_(True)))
            .order_by(IncidentTemplate.usage_count.desc(), IncidentTemplate.created_at.desc())
        )
        return result.scalars().all()

    async def get_template(self, template_id: UUID, actor: Principal) -> IncidentTemplate:
        require_permission(actor, Permission.VIEW_TEMPLATES)
        return await self._get_or_raise(template_id, actor)

    async def update_template(
        self,
        template_id: UUID,
        input: TemplateInput,
        actor: Principal,
    ) -> IncidentTemplate:
        require_permission(actor, Permission.MANAGE_TEMPLATES)
        template = await self._get_or_raise(template_id, actor)
        require(template.creator_id == actor.id or is_admin(actor), actor, "edit this template")

        await self._apply(template, input)
        await self._session.flush()
        return template

    async def delete_template(self, template_id: UUID, actor: Principal) -> None:
        require_permission(actor, Permission.MANAGE_TEMPLATES)
        template = await self._get_or_raise(template_id, actor)
        require(template.creator_id == actor.id or is_admin(actor), actor, "delete this template")

        await self._session.delete(template)
        await self._session.flush()
        logger.info(f"Template {template_id} deleted by {actor.id}")

    async def create_incident_from_template(
        self,
        template_id: UUID,
        actor: Principal,
        assignee_id: UUID | None = None,
        detected_at: datetime | None = None,
    ) -> Incident:
        """
        Open an incident prefilled from a template.

        The incident takes the template's title, content (as description),
        severity, impact scope and tags, and always starts open. The
        template's usage_count goes up by one.
        """
        require_permission(actor, Permission.VIEW_TEMPLATES)
        template = await self._get_or_raise(template_id, actor)

        incident = await self._engine.create_incident(
            CreateIncidentInput(
                title=template.title,
                description=template.content,
                severity=template.severity,
                impact_scope=template.impact_scope,
                detected_at=detected_at,
                assignee_id=assignee_id,
                tag_ids=template.tag_ids,
            ),
            actor,
        )
        template.usage_count = template.usage_count + 1
        await self._session.flush()

        logger.info(f"Incident {incident.id} opened from template {template_id} (used {template.usage_count}x)")
        return incident
