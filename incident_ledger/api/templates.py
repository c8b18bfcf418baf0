"""
Incident template routes.

Reads need view_templates, writes need manage_templates. Only the
creator or an admin may update or delete a template.
"""

from uuid import UUID

from fastapi import APIRouter, Response, status

from ..core import CurrentUserDep
from ..schemas import (
    IncidentFromTemplateRequest,
    IncidentResponse,
    TemplateRequest,
    TemplateResponse,
)
from ..services import TemplateInput
from .deps import AuditTrailDep, TemplateServiceDep

router = APIRouter(prefix="/templates", tags=["templates"])


def _to_input(request: TemplateRequest) -> TemplateInput:
    return TemplateInput(
        name=request.name,
        description=request.description,
        title=request.title,
        content=request.content,
        severity=request.severity,
        impact_scope=request.impact_scope,
        is_public=request.is_public,
        tag_ids=request.tag_ids,
    )


@router.post("", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    request: TemplateRequest,
    current_user: CurrentUserDep,
    templates: TemplateServiceDep,
    audit: AuditTrailDep,
):
    template = await templates.create_template(_to_input(request), current_user)
    await audit.record(status.HTTP_201_CREATED, template.id, request.model_dump(mode="json"))
    return TemplateResponse.model_validate(template)


@router.get("", response_model=list[TemplateResponse])
async def list_templates(
    current_user: CurrentUserDep,
    templates: TemplateServiceDep,
    audit: AuditTrailDep,
):
    """Own templates plus public ones, most used first."""
    items = await templates.list_templates(current_user)
    await audit.record()
    return [TemplateResponse.model_validate(t) for t in items]


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: UUID,
    current_user: CurrentUserDep,
    templates: TemplateServiceDep,
    audit: AuditTrailDep,
):
    template = await templates.get_template(template_id, current_user)
    await audit.record(resource_id=template.id)
    return TemplateResponse.model_validate(template)


@router.put("/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: UUID,
    request: TemplateRequest,
    current_user: CurrentUserDep,
    templates: TemplateServiceDep,
    audit: AuditTrailDep,
):
    template = await templates.update_template(template_id, _to_input(request), current_user)
    await audit.record(resource_id=template.id, body=request.model_dump(mode="json"))
    return TemplateResponse.model_validate(template)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: UUID,
    current_user: CurrentUserDep,
    templates: TemplateServiceDep,
    audit: AuditTrailDep,
):
    await templates.delete_template(template_id, current_user)
    await audit.record(status.HTTP_204_NO_CONTENT, template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{template_id}/incidents",
    response_model=IncidentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_incident_from_template(
    template_id: UUID,
    request: IncidentFromTemplateRequest,
    current_user: CurrentUserDep,
    templates: TemplateServiceDep,
    audit: AuditTrailDep,
):
    """Open an incident prefilled from the template."""
    incident = await templates.create_incident_from_template(
        template_id,
        current_user,
        assignee_id=request.assignee_id,
        detected_at=request.detected_at,
    )
    await audit.record(status.HTTP_201_CREATED, incident.id, request.model_dump(mode="json"))
    return IncidentResponse.model_validate(incident)
