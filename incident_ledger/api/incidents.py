"""
Incident API Routes.

1. POST /incidents - Open an incident
2. PUT /incidents/{id} - Partial update (status/severity/assignee are tracked)
3. POST /incidents/{id}/assign - Change the assignee
4. POST /incidents/{id}/comments and /timeline - Append to the activity log
5. POST /incidents/{id}/summarize - Regenerate the AI summary
"""

from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from ..core import CurrentUserDep
from ..models import IncidentActivity
from ..schemas import (
    ActivityResponse,
    AssignRequest,
    AttachmentResponse,
    CommentRequest,
    IncidentCreate,
    IncidentListResponse,
    IncidentResponse,
    IncidentUpdate,
    TimelineEventRequest,
)
from ..services import (
    CreateIncidentInput,
    IncidentFilters,
    UpdateIncidentInput,
    describe_activity,
)
from .deps import (
    ActivityRecorderDep,
    AttachmentServiceDep,
    AuditTrailDep,
    IncidentEngineDep,
)

router = APIRouter(prefix="/incidents", tags=["incidents"])
activity_router = APIRouter(prefix="/activities", tags=["incidents"])
attachment_router = APIRouter(prefix="/attachments", tags=["incidents"])


def build_activity_response(activity: IncidentActivity) -> ActivityResponse:
    return ActivityResponse(
        id=activity.id,
        incident_id=activity.incident_id,
        user_id=activity.user_id,
        activity_type=activity.activity_type,
        old_value=activity.old_value,
        new_value=activity.new_value,
        comment=activity.comment,
        event_time=activity.event_time,
        created_at=activity.created_at,
        description=describe_activity(activity),
    )


# =============================================================================
# INCIDENTS
# =============================================================================


@router.post("", response_model=IncidentResponse, status_code=status.HTTP_201_CREATED)
async def create_incident(
    request: IncidentCreate,
    current_user: CurrentUserDep,
    engine: IncidentEngineDep,
    audit: AuditTrailDep,
):
    """Open a new incident. Requires create_incidents."""
    incident = await engine.create_incident(
        CreateIncidentInput(
            title=request.title,
            description=request.description,
            severity=request.severity,
            status=request.status,
            impact_scope=request.impact_scope,
            detected_at=request.detected_at,
            assignee_id=request.assignee_id,
            tag_ids=request.tag_ids,
        ),
        actor=current_user,
    )
    await audit.record(status.HTTP_201_CREATED, incident.id, request.model_dump(mode="json"))
    return IncidentResponse.model_validate(incident)


@router.get("", response_model=IncidentListResponse)
async def list_incidents(
    current_user: CurrentUserDep,
    engine: IncidentEngineDep,
    audit: AuditTrailDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    severity: str | None = None,
    status: str | None = None,
    tag_id: UUID | None = None,
    assignee_id: UUID | None = None,
    search: str | None = Query(default=None, max_length=200),
    sort: str = Query(default="created_at", pattern="^(created_at|detected_at|severity)$"),
    order: str = Query(default="desc", pattern="^(asc|desc)$"),
):
    """List incidents with filters and pagination."""
    incidents, total = await engine.list_incidents(
        current_user,
        IncidentFilters(
            severity=severity,
            status=status,
            tag_id=tag_id,
            assignee_id=assignee_id,
            search=search,
            sort=sort,
            order=order,
        ),
        limit=limit,
        offset=(page - 1) * limit,
    )
    await audit.record()
    return IncidentListResponse.create(
        items=[IncidentResponse.model_validate(i) for i in incidents],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/{incident_id}", response_model=IncidentResponse)
async def get_incident(
    incident_id: UUID,
    current_user: CurrentUserDep,
    engine: IncidentEngineDep,
    audit: AuditTrailDep,
):
    incident = await engine.get_incident(incident_id, current_user)
    await audit.record(resource_id=incident.id)
    return IncidentResponse.model_validate(incident)


@router.put("/{incident_id}", response_model=IncidentResponse)
async def update_incident(
    incident_id: UUID,
    request: IncidentUpdate,
    current_user: CurrentUserDep,
    engine: IncidentEngineDep,
    audit: AuditTrailDep,
):
    """
    Partially update an incident.

    Only fields present in the body are applied; send ``"assignee_id": null``
    to clear the assignee. Admins may edit any incident, editors only the
    ones they created.
    """
    provided = request.model_fields_set
    input_data = UpdateIncidentInput(
        **{field: getattr(request, field) for field in provided}
    )
    incident = await engine.update_incident(incident_id, input_data, current_user)
    await audit.record(resource_id=incident.id, body=request.model_dump(mode="json", exclude_unset=True))
    return IncidentResponse.model_validate(incident)


@router.delete("/{incident_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_incident(
    incident_id: UUID,
    current_user: CurrentUserDep,
    engine: IncidentEngineDep,
    audit: AuditTrailDep,
):
    """Delete an incident and everything attached to it. Admin only."""
    await engine.delete_incident(incident_id, current_user)
    await audit.record(status.HTTP_204_NO_CONTENT, incident_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{incident_id}/assign", response_model=IncidentResponse)
async def assign_incident(
    incident_id: UUID,
    request: AssignRequest,
    current_user: CurrentUserDep,
    engine: IncidentEngineDep,
    audit: AuditTrailDep,
):
    incident = await engine.assign_incident(incident_id, request.assignee_id, current_user)
    await audit.record(resource_id=incident.id, body=request.model_dump(mode="json"))
    return IncidentResponse.model_validate(incident)


@router.post("/{incident_id}/summarize", response_model=IncidentResponse)
async def regenerate_summary(
    incident_id: UUID,
    current_user: CurrentUserDep,
    engine: IncidentEngineDep,
    audit: AuditTrailDep,
):
    """Regenerate the incident summary with AI. Overwrites the current summary."""
    incident = await engine.regenerate_summary(incident_id, current_user)
    await audit.record(resource_id=incident.id)
    return IncidentResponse.model_validate(incident)


# =============================================================================
# ACTIVITIES
# =============================================================================


@router.get("/{incident_id}/activities", response_model=list[ActivityResponse])
async def list_activities(
    incident_id: UUID,
    current_user: CurrentUserDep,
    recorder: ActivityRecorderDep,
    audit: AuditTrailDep,
):
    """Activity log of an incident, oldest first."""
    activities = await recorder.list_activities(incident_id, current_user)
    await audit.record(resource_id=incident_id)
    return [build_activity_response(a) for a in activities]


@router.post(
    "/{incident_id}/comments",
    response_model=ActivityResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    incident_id: UUID,
    request: CommentRequest,
    current_user: CurrentUserDep,
    recorder: ActivityRecorderDep,
    audit: AuditTrailDep,
):
    activity = await recorder.add_comment(incident_id, current_user, request.comment)
    await audit.record(status.HTTP_201_CREATED, incident_id, request.model_dump(mode="json"))
    return build_activity_response(activity)


@router.post(
    "/{incident_id}/timeline",
    response_model=ActivityResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_timeline_event(
    incident_id: UUID,
    request: TimelineEventRequest,
    current_user: CurrentUserDep,
    recorder: ActivityRecorderDep,
    audit: AuditTrailDep,
):
    activity = await recorder.add_timeline_event(
        incident_id,
        current_user,
        event_type=request.event_type,
        event_time=request.event_time,
        description=request.description,
    )
    await audit.record(status.HTTP_201_CREATED, incident_id, request.model_dump(mode="json"))
    return build_activity_response(activity)


@activity_router.get("/recent", response_model=list[ActivityResponse])
async def recent_activities(
    current_user: CurrentUserDep,
    recorder: ActivityRecorderDep,
    audit: AuditTrailDep,
    limit: int = Query(default=20, ge=1, le=100),
):
    """Newest activities across all incidents."""
    activities = await recorder.recent_activities(current_user, limit=limit)
    await audit.record()
    return [build_activity_response(a) for a in activities]


# =============================================================================
# ATTACHMENTS
# =============================================================================


@router.get("/{incident_id}/attachments", response_model=list[AttachmentResponse])
async def list_attachments(
    incident_id: UUID,
    current_user: CurrentUserDep,
    attachments: AttachmentServiceDep,
    audit: AuditTrailDep,
):
    items = await attachments.list_for_incident(incident_id, current_user)
    await audit.record(resource_id=incident_id)
    return [AttachmentResponse.model_validate(a) for a in items]


@attachment_router.delete("/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_attachment(
    attachment_id: UUID,
    current_user: CurrentUserDep,
    attachments: AttachmentServiceDep,
    audit: AuditTrailDep,
):
    """Delete an attachment. Admins, or the user who uploaded it."""
    await attachments.delete(attachment_id, current_user)
    await audit.record(status.HTTP_204_NO_CONTENT, attachment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
