"""Post-mortem and action item routes."""

from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from ..core import CurrentUserDep
from ..schemas import (
    ActionItemCreate,
    ActionItemListResponse,
    ActionItemResponse,
    ActionItemUpdate,
    PostMortemCreate,
    PostMortemListResponse,
    PostMortemResponse,
    PostMortemUpdate,
)
from ..services import ActionItemInput, CreatePostMortemInput, UpdatePostMortemInput
from .deps import ActionItemTrackerDep, AuditTrailDep, PostMortemWorkflowDep

router = APIRouter(prefix="/post-mortems", tags=["post-mortems"])
incident_router = APIRouter(prefix="/incidents", tags=["post-mortems"])
action_item_router = APIRouter(prefix="/action-items", tags=["action-items"])


# =============================================================================
# POST-MORTEMS
# =============================================================================


@router.post("", response_model=PostMortemResponse, status_code=status.HTTP_201_CREATED)
async def create_post_mortem(
    request: PostMortemCreate,
    current_user: CurrentUserDep,
    workflow: PostMortemWorkflowDep,
    audit: AuditTrailDep,
):
    """Start the post-mortem draft for an incident. One per incident."""
    post_mortem = await workflow.create_post_mortem(
        CreatePostMortemInput(
            incident_id=request.incident_id,
            root_cause=request.root_cause,
            impact_analysis=request.impact_analysis,
            what_went_well=request.what_went_well,
            what_went_wrong=request.what_went_wrong,
            lessons_learned=request.lessons_learned,
            five_whys=request.five_whys,
        ),
        current_user,
    )
    await audit.record(status.HTTP_201_CREATED, post_mortem.id, request.model_dump(mode="json"))
    return PostMortemResponse.model_validate(post_mortem)


@router.get("", response_model=PostMortemListResponse)
async def list_post_mortems(
    current_user: CurrentUserDep,
    workflow: PostMortemWorkflowDep,
    audit: AuditTrailDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: str | None = Query(default=None, pattern="^(draft|published)$"),
    author_id: UUID | None = None,
):
    post_mortems, total = await workflow.list_post_mortems(
        current_user,
        status=status,
        author_id=author_id,
        limit=limit,
        offset=(page - 1) * limit,
    )
    await audit.record()
    return PostMortemListResponse.create(
        items=[PostMortemResponse.model_validate(pm) for pm in post_mortems],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/{post_mortem_id}", response_model=PostMortemResponse)
async def get_post_mortem(
    post_mortem_id: UUID,
    current_user: CurrentUserDep,
    workflow: PostMortemWorkflowDep,
    audit: AuditTrailDep,
):
    post_mortem = await workflow.get_post_mortem(post_mortem_id, current_user)
    await audit.record(resource_id=post_mortem.id)
    return PostMortemResponse.model_validate(post_mortem)


@incident_router.get("/{incident_id}/post-mortem", response_model=PostMortemResponse)
async def get_post_mortem_by_incident(
    incident_id: UUID,
    current_user: CurrentUserDep,
    workflow: PostMortemWorkflowDep,
    audit: AuditTrailDep,
):
    post_mortem = await workflow.get_by_incident(incident_id, current_user)
    await audit.record(resource_id=post_mortem.id)
    return PostMortemResponse.model_validate(post_mortem)


@router.put("/{post_mortem_id}", response_model=PostMortemResponse)
async def update_post_mortem(
    post_mortem_id: UUID,
    request: PostMortemUpdate,
    current_user: CurrentUserDep,
    workflow: PostMortemWorkflowDep,
    audit: AuditTrailDep,
):
    """Edit a draft. Returns 409 once the post-mortem is published."""
    input_data = UpdatePostMortemInput(
        **{field: getattr(request, field) for field in request.model_fields_set}
    )
    post_mortem = await workflow.update_post_mortem(post_mortem_id, input_data, current_user)
    await audit.record(resource_id=post_mortem.id, body=request.model_dump(mode="json", exclude_unset=True))
    return PostMortemResponse.model_validate(post_mortem)


@router.post("/{post_mortem_id}/publish", response_model=PostMortemResponse)
async def publish_post_mortem(
    post_mortem_id: UUID,
    current_user: CurrentUserDep,
    workflow: PostMortemWorkflowDep,
    audit: AuditTrailDep,
):
    """Publish a draft. Publishing is one-way; a second publish returns 409."""
    post_mortem = await workflow.publish(post_mortem_id, current_user)
    await audit.record(resource_id=post_mortem.id)
    return PostMortemResponse.model_validate(post_mortem)


@router.post("/{post_mortem_id}/ai-suggestion", response_model=PostMortemResponse)
async def generate_ai_suggestion(
    post_mortem_id: UUID,
    current_user: CurrentUserDep,
    workflow: PostMortemWorkflowDep,
    audit: AuditTrailDep,
):
    """Generate root cause candidates with AI; replaces the draft's root_cause."""
    post_mortem = await workflow.generate_ai_suggestion(post_mortem_id, current_user)
    await audit.record(resource_id=post_mortem.id)
    return PostMortemResponse.model_validate(post_mortem)


@router.delete("/{post_mortem_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post_mortem(
    post_mortem_id: UUID,
    current_user: CurrentUserDep,
    workflow: PostMortemWorkflowDep,
    audit: AuditTrailDep,
):
    await workflow.delete_post_mortem(post_mortem_id, current_user)
    await audit.record(status.HTTP_204_NO_CONTENT, post_mortem_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{post_mortem_id}/action-items", response_model=list[ActionItemResponse])
async def list_post_mortem_action_items(
    post_mortem_id: UUID,
    current_user: CurrentUserDep,
    tracker: ActionItemTrackerDep,
    audit: AuditTrailDep,
):
    items = await tracker.list_for_post_mortem(post_mortem_id, current_user)
    await audit.record(resource_id=post_mortem_id)
    return [ActionItemResponse.model_validate(i) for i in items]


# =============================================================================
# ACTION ITEMS
# =============================================================================


def _to_input(request: ActionItemCreate | ActionItemUpdate) -> ActionItemInput:
    return ActionItemInput(
        title=request.title,
        description=request.description,
        assignee_id=request.assignee_id,
        priority=request.priority,
        status=request.status,
        due_date=request.due_date,
        related_links=request.related_links,
    )


@action_item_router.post("", response_model=ActionItemResponse, status_code=status.HTTP_201_CREATED)
async def create_action_item(
    request: ActionItemCreate,
    current_user: CurrentUserDep,
    tracker: ActionItemTrackerDep,
    audit: AuditTrailDep,
):
    item = await tracker.create_action_item(request.post_mortem_id, _to_input(request), current_user)
    await audit.record(status.HTTP_201_CREATED, item.id, request.model_dump(mode="json"))
    return ActionItemResponse.model_validate(item)


@action_item_router.get("", response_model=ActionItemListResponse)
async def list_action_items(
    current_user: CurrentUserDep,
    tracker: ActionItemTrackerDep,
    audit: AuditTrailDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: str | None = Query(default=None, pattern="^(pending|in_progress|completed)$"),
    priority: str | None = Query(default=None, pattern="^(high|medium|low)$"),
    assignee_id: UUID | None = None,
):
    items, total = await tracker.list_action_items(
        current_user,
        status=status,
        priority=priority,
        assignee_id=assignee_id,
        limit=limit,
        offset=(page - 1) * limit,
    )
    await audit.record()
    return ActionItemListResponse.create(
        items=[ActionItemResponse.model_validate(i) for i in items],
        total=total,
        page=page,
        limit=limit,
    )


@action_item_router.get("/{action_item_id}", response_model=ActionItemResponse)
async def get_action_item(
    action_item_id: UUID,
    current_user: CurrentUserDep,
    tracker: ActionItemTrackerDep,
    audit: AuditTrailDep,
):
    item = await tracker.get_action_item(action_item_id, current_user)
    await audit.record(resource_id=item.id)
    return ActionItemResponse.model_validate(item)


@action_item_router.put("/{action_item_id}", response_model=ActionItemResponse)
async def update_action_item(
    action_item_id: UUID,
    request: ActionItemUpdate,
    current_user: CurrentUserDep,
    tracker: ActionItemTrackerDep,
    audit: AuditTrailDep,
):
    """Replace an action item. Returns 409 once its post-mortem is published."""
    item = await tracker.update_action_item(action_item_id, _to_input(request), current_user)
    await audit.record(resource_id=item.id, body=request.model_dump(mode="json"))
    return ActionItemResponse.model_validate(item)


@action_item_router.delete("/{action_item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_action_item(
    action_item_id: UUID,
    current_user: CurrentUserDep,
    tracker: ActionItemTrackerDep,
    audit: AuditTrailDep,
):
    await tracker.delete_action_item(action_item_id, current_user)
    await audit.record(status.HTTP_204_NO_CONTENT, action_item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
