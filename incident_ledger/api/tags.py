"""Tag catalog routes."""

from uuid import UUID

from fastapi import APIRouter, Response, status

from ..core import CurrentUserDep
from ..schemas import TagRequest, TagResponse
from .deps import AuditTrailDep, TagServiceDep

router = APIRouter(prefix="/tags", tags=["tags"])


@router.get("", response_model=list[TagResponse])
async def list_tags(current_user: CurrentUserDep, tags: TagServiceDep, audit: AuditTrailDep):
    items = await tags.list_tags(current_user)
    await audit.record()
    return [TagResponse.model_validate(t) for t in items]


@router.post("", response_model=TagResponse, status_code=status.HTTP_201_CREATED)
async def create_tag(
    request: TagRequest,
    current_user: CurrentUserDep,
    tags: TagServiceDep,
    audit: AuditTrailDep,
):
    """Create a tag. Names are unique; color defaults to gray."""
    tag = await tags.create_tag(request.name, request.color, current_user)
    await audit.record(status.HTTP_201_CREATED, tag.id, request.model_dump())
    return TagResponse.model_validate(tag)


@router.put("/{tag_id}", response_model=TagResponse)
async def update_tag(
    tag_id: UUID,
    request: TagRequest,
    current_user: CurrentUserDep,
    tags: TagServiceDep,
    audit: AuditTrailDep,
):
    tag = await tags.update_tag(tag_id, request.name, request.color, current_user)
    await audit.record(resource_id=tag.id, body=request.model_dump())
    return TagResponse.model_validate(tag)


@router.delete("/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tag(
    tag_id: UUID,
    current_user: CurrentUserDep,
    tags: TagServiceDep,
    audit: AuditTrailDep,
):
    """Delete a tag and detach it from every incident and template."""
    await tags.delete_tag(tag_id, current_user)
    await audit.record(status.HTTP_204_NO_CONTENT, tag_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
