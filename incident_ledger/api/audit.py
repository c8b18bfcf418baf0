"""API routes for the audit log."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query

from ..core import AdminDep
from ..schemas import AuditLogEntry, AuditLogResponse
from .deps import AuditServiceDep, AuditTrailDep

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=AuditLogResponse)
async def get_audit_log(
    current_user: AdminDep,  # Only admins can view audit logs
    service: AuditServiceDep,
    audit: AuditTrailDep,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user_id: UUID | None = None,
    action: str | None = None,
    resource_type: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    max_id: int | None = Query(None, ge=1),
):
    """
    Query the audit log with filters. Requires admin privileges.

    Newest entries first. The response carries ``max_id``; pass it on the
    following pages so entries written in between don't shift the pages.
    """
    entries, total, snapshot_id = await service.get_audit_log(
        current_user,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=(page - 1) * limit,
        max_id=max_id,
    )
    await audit.record()

    return AuditLogResponse.create(
        items=[AuditLogEntry.model_validate(e) for e in entries],
        total=total,
        page=page,
        limit=limit,
        max_id=snapshot_id,
    )
