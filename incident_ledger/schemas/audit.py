"""Pydantic schemas for the audit log."""

from datetime import datetime
from uuid import UUID

from ..models import AuditAction
from .base import LedgerBaseModel, PaginatedResponse


class AuditLogEntry(LedgerBaseModel):
    """A single audit log entry."""

    id: int
    user_id: UUID | None = None  # None for unauthenticated requests
    action: AuditAction
    resource_type: str
    resource_id: str | None = None
    method: str
    path: str
    status_code: int
    ip_address: str | None = None
    user_agent: str | None = None
    details: dict
    created_at: datetime


class AuditLogResponse(PaginatedResponse):
    """Paginated audit log response.

    ``max_id`` identifies the snapshot the pages were cut from; send it back
    to keep later pages stable while new entries arrive.
    """

    items: list[AuditLogEntry]
    max_id: int | None = None
