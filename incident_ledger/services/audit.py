"""Audit service: request logging and the admin-only audit trail."""

import json
import logging
import re
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import ValidationError
from ..core.permissions import Principal, can_view_audit_logs, require
from ..models import AuditAction, AuditLog

logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"
SENSITIVE_KEYS = frozenset({"password", "old_password", "new_password", "token", "access_token", "secret"})

# POST sub-actions that modify an existing resource rather than create one
UPDATE_LIKE_POSTS = ("/summarize", "/assign", "/publish")

# Most specific first: nested resources win over their parents
RESOURCE_PATTERNS: tuple[tuple[str, str], ...] = (
    ("/attachments", "attachment"),
    ("/comments", "comment"),
    ("/timeline", "timeline"),
    ("/activities", "activity"),
    ("/post-mortems", "post_mortem"),
    ("/post-mortem", "post_mortem"),
    ("/action-items", "action_item"),
    ("/incidents", "incident"),
    ("/users", "user"),
    ("/stats", "stats"),
    ("/tags", "tag"),
    ("/templates", "template"),
    ("/notifications", "notification"),
    ("/reports", "report"),
    ("/export", "export"),
    ("/audit-logs", "audit_log"),
    ("/auth", "auth"),
)

UUID_PATTERN = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)


# =============================================================================
# REQUEST CLASSIFICATION
# =============================================================================


def classify_request(method: str, path: str) -> tuple[AuditAction, str]:
    """Map an HTTP request to (action, resource_type)."""
    method = method.upper()
    if method == "POST":
        if "/login" in path:
            action = AuditAction.LOGIN
        elif "/logout" in path:
            action = AuditAction.LOGOUT
        elif any(marker in path for marker in UPDATE_LIKE_POSTS):
            action = AuditAction.UPDATE
        else:
            action = AuditAction.CREATE
    elif method in ("PUT", "PATCH"):
        action = AuditAction.UPDATE
    elif method == "DELETE":
        action = AuditAction.DELETE
    else:
        action = AuditAction.READ

    resource_type = "unknown"
    for marker, name in RESOURCE_PATTERNS:
        if marker in path:
            resource_type = name
            break
    return action, resource_type


def extract_resource_id(path: str) -> str | None:
    """The innermost id in the path, e.g. the comment's incident for /incidents/{id}/comments."""
    ids = UUID_PATTERN.findall(path)
    return ids[-1] if ids else None


def sanitize_details(body: Any, max_length: int | None = None) -> dict[str, Any]:
    """Redact secrets from a request body and drop it when it's too large to keep."""
    if body is None:
        return {}
    if max_length is None:
        max_length = get_settings().audit_details_max_length

    def _redact(value: Any) -> Any:
        if isinstance(value, dict):
            return {
                k: REDACTED if k.lower() in SENSITIVE_KEYS else _redact(v)
                for k, v in value.items()
            }
        if isinstance(value, list):
            return [_redact(v) for v in value]
        return value

    redacted = _redact(body)
    serialized = json.dumps(redacted, default=str)
    if len(serialized) >= max_length:
        return {"request_body_truncated": True, "request_body_size": len(serialized)}
    return {"request_body": redacted}


# =============================================================================
# AUDIT SERVICE
# =============================================================================


class AuditService:
    """Service for audit logging and the admin audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def log_request(
        self,
        method: str,
        path: str,
        status_code: int,
        user_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        resource_id: str | UUID | None = None,
        body: Any = None,
        action: AuditAction | None = None,
        resource_type: str | None = None,
    ) -> AuditLog | None:
        """
        Stage one audit row in the current transaction.

        Reads are skipped unless AUDIT_LOG_READS is on.
        """
        classified_action, classified_type = classify_request(method, path)
        action = action or classified_action
        if action == AuditAction.READ and not get_settings().audit_log_reads:
            return None

        entry = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type or classified_type,
            resource_id=str(resource_id) if resource_id else extract_resource_id(path),
            method=method.upper(),
            path=path[:500],
            status_code=status_code,
            ip_address=ip_address,
            user_agent=user_agent,
            details=sanitize_details(body),
        )
        self.session.add(entry)
        await self.session.flush()

        logger.debug(f"Audit {entry.action.value} {entry.resource_type} {entry.resource_id} by {user_id}")
        return entry

    async def get_audit_log(
        self,
        actor: Principal,
        user_id: UUID | None = None,
        action: AuditAction | str | None = None,
        resource_type: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
        max_id: int | None = None,
    ) -> tuple[Sequence[AuditLog], int, int | None]:
        """
        Query the audit log with filters. Admin only.

        Returns (entries, total, max_id). Passing the returned max_id back on
        later pages pins them to the same snapshot, so rows inserted in the
        meantime don't shift the offsets.
        """
        require(can_view_audit_logs(actor), actor, "view audit logs")

        if max_id is None:
            max_id = (await self.session.execute(select(func.max(AuditLog.id)))).scalar_one()

        query = select(AuditLog)
        if max_id is not None:
            query = query.where(AuditLog.id <= max_id)
        if user_id:
            query = query.where(AuditLog.user_id == user_id)
        if action:
            try:
                query = query.where(AuditLog.action == AuditAction(action))
            except ValueError:
                raise ValidationError(f"Invalid action '{action}'", field="action")
        if resource_type:
            query = query.where(AuditLog.resource_type == resource_type)
        if start_date:
            query = query.where(AuditLog.created_at >= start_date)
        if end_date:
            query = query.where(AuditLog.created_at <= end_date)

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.session.execute(count_query)).scalar_one()

        # Get results
        query = (
            query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(query)

        return result.scalars().all(), total, max_id
