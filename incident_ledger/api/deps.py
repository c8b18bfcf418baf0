"""Service and audit dependencies shared by the route modules."""

from typing import Annotated, Any

from fastapi import Depends, Request, status

from ..core import CurrentUser, CurrentUserDep, SessionDep
from ..models import AuditLog
from ..services import (
    ActionItemTracker,
    ActivityRecorder,
    AttachmentService,
    AuditService,
    IncidentEngine,
    NotificationDispatcher,
    PostMortemWorkflow,
    StatsService,
    TagService,
    TemplateService,
)


# =============================================================================
# SERVICES
# =============================================================================


def get_incident_engine(session: SessionDep) -> IncidentEngine:
    return IncidentEngine(session)


def get_activity_recorder(session: SessionDep) -> ActivityRecorder:
    return ActivityRecorder(session)


def get_post_mortem_workflow(session: SessionDep) -> PostMortemWorkflow:
    return PostMortemWorkflow(session)


def get_action_item_tracker(session: SessionDep) -> ActionItemTracker:
    return ActionItemTracker(session)


def get_audit_service(session: SessionDep) -> AuditService:
    return AuditService(session)


def get_notification_dispatcher(session: SessionDep) -> NotificationDispatcher:
    return NotificationDispatcher(session)


def get_tag_service(session: SessionDep) -> TagService:
    return TagService(session)


def get_attachment_service(session: SessionDep) -> AttachmentService:
    return AttachmentService(session)


def get_template_service(session: SessionDep) -> TemplateService:
    return TemplateService(session)


def get_stats_service(session: SessionDep) -> StatsService:
    return StatsService(session)


IncidentEngineDep = Annotated[IncidentEngine, Depends(get_incident_engine)]
ActivityRecorderDep = Annotated[ActivityRecorder, Depends(get_activity_recorder)]
PostMortemWorkflowDep = Annotated[PostMortemWorkflow, Depends(get_post_mortem_workflow)]
ActionItemTrackerDep = Annotated[ActionItemTracker, Depends(get_action_item_tracker)]
AuditServiceDep = Annotated[AuditService, Depends(get_audit_service)]
NotificationDispatcherDep = Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)]
TagServiceDep = Annotated[TagService, Depends(get_tag_service)]
AttachmentServiceDep = Annotated[AttachmentService, Depends(get_attachment_service)]
TemplateServiceDep = Annotated[TemplateService, Depends(get_template_service)]
StatsServiceDep = Annotated[StatsService, Depends(get_stats_service)]


# =============================================================================
# AUDIT TRAIL
# =============================================================================


class AuditTrail:
    """
    Records the current request in the audit log.

    Routes call ``record`` after the service call returned, so the entry
    lands in the same transaction as the change it describes and a
    rejected request never produces one.
    """

    def __init__(self, request: Request, current_user: CurrentUser, service: AuditService):
        self._request = request
        self._current_user = current_user
        self._service = service

    async def record(
        self,
        status_code: int = status.HTTP_200_OK,
        resource_id: Any = None,
        body: Any = None,
    ) -> AuditLog | None:
        return await self._service.log_request(
            method=self._current_user.method or self._request.method,
            path=self._current_user.path or self._request.url.path,
            status_code=status_code,
            user_id=self._current_user.id,
            ip_address=self._current_user.ip_address,
            user_agent=self._current_user.user_agent,
            resource_id=resource_id,
            body=body,
        )


def get_audit_trail(
    request: Request,
    current_user: CurrentUserDep,
    service: AuditServiceDep,
) -> AuditTrail:
    return AuditTrail(request, current_user, service)


AuditTrailDep = Annotated[AuditTrail, Depends(get_audit_trail)]
