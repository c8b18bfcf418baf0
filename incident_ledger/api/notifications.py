"""Per-user notification settings."""

from fastapi import APIRouter

from ..core import CurrentUserDep
from ..schemas import NotificationSettingsResponse, NotificationSettingsUpdate
from ..services import NotificationSettingsInput
from .deps import AuditTrailDep, NotificationDispatcherDep

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/settings", response_model=NotificationSettingsResponse)
async def get_notification_settings(
    current_user: CurrentUserDep,
    dispatcher: NotificationDispatcherDep,
    audit: AuditTrailDep,
):
    """Current user's settings. Defaults are created on first access."""
    setting = await dispatcher.get_settings(current_user.id)
    await audit.record(resource_id=current_user.id)
    return NotificationSettingsResponse.model_validate(setting)


@router.put("/settings", response_model=NotificationSettingsResponse)
async def update_notification_settings(
    request: NotificationSettingsUpdate,
    current_user: CurrentUserDep,
    dispatcher: NotificationDispatcherDep,
    audit: AuditTrailDep,
):
    setting = await dispatcher.update_settings(
        current_user.id,
        NotificationSettingsInput(**request.model_dump()),
    )
    await audit.record(resource_id=current_user.id, body=request.model_dump(exclude_unset=True))
    return NotificationSettingsResponse.model_validate(setting)
