"""API routes for the incident ledger."""

from fastapi import APIRouter

from .audit import router as audit_router
from .incidents import activity_router, attachment_router
from .incidents import router as incidents_router
from .notifications import router as notifications_router
from .post_mortems import action_item_router
from .post_mortems import incident_router as incident_post_mortem_router
from .post_mortems import router as post_mortems_router
from .stats import router as stats_router
from .tags import router as tags_router
from .templates import router as templates_router

# Main API router
api_router = APIRouter()

# Incidents and their activity log
api_router.include_router(incidents_router)
api_router.include_router(incident_post_mortem_router)
api_router.include_router(activity_router)
api_router.include_router(attachment_router)

# Post-mortems and follow-up work
api_router.include_router(post_mortems_router)
api_router.include_router(action_item_router)

api_router.include_router(tags_router)
api_router.include_router(templates_router)
api_router.include_router(stats_router)
api_router.include_router(notifications_router)

# Admin only
api_router.include_router(audit_router)

__all__ = ["api_router"]
