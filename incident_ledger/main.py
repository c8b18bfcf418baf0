"""Incident Ledger: Main FastAPI Application.

Incident tracking with an append-only activity log, post-mortems with
action items, and an audit trail of every mutating request.
"""

import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core import IncidentLedgerError, ValidationError, close_db, configure_logging, get_settings, init_db
from .schemas import ErrorResponse

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    configure_logging(settings)
    logger.info(f"Starting {settings.app_name} {settings.app_version} ({settings.environment})")

    # Startup - skip init_db in production (tables already exist)
    if settings.environment != "production":
        await init_db()
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Incident Ledger API

    Track incidents from detection to resolution and learn from them.

    ### Key Features

    - **Activity Log**: Every status, severity and assignee change is recorded, alongside comments and timeline events.
    - **Post-Mortems**: One per incident, edited as a draft and frozen on publish.
    - **Action Items**: Follow-up work tracked against the post-mortem.
    - **Audit Trail**: Who changed what, from where.

    ### Authentication

    All endpoints require a valid JWT token in the `Authorization: Bearer <token>` header.
    """,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "HEAD"],
    allow_headers=["*"],
    max_age=86400,
)


@app.exception_handler(IncidentLedgerError)
async def ledger_exception_handler(request: Request, exc: IncidentLedgerError):
    """Render domain errors as ErrorResponse with the status the error carries."""
    details = dict(exc.details)
    if isinstance(exc, ValidationError) and exc.field:
        details.setdefault("field", exc.field)

    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.code,
            message=exc.message,
            details=details,
        ).model_dump(),
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")

    details = {}
    # Outside production, include the full traceback
    if settings.debug or settings.environment != "production":
        details["traceback"] = traceback.format_exc()

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="internal_error",
            message=f"An unexpected error occurred: {str(exc)[:200]}",
            details=details,
        ).model_dump(),
    )


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "incident_ledger.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
