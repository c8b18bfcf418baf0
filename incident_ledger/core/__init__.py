"""Core application utilities."""

from .config import Settings, configure_logging, get_settings
from .database import (
    async_session_factory,
    close_db,
    engine,
    get_session,
    init_db,
    transactional_session,
)
from .dependencies import (
    AdminDep,
    CurrentUser,
    CurrentUserDep,
    SessionDep,
    get_current_user,
    require_admin,
)
from .errors import (
    AuthorizationDenied,
    ConflictError,
    ExternalServiceError,
    IncidentLedgerError,
    NotFoundError,
    TransientStorageError,
    ValidationError,
)
from .permissions import Permission, has_permission
from .security import create_access_token, decode_token

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "configure_logging",
    # Database
    "engine",
    "async_session_factory",
    "get_session",
    "transactional_session",
    "init_db",
    "close_db",
    # Dependencies
    "CurrentUser",
    "get_current_user",
    "require_admin",
    "CurrentUserDep",
    "AdminDep",
    "SessionDep",
    # Errors
    "IncidentLedgerError",
    "AuthorizationDenied",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "TransientStorageError",
    "ExternalServiceError",
    # Permissions
    "Permission",
    "has_permission",
    # Security
    "create_access_token",
    "decode_token",
]
