"""Domain exceptions shared by every service.

Each exception carries a machine readable ``code`` and the HTTP status the
API layer renders it with.
"""

from typing import Any


class IncidentLedgerError(Exception):
    """Base exception for incident ledger operations."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AuthorizationDenied(IncidentLedgerError):
    """Role or ownership check failed."""

    code = "forbidden"
    status_code = 403


class ValidationError(IncidentLedgerError):
    """Missing or invalid field, or an unknown enum value."""

    code = "validation_error"
    status_code = 422

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.field = field


class NotFoundError(IncidentLedgerError):
    """Referenced id does not resolve."""

    code = "not_found"
    status_code = 404


class ConflictError(IncidentLedgerError):
    """Operation not allowed in the record's current state."""

    code = "conflict"
    status_code = 409


class TransientStorageError(IncidentLedgerError):
    """Attachment storage I/O failed; safe to retry."""

    code = "storage_unavailable"
    status_code = 503


class ExternalServiceError(IncidentLedgerError):
    """An upstream provider (AI) is unconfigured or failed."""

    code = "external_service_error"
    status_code = 502
