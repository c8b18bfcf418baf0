"""Base schemas and common types for the Incident Ledger API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models import as_utc


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class LedgerBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
    )

    @field_validator("*", mode="after")
    @classmethod
    def _timestamps_in_utc(cls, value: Any) -> Any:
        # SQLite hands back naive datetimes; always emit an explicit UTC offset
        if isinstance(value, datetime):
            return as_utc(value)
        return value


class PaginatedResponse(LedgerBaseModel):
    """Wrapper for paginated responses."""

    items: list[Any]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def create(
        cls,
        items: list[Any],
        total: int,
        page: int,
        limit: int,
        **extra: Any,
    ) -> "PaginatedResponse":
        return cls(
            items=items,
            total=total,
            page=page,
            limit=limit,
            total_pages=(total + limit - 1) // limit,
            **extra,
        )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorResponse(LedgerBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
