"""
Pydantic schemas for do-not-call registry management.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from dialflow.dnc.models import DncSource
from dialflow.queue.phone import normalize_phone_number


class DncEntryResponse(BaseModel):
    """Response schema for a single DNC entry."""

    id: UUID
    phone_number: str
    reason: str | None
    source: DncSource
    created_at: datetime

    model_config = {"from_attributes": True}


class DncListResponse(BaseModel):
    """Paginated DNC list."""

    items: list[DncEntryResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class DncCreateRequest(BaseModel):
    """Request schema for adding a single number to the DNC list."""

    phone_number: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Phone number; normalized to E.164",
    )
    reason: str | None = Field(None, max_length=255)

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, v: str) -> str:
        normalized = normalize_phone_number(v)
        if normalized is None:
            raise ValueError("Phone number is not a valid E.164 number")
        return normalized


class DncImportError(BaseModel):
    """Error details for a single row during CSV import."""

    line_number: int
    phone_number: str | None
    error: str


class DncImportResponse(BaseModel):
    """Response schema for CSV import."""

    accepted_count: int
    rejected_count: int
    duplicate_count: int
    errors: list[DncImportError]
