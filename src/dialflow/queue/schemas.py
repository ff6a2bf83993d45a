"""
Pydantic schemas for queue management endpoints.
"""

from uuid import UUID

from pydantic import BaseModel, Field


class CandidateRequest(BaseModel):
    phone_number: str = Field(..., min_length=1, max_length=50)
    lead_id: UUID | None = None
    name: str | None = Field(None, max_length=255)
    priority: int = 0


class EnqueueNumbersRequest(BaseModel):
    """Raw phone numbers or candidate records to enqueue."""

    phone_numbers: list[str] = Field(default_factory=list, max_length=100_000)
    candidates: list[CandidateRequest] = Field(default_factory=list, max_length=100_000)


class EnqueueLeadsRequest(BaseModel):
    lead_ids: list[UUID] = Field(..., min_length=1, max_length=100_000)


class EnqueueResponse(BaseModel):
    """Outcome of an enqueue request."""

    added: int
    skipped: int
    dnc_filtered: int
    invalid: int
    duplicates: int
    total_items: int
    reason: str | None = None
    message: str

    model_config = {"from_attributes": True}


class RemoveItemsRequest(BaseModel):
    item_ids: list[UUID] = Field(..., min_length=1)


class CountResponse(BaseModel):
    """Number of items affected by a bulk queue action."""

    count: int


class SweepResponse(BaseModel):
    reset_to_pending: int
    marked_failed: int

    model_config = {"from_attributes": True}


class QueueStatsResponse(BaseModel):
    total: int
    pending: int
    calling: int
    completed: int
    failed: int
    by_status: dict[str, int]

    model_config = {"from_attributes": True}
