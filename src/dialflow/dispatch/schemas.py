"""
Pydantic schemas for manual dispatch and the provider status webhook.
"""

from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from dialflow.pacing.schemas import DialingRateResponse
from dialflow.queue.models import WorkItemStatus


class DispatchResponse(BaseModel):
    broadcast_id: UUID
    claimed: int
    initiated: int
    requeued: int
    failed: int
    skipped_reason: str | None
    completed: bool
    paused: bool
    metrics: DialingRateResponse | None

    model_config = {"from_attributes": True}


class CallStatusWebhook(BaseModel):
    """Status update posted by the telephony provider."""

    work_item_id: UUID | None = None
    call_id: str | None = Field(None, max_length=128)
    status: str = Field(..., min_length=1, max_length=32)
    dtmf: str | None = Field(None, max_length=8)

    @model_validator(mode="after")
    def require_reference(self) -> "CallStatusWebhook":
        if self.work_item_id is None and not self.call_id:
            raise ValueError("Either work_item_id or call_id is required")
        return self


class CallStatusResponse(BaseModel):
    work_item_id: UUID
    applied: bool
    previous_status: WorkItemStatus
    status: WorkItemStatus

    model_config = {"from_attributes": True}
