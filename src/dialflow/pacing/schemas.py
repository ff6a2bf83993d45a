"""
Pydantic schemas for pacing settings, history and live metrics.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from dialflow.pacing.learner import PacingAdjustment


class ConcurrencySettingsResponse(BaseModel):
    max_concurrent_calls: int
    calls_per_minute: int
    target_abandonment_rate: float
    target_utilization: float
    enable_adaptive_pacing: bool
    min_calls_per_minute: int
    max_calls_per_minute: int

    model_config = {"from_attributes": True}


class ConcurrencySettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    broadcast_id: UUID | None = Field(None, description="Store as a per-broadcast override")
    max_concurrent_calls: int | None = Field(None, ge=1, le=10_000)
    calls_per_minute: int | None = Field(None, ge=1, le=10_000)
    target_abandonment_rate: float | None = Field(None, ge=0, le=1)
    target_utilization: float | None = Field(None, gt=0, le=1)
    enable_adaptive_pacing: bool | None = None
    min_calls_per_minute: int | None = Field(None, ge=1)
    max_calls_per_minute: int | None = Field(None, ge=1)


class HistoricalStatRequest(BaseModel):
    broadcast_id: UUID | None = None
    timestamp: datetime | None = None
    answer_rate: float = Field(..., ge=0, le=1)
    abandonment_rate: float = Field(..., ge=0, le=1)
    concurrent_calls: int = Field(..., ge=0)


class HistoricalStatResponse(BaseModel):
    id: UUID
    broadcast_id: UUID | None
    timestamp: datetime
    answer_rate: float
    abandonment_rate: float
    concurrent_calls: int

    model_config = {"from_attributes": True}


class DialingRateResponse(BaseModel):
    current_concurrency: int
    max_concurrency: int
    concurrency_ceiling: int
    utilization_rate: int
    recommended_rate: int
    available_slots: int

    model_config = {"from_attributes": True}


class RecommendationResponse(BaseModel):
    avg_answer_rate: float
    avg_abandonment_rate: float
    avg_concurrent_calls: float
    recommended_concurrency: int
    recommended_calls_per_minute: int
    adjustment: PacingAdjustment
    sample_size: int

    model_config = {"from_attributes": True}


class PacingResponse(BaseModel):
    """Live pacing view for one broadcast."""

    settings: ConcurrencySettingsResponse
    metrics: DialingRateResponse
    recommendation: RecommendationResponse
