"""
Pydantic schemas for broadcast lifecycle endpoints.
"""

from datetime import datetime, time
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from dialflow.broadcasts.models import BroadcastStatus, IvrMode
from dialflow.readiness.service import CheckStatus


class BroadcastCreateRequest(BaseModel):
    """Request schema for creating a broadcast."""

    name: str = Field(..., min_length=1, max_length=255)
    message_text: str | None = None
    audio_url: str | None = Field(None, max_length=1024)
    ivr_enabled: bool = False
    ivr_mode: IvrMode = IvrMode.DTMF
    dtmf_actions: list[dict[str, Any]] = Field(default_factory=list)
    calls_per_minute: int = Field(30, ge=1, le=1000)
    max_attempts: int = Field(3, ge=1, le=10)
    calling_hours_start: time | None = None
    calling_hours_end: time | None = None
    timezone: str = Field("UTC", max_length=64)
    bypass_calling_hours: bool = False
    caller_id: str | None = Field(None, max_length=32)
    agent_id: str | None = Field(None, max_length=128)


class BroadcastResponse(BaseModel):
    """Response schema for a broadcast."""

    id: UUID
    tenant_id: UUID
    name: str
    message_text: str | None
    audio_url: str | None
    ivr_enabled: bool
    ivr_mode: IvrMode
    calls_per_minute: int
    max_attempts: int
    calling_hours_start: time | None
    calling_hours_end: time | None
    timezone: str
    bypass_calling_hours: bool
    caller_id: str | None
    status: BroadcastStatus
    total_items: int
    last_error: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ReadinessCheckResponse(BaseModel):
    id: str
    label: str
    status: CheckStatus
    message: str
    critical: bool

    model_config = {"from_attributes": True}


class ReadinessResponse(BaseModel):
    """Outcome of the readiness preflight."""

    is_ready: bool
    critical_failures: int
    warnings: int
    blocking_reasons: list[str]
    checks: list[ReadinessCheckResponse]

    model_config = {"from_attributes": True}


class StartResponse(BaseModel):
    started: bool
    status: BroadcastStatus
    readiness: ReadinessResponse

    model_config = {"from_attributes": True}
