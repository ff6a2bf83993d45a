"""
SQLAlchemy models for broadcasts.
"""

from datetime import datetime, time
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    Integer,
    String,
    Text,
    Time,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from dialflow.shared.clock import utcnow
from dialflow.shared.database import Base, enum_values


class BroadcastStatus(str, Enum):
    """Broadcast run state."""

    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class IvrMode(str, Enum):
    """How the call interacts with the callee once answered."""

    NONE = "none"
    DTMF = "dtmf"
    AI_CONVERSATIONAL = "ai_conversational"


class Broadcast(Base):
    """Broadcast configuration and run state."""

    __tablename__ = "broadcasts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    message_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    ivr_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ivr_mode: Mapped[IvrMode] = mapped_column(
        SQLEnum(
            IvrMode,
            name="ivr_mode",
            native_enum=False,
            length=32,
            values_callable=enum_values,
        ),
        nullable=False,
        default=IvrMode.DTMF,
    )
    # [{"digit": "1", "action": "transfer", "transfer_to": "+1555..."}, ...]
    dtmf_actions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    calls_per_minute: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    calling_hours_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    calling_hours_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    bypass_calling_hours: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    caller_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    agent_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[BroadcastStatus] = mapped_column(
        SQLEnum(
            BroadcastStatus,
            name="broadcast_status",
            native_enum=False,
            length=32,
            values_callable=enum_values,
        ),
        nullable=False,
        default=BroadcastStatus.DRAFT,
    )
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(String(500), nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    @property
    def uses_prerecorded_audio(self) -> bool:
        return self.ivr_mode is not IvrMode.AI_CONVERSATIONAL

    def __repr__(self) -> str:
        return f"<Broadcast(id={self.id}, name={self.name!r}, status={self.status})>"
