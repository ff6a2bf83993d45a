"""
SQLAlchemy models for pacing configuration and history.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from dialflow.shared.clock import utcnow
from dialflow.shared.database import Base


class ConcurrencySettingsRecord(Base):
    """Tenant concurrency settings; ``broadcast_id`` set means a per-broadcast override."""

    __tablename__ = "concurrency_settings"
    __table_args__ = (
        UniqueConstraint("tenant_id", "broadcast_id", name="uq_concurrency_settings_scope"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    broadcast_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    max_concurrent_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    calls_per_minute: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    target_abandonment_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.03)
    target_utilization: Mapped[float] = mapped_column(Float, nullable=False, default=0.8)
    enable_adaptive_pacing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    min_calls_per_minute: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    max_calls_per_minute: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class HistoricalStatRecord(Base):
    """Append-only interval metrics consumed by the pacing learner."""

    __tablename__ = "historical_stats"
    __table_args__ = (Index("ix_historical_stats_tenant_ts", "tenant_id", "timestamp"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    broadcast_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    answer_rate: Mapped[float] = mapped_column(Float, nullable=False)
    abandonment_rate: Mapped[float] = mapped_column(Float, nullable=False)
    concurrent_calls: Mapped[int] = mapped_column(Integer, nullable=False)
