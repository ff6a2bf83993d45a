"""
SQLAlchemy models for the caller-ID inventory and system alerts.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Enum as SQLEnum, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dialflow.shared.clock import utcnow
from dialflow.shared.database import Base, enum_values


class PhoneNumberStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class PhoneNumber(Base):
    """Outbound caller-ID number owned by a tenant."""

    __tablename__ = "phone_numbers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    number: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[PhoneNumberStatus] = mapped_column(
        SQLEnum(
            PhoneNumberStatus,
            name="phone_number_status",
            native_enum=False,
            length=16,
            values_callable=enum_values,
        ),
        nullable=False,
        default=PhoneNumberStatus.ACTIVE,
    )
    is_spam: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    quarantine_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    # Registered to an AI agent only; cannot carry pre-recorded audio broadcasts.
    agent_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    daily_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )


class SystemAlert(Base):
    """Operator-facing alert raised by the engine."""

    __tablename__ = "system_alerts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    related_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    alert_type: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[AlertSeverity] = mapped_column(
        SQLEnum(
            AlertSeverity,
            name="alert_severity",
            native_enum=False,
            length=16,
            values_callable=enum_values,
        ),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
