"""
SQLAlchemy models for do-not-call entries.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum as SQLEnum, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dialflow.shared.clock import utcnow
from dialflow.shared.database import Base, enum_values


class DncSource(str, Enum):
    """Source of a do-not-call entry."""

    IMPORT = "import"
    API = "api"
    CALLBACK = "callback"


DNC_SOURCE_DB_ENUM = SQLEnum(
    DncSource,
    name="dnc_source",
    native_enum=False,
    length=16,
    values_callable=enum_values,
    validate_strings=True,
)


class DncEntry(Base):
    """Tenant-scoped do-not-call registry entry."""

    __tablename__ = "dnc_entries"
    __table_args__ = (
        UniqueConstraint("tenant_id", "phone_number", name="uq_dnc_entries_tenant_phone"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[DncSource] = mapped_column(DNC_SOURCE_DB_ENUM, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
