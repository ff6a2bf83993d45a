"""
SQLAlchemy models for broadcast work items.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from dialflow.shared.clock import utcnow
from dialflow.shared.database import Base, enum_values
from dialflow.shared.exceptions import InvalidStatusTransitionError


class WorkItemStatus(str, Enum):
    """Work item lifecycle status."""

    PENDING = "pending"
    CALLING = "calling"
    IN_PROGRESS = "in_progress"
    ANSWERED = "answered"
    COMPLETED = "completed"
    TRANSFERRED = "transferred"
    CALLBACK = "callback"
    BUSY = "busy"
    NO_ANSWER = "no_answer"
    DNC = "dnc"
    FAILED = "failed"


# Items holding a provider call slot.
ACTIVE_STATUSES: frozenset[WorkItemStatus] = frozenset(
    {WorkItemStatus.CALLING, WorkItemStatus.IN_PROGRESS}
)

# Statuses never re-entered into pending without an operator action.
TERMINAL_STATUSES: frozenset[WorkItemStatus] = frozenset(
    {
        WorkItemStatus.COMPLETED,
        WorkItemStatus.ANSWERED,
        WorkItemStatus.TRANSFERRED,
        WorkItemStatus.CALLBACK,
        WorkItemStatus.DNC,
        WorkItemStatus.FAILED,
    }
)

# Finished attempts (terminal plus busy/no_answer); used for error-rate windows.
FINISHED_STATUSES: frozenset[WorkItemStatus] = TERMINAL_STATUSES | {
    WorkItemStatus.BUSY,
    WorkItemStatus.NO_ANSWER,
}

_CALL_OUTCOMES: frozenset[WorkItemStatus] = frozenset(
    {
        WorkItemStatus.ANSWERED,
        WorkItemStatus.COMPLETED,
        WorkItemStatus.TRANSFERRED,
        WorkItemStatus.CALLBACK,
        WorkItemStatus.BUSY,
        WorkItemStatus.NO_ANSWER,
        WorkItemStatus.DNC,
        WorkItemStatus.FAILED,
    }
)

VALID_TRANSITIONS: dict[WorkItemStatus, frozenset[WorkItemStatus]] = {
    WorkItemStatus.PENDING: frozenset({WorkItemStatus.CALLING}),
    WorkItemStatus.CALLING: _CALL_OUTCOMES
    | {WorkItemStatus.IN_PROGRESS, WorkItemStatus.PENDING},
    WorkItemStatus.IN_PROGRESS: _CALL_OUTCOMES | {WorkItemStatus.PENDING},
    WorkItemStatus.ANSWERED: frozenset(
        {
            WorkItemStatus.COMPLETED,
            WorkItemStatus.TRANSFERRED,
            WorkItemStatus.CALLBACK,
            WorkItemStatus.DNC,
        }
    ),
    WorkItemStatus.COMPLETED: frozenset(),
    WorkItemStatus.TRANSFERRED: frozenset(),
    WorkItemStatus.CALLBACK: frozenset(),
    WorkItemStatus.BUSY: frozenset(),
    WorkItemStatus.NO_ANSWER: frozenset(),
    WorkItemStatus.DNC: frozenset(),
    WorkItemStatus.FAILED: frozenset(),
}

# Statuses a provider callback may report. pending and calling are owned by
# the dispatcher claim and the sweeper.
CALLBACK_TARGETS: frozenset[WorkItemStatus] = _CALL_OUTCOMES | {WorkItemStatus.IN_PROGRESS}


def can_transition(
    current: WorkItemStatus,
    target: WorkItemStatus,
    *,
    operator: bool = False,
) -> bool:
    """Return True if ``current -> target`` is allowed.

    Operator actions (retry/reset) may additionally send any item back to
    pending.
    """
    if operator and target is WorkItemStatus.PENDING:
        return True
    return target in VALID_TRANSITIONS[current]


def ensure_transition(
    current: WorkItemStatus,
    target: WorkItemStatus,
    *,
    operator: bool = False,
) -> None:
    """Raise InvalidStatusTransitionError if the transition is not allowed."""
    if not can_transition(current, target, operator=operator):
        raise InvalidStatusTransitionError(
            current_status=current,
            target_status=target,
            valid_transitions=VALID_TRANSITIONS[current],
        )


WORK_ITEM_STATUS_DB_ENUM = SQLEnum(
    WorkItemStatus,
    name="work_item_status",
    native_enum=False,
    length=32,
    values_callable=enum_values,
    validate_strings=True,
)


class WorkItem(Base):
    """One phone number's unit of dial work within a broadcast."""

    __tablename__ = "work_items"
    __table_args__ = (
        UniqueConstraint("broadcast_id", "phone_number", name="uq_work_items_broadcast_phone"),
        Index("ix_work_items_broadcast_status", "broadcast_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    broadcast_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("broadcasts.id", ondelete="CASCADE"),
        nullable=False,
    )
    lead_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    lead_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[WorkItemStatus] = mapped_column(
        WORK_ITEM_STATUS_DB_ENUM,
        nullable=False,
        default=WorkItemStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    queue_position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scheduled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    dtmf_pressed: Mapped[str | None] = mapped_column(String(8), nullable=True)
    call_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    last_error: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:
        return (
            f"<WorkItem(id={self.id}, phone={self.phone_number}, "
            f"status={self.status}, attempts={self.attempts}/{self.max_attempts})>"
        )
