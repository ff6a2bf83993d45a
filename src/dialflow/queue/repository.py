"""
Repository for work item persistence.

Every status change goes through a conditional UPDATE that re-checks the
expected prior state, so concurrent dispatchers, sweepers and callbacks can
never double-apply a transition.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from dialflow.queue.models import (
    ACTIVE_STATUSES,
    WorkItem,
    WorkItemStatus,
)
from dialflow.shared.database import upsert_insert

# Statuses sampled by the error-rate guard.
ERROR_RATE_STATUSES: frozenset[WorkItemStatus] = frozenset(
    {
        WorkItemStatus.COMPLETED,
        WorkItemStatus.ANSWERED,
        WorkItemStatus.TRANSFERRED,
        WorkItemStatus.FAILED,
        WorkItemStatus.DNC,
    }
)


@dataclass(frozen=True)
class NewWorkItem:
    """Validated candidate ready for insertion."""

    phone_number: str
    lead_id: UUID | None = None
    lead_name: str | None = None
    priority: int = 0


class WorkItemRepository:
    """Repository for work item database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    # ------------------------------------------------------------------ reads

    async def get(self, item_id: UUID) -> WorkItem | None:
        """Get a work item by ID, bypassing stale identity-map state."""
        stmt = (
            select(WorkItem)
            .where(WorkItem.id == item_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_call_id(self, call_id: str) -> WorkItem | None:
        """Get the work item of the latest attempt carrying the provider call id."""
        stmt = (
            select(WorkItem)
            .where(WorkItem.call_id == call_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def count_active(self, broadcast_id: UUID) -> int:
        """Count items currently holding a call slot.

        Args:
            broadcast_id: Broadcast to count.

        Returns:
            Number of items in calling/in_progress.
        """
        stmt = select(func.count(WorkItem.id)).where(
            WorkItem.broadcast_id == broadcast_id,
            WorkItem.status.in_(list(ACTIVE_STATUSES)),
        )
        return (await self._session.execute(stmt)).scalar_one()

    async def count_total(self, broadcast_id: UUID) -> int:
        stmt = select(func.count(WorkItem.id)).where(WorkItem.broadcast_id == broadcast_id)
        return (await self._session.execute(stmt)).scalar_one()

    async def count_by_status(self, broadcast_id: UUID) -> dict[WorkItemStatus, int]:
        """Return item counts keyed by status (statuses with no items omitted)."""
        stmt = (
            select(WorkItem.status, func.count(WorkItem.id))
            .where(WorkItem.broadcast_id == broadcast_id)
            .group_by(WorkItem.status)
        )
        result = await self._session.execute(stmt)
        return {WorkItemStatus(status): count for status, count in result.all()}

    async def count_stale(self, broadcast_id: UUID, cutoff: datetime) -> int:
        """Count active items whose last transition is older than ``cutoff``."""
        stmt = select(func.count(WorkItem.id)).where(
            WorkItem.broadcast_id == broadcast_id,
            WorkItem.status.in_(list(ACTIVE_STATUSES)),
            WorkItem.updated_at < cutoff,
        )
        return (await self._session.execute(stmt)).scalar_one()

    async def broadcasts_with_active_items(self) -> Sequence[UUID]:
        stmt = (
            select(WorkItem.broadcast_id)
            .where(WorkItem.status.in_(list(ACTIVE_STATUSES)))
            .distinct()
        )
        return (await self._session.execute(stmt)).scalars().all()

    async def existing_phones(self, broadcast_id: UUID, phone_numbers: Sequence[str]) -> set[str]:
        """Return which phone numbers already have an item in the broadcast, in any status."""
        found: set[str] = set()
        for start in range(0, len(phone_numbers), 500):
            chunk = list(phone_numbers[start : start + 500])
            stmt = select(WorkItem.phone_number).where(
                WorkItem.broadcast_id == broadcast_id,
                WorkItem.phone_number.in_(chunk),
            )
            result = await self._session.execute(stmt)
            found.update(result.scalars().all())
        return found

    async def list_pending(
        self,
        broadcast_id: UUID,
        now: datetime,
        limit: int,
    ) -> Sequence[WorkItem]:
        """List dispatchable items in dispatch order.

        Args:
            broadcast_id: Broadcast to read.
            now: Current time; items scheduled later are not returned.
            limit: Maximum number of items.

        Returns:
            Pending items ordered by priority then insertion order.
        """
        stmt = (
            select(WorkItem)
            .where(
                WorkItem.broadcast_id == broadcast_id,
                WorkItem.status == WorkItemStatus.PENDING,
                WorkItem.attempts < WorkItem.max_attempts,
                or_(WorkItem.scheduled_at.is_(None), WorkItem.scheduled_at <= now),
            )
            .order_by(
                WorkItem.priority.desc(),
                WorkItem.queue_position.asc(),
                WorkItem.created_at.asc(),
            )
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def recent_outcomes(self, broadcast_id: UUID, limit: int) -> list[WorkItemStatus]:
        """Statuses of the most recently finished items, newest first."""
        stmt = (
            select(WorkItem.status)
            .where(
                WorkItem.broadcast_id == broadcast_id,
                WorkItem.status.in_(list(ERROR_RATE_STATUSES)),
            )
            .order_by(WorkItem.updated_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [WorkItemStatus(s) for s in result.scalars().all()]

    # ----------------------------------------------------------------- writes

    async def insert_pending(
        self,
        broadcast_id: UUID,
        items: Sequence[NewWorkItem],
        max_attempts: int,
        now: datetime,
        chunk_size: int = 500,
    ) -> int:
        """Insert new pending items, skipping rows that lose a uniqueness race.

        Args:
            broadcast_id: Owning broadcast.
            items: Candidates that passed admission.
            max_attempts: Attempt budget copied onto every item.
            now: Creation timestamp.
            chunk_size: Rows per INSERT statement.

        Returns:
            Number of rows actually inserted.
        """
        if not items:
            return 0

        position_stmt = select(func.coalesce(func.max(WorkItem.queue_position), 0)).where(
            WorkItem.broadcast_id == broadcast_id
        )
        position = (await self._session.execute(position_stmt)).scalar_one()

        inserted = 0
        for start in range(0, len(items), chunk_size):
            rows = []
            for item in items[start : start + chunk_size]:
                position += 1
                rows.append(
                    {
                        "id": uuid4(),
                        "broadcast_id": broadcast_id,
                        "lead_id": item.lead_id,
                        "lead_name": item.lead_name,
                        "phone_number": item.phone_number,
                        "status": WorkItemStatus.PENDING,
                        "attempts": 0,
                        "max_attempts": max_attempts,
                        "priority": item.priority,
                        "queue_position": position,
                        "created_at": now,
                        "updated_at": now,
                    }
                )
            stmt = (
                upsert_insert(self._session, WorkItem)
                .values(rows)
                .on_conflict_do_nothing(index_elements=["broadcast_id", "phone_number"])
                .returning(WorkItem.id)
            )
            result = await self._session.execute(stmt)
            inserted += len(result.scalars().all())
        return inserted

    async def claim(
        self,
        item_id: UUID,
        broadcast_id: UUID,
        now: datetime,
        concurrency_ceiling: int,
    ) -> int | None:
        """Atomically move a pending item to calling and count the attempt.

        The update only matches while the row is still pending with budget
        left and the broadcast's live active count is below the ceiling.

        Args:
            item_id: Item to claim.
            broadcast_id: Owning broadcast (scope of the active count).
            now: Claim timestamp.
            concurrency_ceiling: Maximum allowed active items.

        Returns:
            The item's attempt count after the claim, or None if the claim was lost.
        """
        active = aliased(WorkItem, name="active_items")
        active_count = (
            select(func.count(active.id))
            .where(
                active.broadcast_id == broadcast_id,
                active.status.in_(list(ACTIVE_STATUSES)),
            )
            .scalar_subquery()
        )
        stmt = (
            update(WorkItem)
            .where(
                WorkItem.id == item_id,
                WorkItem.status == WorkItemStatus.PENDING,
                WorkItem.attempts < WorkItem.max_attempts,
                active_count < concurrency_ceiling,
            )
            .values(
                status=WorkItemStatus.CALLING,
                attempts=WorkItem.attempts + 1,
                updated_at=now,
            )
            .returning(WorkItem.attempts)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def transition(
        self,
        item_id: UUID,
        expected: WorkItemStatus | Iterable[WorkItemStatus],
        target: WorkItemStatus,
        now: datetime,
        **values: Any,
    ) -> bool:
        """Compare-and-swap a single item's status.

        Callers validate the transition table; this only guards the race.

        Args:
            item_id: Item to update.
            expected: Status (or statuses) the row must still have.
            target: New status.
            now: Transition timestamp.
            **values: Extra columns to set in the same statement.

        Returns:
            True if the row still matched and was updated.
        """
        if isinstance(expected, WorkItemStatus):
            expected_clause = WorkItem.status == expected
        else:
            expected_clause = WorkItem.status.in_(list(expected))
        stmt = (
            update(WorkItem)
            .where(WorkItem.id == item_id, expected_clause)
            .values(status=target, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def update_fields(self, item_id: UUID, now: datetime | None = None, **values: Any) -> None:
        """Set non-status columns (call id, digit, error) on an item."""
        if now is not None:
            values["updated_at"] = now
        stmt = (
            update(WorkItem)
            .where(WorkItem.id == item_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def reclaim_stale(
        self,
        broadcast_id: UUID,
        cutoff: datetime,
        now: datetime,
    ) -> tuple[int, int]:
        """Reclaim active items whose last transition is older than ``cutoff``.

        Items with budget left go back to pending, exhausted ones fail. Both
        statements re-check the stale predicate, so a second run is a no-op.

        Returns:
            Tuple of (reset_to_pending, marked_failed).
        """
        stale = (
            WorkItem.broadcast_id == broadcast_id,
            WorkItem.status.in_(list(ACTIVE_STATUSES)),
            WorkItem.updated_at < cutoff,
        )
        reset_stmt = (
            update(WorkItem)
            .where(*stale, WorkItem.attempts < WorkItem.max_attempts)
            .values(status=WorkItemStatus.PENDING, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        reset = (await self._session.execute(reset_stmt)).rowcount or 0

        fail_stmt = (
            update(WorkItem)
            .where(*stale, WorkItem.attempts >= WorkItem.max_attempts)
            .values(
                status=WorkItemStatus.FAILED,
                last_error="No status callback before stale threshold",
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        failed = (await self._session.execute(fail_stmt)).rowcount or 0
        return reset, failed

    async def requeue_failed(self, broadcast_id: UUID, now: datetime) -> int:
        """Move every failed item back to pending with a fresh attempt budget."""
        stmt = (
            update(WorkItem)
            .where(
                WorkItem.broadcast_id == broadcast_id,
                WorkItem.status == WorkItemStatus.FAILED,
            )
            .values(
                status=WorkItemStatus.PENDING,
                attempts=0,
                last_error=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return (await self._session.execute(stmt)).rowcount or 0

    async def reset_all(self, broadcast_id: UUID, now: datetime) -> int:
        """Return every item of the broadcast to a fresh pending state."""
        stmt = (
            update(WorkItem)
            .where(WorkItem.broadcast_id == broadcast_id)
            .values(
                status=WorkItemStatus.PENDING,
                attempts=0,
                dtmf_pressed=None,
                call_id=None,
                last_error=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return (await self._session.execute(stmt)).rowcount or 0

    async def delete_pending(self, broadcast_id: UUID) -> int:
        stmt = (
            delete(WorkItem)
            .where(
                WorkItem.broadcast_id == broadcast_id,
                WorkItem.status == WorkItemStatus.PENDING,
            )
            .execution_options(synchronize_session=False)
        )
        return (await self._session.execute(stmt)).rowcount or 0

    async def delete_items(self, broadcast_id: UUID, item_ids: Sequence[UUID]) -> int:
        """Delete selected items of the broadcast that do not hold a call slot."""
        if not item_ids:
            return 0
        stmt = (
            delete(WorkItem)
            .where(
                WorkItem.broadcast_id == broadcast_id,
                WorkItem.id.in_(list(item_ids)),
                WorkItem.status.not_in(list(ACTIVE_STATUSES)),
            )
            .execution_options(synchronize_session=False)
        )
        return (await self._session.execute(stmt)).rowcount or 0
