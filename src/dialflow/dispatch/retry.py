"""
Queue management: retries, resets and removal of work items.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.broadcasts.models import BroadcastStatus
from dialflow.broadcasts.repository import BroadcastRepository
from dialflow.queue.models import ACTIVE_STATUSES, WorkItemStatus
from dialflow.queue.repository import WorkItemRepository
from dialflow.shared.clock import Clock, utcnow
from dialflow.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RetryResult:
    retried: int = 0


@dataclass
class ResetResult:
    reset: int = 0


@dataclass
class QueueStats:
    """Per-status breakdown of a broadcast's queue."""

    total: int = 0
    pending: int = 0
    calling: int = 0
    completed: int = 0
    failed: int = 0
    by_status: dict[str, int] = field(default_factory=dict)


class QueueManager:
    """Operator actions on a broadcast's queue."""

    def __init__(self, session: AsyncSession, clock: Clock = utcnow) -> None:
        self._session = session
        self._clock = clock
        self._broadcasts = BroadcastRepository(session)
        self._items = WorkItemRepository(session)

    async def retry_failed(self, broadcast_id: UUID, tenant_id: UUID | None = None) -> RetryResult:
        """Give every failed item a fresh attempt budget.

        A completed broadcast returns to paused so the operator can restart it.

        Args:
            broadcast_id: Broadcast to retry.
            tenant_id: If given, the broadcast must belong to this tenant.

        Returns:
            Number of items moved back to pending.

        Raises:
            BroadcastNotFoundError: If the broadcast does not exist.
        """
        await self._broadcasts.get_or_raise(broadcast_id, tenant_id)
        now = self._clock()
        retried = await self._items.requeue_failed(broadcast_id, now)
        if retried:
            await self._broadcasts.set_status(
                broadcast_id,
                BroadcastStatus.PAUSED,
                now,
                expected=[BroadcastStatus.COMPLETED],
            )
        logger.info(
            "Retried failed work items",
            extra={"broadcast_id": str(broadcast_id), "retried": retried},
        )
        return RetryResult(retried=retried)

    async def reset_queue(self, broadcast_id: UUID, tenant_id: UUID | None = None) -> ResetResult:
        """Return every item to pending with attempts cleared; the broadcast goes back to draft.

        Args:
            broadcast_id: Broadcast to reset.
            tenant_id: If given, the broadcast must belong to this tenant.

        Returns:
            Number of items reset.
        """
        await self._broadcasts.get_or_raise(broadcast_id, tenant_id)
        now = self._clock()
        reset = await self._items.reset_all(broadcast_id, now)
        await self._broadcasts.set_status(
            broadcast_id,
            BroadcastStatus.DRAFT,
            now,
            last_error=None,
            last_error_at=None,
        )
        logger.info(
            "Reset broadcast queue",
            extra={"broadcast_id": str(broadcast_id), "reset": reset},
        )
        return ResetResult(reset=reset)

    async def clear_queue(self, broadcast_id: UUID, tenant_id: UUID | None = None) -> int:
        """Delete pending items only and refresh the broadcast's item total."""
        await self._broadcasts.get_or_raise(broadcast_id, tenant_id)
        removed = await self._items.delete_pending(broadcast_id)
        await self._refresh_total(broadcast_id)
        logger.info(
            "Cleared pending work items",
            extra={"broadcast_id": str(broadcast_id), "removed": removed},
        )
        return removed

    async def remove_items(
        self,
        broadcast_id: UUID,
        item_ids: Sequence[UUID],
        tenant_id: UUID | None = None,
    ) -> int:
        """Delete selected items; items holding a call slot are left alone."""
        await self._broadcasts.get_or_raise(broadcast_id, tenant_id)
        removed = await self._items.delete_items(broadcast_id, item_ids)
        await self._refresh_total(broadcast_id)
        return removed

    async def queue_stats(self, broadcast_id: UUID, tenant_id: UUID | None = None) -> QueueStats:
        await self._broadcasts.get_or_raise(broadcast_id, tenant_id)
        counts = await self._items.count_by_status(broadcast_id)
        return QueueStats(
            total=sum(counts.values()),
            pending=counts.get(WorkItemStatus.PENDING, 0),
            calling=sum(counts.get(s, 0) for s in ACTIVE_STATUSES),
            completed=counts.get(WorkItemStatus.COMPLETED, 0),
            failed=counts.get(WorkItemStatus.FAILED, 0),
            by_status={status.value: count for status, count in counts.items()},
        )

    async def _refresh_total(self, broadcast_id: UUID) -> None:
        total = await self._items.count_total(broadcast_id)
        await self._broadcasts.set_total_items(broadcast_id, total)
