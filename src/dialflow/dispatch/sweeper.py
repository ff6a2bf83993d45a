"""
Stuck-item sweeper.

Items waiting on a status callback that never arrives would hold a call
slot forever; the sweeper returns them to the pool or fails them once their
attempt budget is spent.
"""

from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.config import get_settings
from dialflow.queue.repository import WorkItemRepository
from dialflow.shared.clock import Clock, utcnow
from dialflow.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass
class SweepResult:
    reset_to_pending: int = 0
    marked_failed: int = 0

    def __add__(self, other: "SweepResult") -> "SweepResult":
        return SweepResult(
            reset_to_pending=self.reset_to_pending + other.reset_to_pending,
            marked_failed=self.marked_failed + other.marked_failed,
        )


class Sweeper:
    """Reclaims active items whose last transition is older than the stale threshold."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = utcnow,
        stale_threshold: timedelta | None = None,
    ) -> None:
        self._session = session
        self._clock = clock
        self._stale_threshold = stale_threshold or timedelta(
            minutes=get_settings().stale_threshold_minutes
        )
        self._items = WorkItemRepository(session)

    async def sweep(
        self,
        broadcast_id: UUID,
        stale_threshold: timedelta | None = None,
    ) -> SweepResult:
        """Reclaim stale calling/in-progress items of one broadcast.

        Running it twice in a row changes nothing the second time.

        Args:
            broadcast_id: Broadcast to sweep.
            stale_threshold: Override for the configured threshold.

        Returns:
            Number of items reset to pending and marked failed.
        """
        now = self._clock()
        cutoff = now - (stale_threshold or self._stale_threshold)
        reset, failed = await self._items.reclaim_stale(broadcast_id, cutoff, now)
        if reset or failed:
            logger.info(
                "Reclaimed stale work items",
                extra={
                    "broadcast_id": str(broadcast_id),
                    "reset_to_pending": reset,
                    "marked_failed": failed,
                },
            )
        return SweepResult(reset_to_pending=reset, marked_failed=failed)

    async def sweep_all(self) -> SweepResult:
        """Sweep every broadcast that currently has active items, whatever its status."""
        total = SweepResult()
        for broadcast_id in await self._items.broadcasts_with_active_items():
            total = total + await self.sweep(broadcast_id)
        return total
