"""
Broadcast lifecycle: create, start (behind the readiness preflight) and stop.
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.broadcasts.models import Broadcast, BroadcastStatus
from dialflow.broadcasts.repository import BroadcastRepository
from dialflow.config import Settings, get_settings
from dialflow.dispatch.sweeper import Sweeper
from dialflow.readiness.service import ReadinessPreflight, ReadinessResult
from dialflow.shared.clock import Clock, utcnow
from dialflow.shared.exceptions import ValidationError
from dialflow.shared.logging import get_logger

logger = get_logger(__name__)

STARTABLE_STATUSES = (BroadcastStatus.DRAFT, BroadcastStatus.PAUSED)


@dataclass
class StartResult:
    started: bool
    status: BroadcastStatus
    readiness: ReadinessResult


class BroadcastService:
    """Service layer for broadcast lifecycle operations."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = utcnow,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._clock = clock
        self._settings = settings or get_settings()
        self._repository = BroadcastRepository(session)

    async def create(self, tenant_id: UUID, **fields: Any) -> Broadcast:
        now = self._clock()
        broadcast = await self._repository.create(
            tenant_id,
            status=BroadcastStatus.DRAFT,
            created_at=now,
            updated_at=now,
            **fields,
        )
        logger.info(
            "Broadcast created",
            extra={"broadcast_id": str(broadcast.id), "tenant_id": str(tenant_id)},
        )
        return broadcast

    async def get(self, broadcast_id: UUID, tenant_id: UUID | None = None) -> Broadcast:
        return await self._repository.get_or_raise(broadcast_id, tenant_id)

    async def start(self, broadcast_id: UUID, tenant_id: UUID | None = None) -> StartResult:
        """Start or resume a broadcast if the preflight passes.

        Stale items left over from an earlier run are reclaimed first. A
        failing preflight is reported in the result, not raised.

        Args:
            broadcast_id: Broadcast to start.
            tenant_id: If given, the broadcast must belong to this tenant.

        Returns:
            Whether the broadcast is now running, with the preflight outcome.

        Raises:
            BroadcastNotFoundError: If the broadcast does not exist.
            ValidationError: If the broadcast already completed.
        """
        broadcast = await self._repository.get_or_raise(broadcast_id, tenant_id)
        if broadcast.status is BroadcastStatus.COMPLETED:
            raise ValidationError(
                "Broadcast already completed; retry failed items or reset the queue first"
            )

        await Sweeper(self._session, clock=self._clock).sweep(broadcast_id)
        readiness = await ReadinessPreflight(
            self._session, clock=self._clock, settings=self._settings
        ).check_readiness(broadcast_id)

        if not readiness.is_ready:
            logger.warning(
                "Broadcast start refused",
                extra={
                    "broadcast_id": str(broadcast_id),
                    "blocking_reasons": readiness.blocking_reasons,
                },
            )
            return StartResult(started=False, status=broadcast.status, readiness=readiness)

        if broadcast.status is not BroadcastStatus.RUNNING:
            await self._repository.set_status(
                broadcast_id,
                BroadcastStatus.RUNNING,
                self._clock(),
                expected=STARTABLE_STATUSES,
                last_error=None,
                last_error_at=None,
            )
            logger.info("Broadcast started", extra={"broadcast_id": str(broadcast_id)})

        broadcast = await self._repository.get_or_raise(broadcast_id)
        return StartResult(
            started=broadcast.status is BroadcastStatus.RUNNING,
            status=broadcast.status,
            readiness=readiness,
        )

    async def stop(self, broadcast_id: UUID, tenant_id: UUID | None = None) -> Broadcast:
        """Pause a running broadcast; calls already in flight are left alone.

        Raises:
            BroadcastNotFoundError: If the broadcast does not exist.
        """
        await self._repository.get_or_raise(broadcast_id, tenant_id)
        stopped = await self._repository.set_status(
            broadcast_id,
            BroadcastStatus.PAUSED,
            self._clock(),
            expected=[BroadcastStatus.RUNNING],
        )
        if stopped:
            logger.info("Broadcast stopped", extra={"broadcast_id": str(broadcast_id)})
        return await self._repository.get_or_raise(broadcast_id)
