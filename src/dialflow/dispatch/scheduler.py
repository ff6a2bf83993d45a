"""
Periodic background loops for the dispatcher and the sweeper.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from dialflow.broadcasts.models import BroadcastStatus
from dialflow.broadcasts.repository import BroadcastRepository
from dialflow.config import Settings, get_settings
from dialflow.dispatch.dispatcher import Dispatcher, DispatchResult
from dialflow.dispatch.sweeper import Sweeper, SweepResult
from dialflow.shared.clock import Clock, utcnow
from dialflow.shared.database import DatabaseManager
from dialflow.shared.logging import get_logger
from dialflow.telephony.interface import CallInitiationService

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class PeriodicTask:
    """Runs an async callable on a fixed interval.

    A failing run is logged and the loop carries on with the next one;
    only cancellation stops it.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        fn: Callable[[], Awaitable[Any]],
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utcnow,
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self._fn = fn
        self._sleep = sleep
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self.runs = 0
        self.failures = 0
        self.last_run_at: datetime | None = None

    async def run_once(self) -> bool:
        """Run one iteration; returns False if it raised."""
        self.runs += 1
        self.last_run_at = self._clock()
        try:
            await self._fn()
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failures += 1
            logger.exception("Periodic task run failed", extra={"task": self.name})
            return False
        return True

    async def run(self, max_iterations: int | None = None) -> None:
        iterations = 0
        while max_iterations is None or iterations < max_iterations:
            await self.run_once()
            iterations += 1
            await self._sleep(self.interval_seconds)

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=self.name)
            logger.info(
                "Periodic task started",
                extra={"task": self.name, "interval_seconds": self.interval_seconds},
            )
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Periodic task stopped", extra={"task": self.name})


class EngineSupervisor:
    """Owns the dispatch and sweep loops of one process.

    Each broadcast tick runs in its own session so one broadcast's failure
    does not roll back another's claims.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        call_service: CallInitiationService,
        settings: Settings | None = None,
        clock: Clock = utcnow,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._db = db_manager
        self._call_service = call_service
        self._settings = settings or get_settings()
        self._clock = clock
        self.dispatch_task = PeriodicTask(
            "dispatcher",
            self._settings.dispatcher_interval_seconds,
            self.dispatch_running,
            sleep=sleep,
            clock=clock,
        )
        self.sweep_task = PeriodicTask(
            "sweeper",
            self._settings.sweeper_interval_seconds,
            self.sweep,
            sleep=sleep,
            clock=clock,
        )

    async def dispatch_running(self) -> list[DispatchResult]:
        """Tick the dispatcher once for every running broadcast."""
        async with self._db.session() as session:
            broadcast_ids = await BroadcastRepository(session).list_ids_by_status(
                [BroadcastStatus.RUNNING]
            )

        results: list[DispatchResult] = []
        for broadcast_id in broadcast_ids:
            try:
                async with self._db.session() as session:
                    dispatcher = Dispatcher(
                        session,
                        self._call_service,
                        clock=self._clock,
                        settings=self._settings,
                    )
                    results.append(await dispatcher.tick(broadcast_id))
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Dispatch tick failed",
                    extra={"broadcast_id": str(broadcast_id)},
                )
        return results

    async def sweep(self) -> SweepResult:
        async with self._db.session() as session:
            sweeper = Sweeper(
                session,
                clock=self._clock,
                stale_threshold=timedelta(minutes=self._settings.stale_threshold_minutes),
            )
            return await sweeper.sweep_all()

    def start(self) -> None:
        self.dispatch_task.start()
        self.sweep_task.start()

    async def stop(self) -> None:
        await self.dispatch_task.stop()
        await self.sweep_task.stop()
