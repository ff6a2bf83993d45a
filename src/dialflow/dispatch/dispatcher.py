"""
Dispatcher: one control-loop tick for a broadcast.

Each tick recomputes the live active-call count, asks the estimator for
headroom, claims pending items with compare-and-swap updates and hands them
to the call initiation service.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.broadcasts.calling_hours import is_within_calling_hours
from dialflow.broadcasts.models import Broadcast, BroadcastStatus
from dialflow.broadcasts.repository import BroadcastRepository
from dialflow.config import Settings, get_settings
from dialflow.dispatch.caller_id import load_caller_id_pool, record_usage
from dialflow.pacing.estimator import (
    ConcurrencySettings,
    DialingRateMetrics,
    compute_dialing_rate,
    tick_budget,
)
from dialflow.pacing.learner import PacingRecommendation, learn_from_history
from dialflow.pacing.repository import PacingRepository
from dialflow.queue.models import ACTIVE_STATUSES, WorkItem, WorkItemStatus, ensure_transition
from dialflow.queue.repository import WorkItemRepository
from dialflow.readiness.alerts import AlertRepository
from dialflow.readiness.models import AlertSeverity
from dialflow.shared.clock import Clock, utcnow
from dialflow.shared.logging import get_logger
from dialflow.telephony.interface import (
    CallInitiationRequest,
    CallInitiationService,
    TelephonyProviderError,
)

logger = get_logger(__name__)

HIGH_ERROR_RATE_ALERT = "high_error_rate"
ERROR_RATE_WARNING_ALERT = "error_rate_warning"


@dataclass
class DispatchResult:
    """Outcome of one dispatcher tick."""

    broadcast_id: UUID
    claimed: int = 0
    initiated: int = 0
    requeued: int = 0
    failed: int = 0
    skipped_reason: str | None = None
    completed: bool = False
    paused: bool = False
    metrics: DialingRateMetrics | None = None
    recommendation: PacingRecommendation | None = None


@dataclass(frozen=True)
class _Claim:
    item: WorkItem
    attempts: int
    caller_id: str | None


class Dispatcher:
    """Drives pending work items of running broadcasts into calls."""

    def __init__(
        self,
        session: AsyncSession,
        call_service: CallInitiationService,
        *,
        clock: Clock = utcnow,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._call_service = call_service
        self._clock = clock
        self._settings = settings or get_settings()
        self._broadcasts = BroadcastRepository(session)
        self._items = WorkItemRepository(session)
        self._pacing = PacingRepository(session)
        self._alerts = AlertRepository(session)

    async def tick(self, broadcast_id: UUID) -> DispatchResult:
        """Run one dispatch tick for a broadcast.

        Args:
            broadcast_id: Broadcast to dispatch.

        Returns:
            Counts of claimed / initiated / requeued / failed items, or the
            reason the tick did nothing.

        Raises:
            BroadcastNotFoundError: If the broadcast does not exist.
        """
        now = self._clock()
        result = DispatchResult(broadcast_id=broadcast_id)
        broadcast = await self._broadcasts.get_or_raise(broadcast_id)

        if broadcast.status is not BroadcastStatus.RUNNING:
            result.skipped_reason = f"broadcast_{broadcast.status.value}"
            return result

        if not is_within_calling_hours(broadcast, now):
            result.skipped_reason = "outside_calling_hours"
            return result

        if await self._error_rate_paused(broadcast, now):
            result.skipped_reason = "error_rate_paused"
            result.paused = True
            return result

        _, recommendation, metrics = await self.pacing_for(broadcast)
        active = metrics.current_concurrency
        result.metrics = metrics
        result.recommendation = recommendation

        budget = tick_budget(metrics, self._settings.dispatcher_interval_seconds)
        if budget == 0:
            result.skipped_reason = "no_available_slots"
            return result

        claims = await self._claim(broadcast, budget, metrics.concurrency_ceiling, now)
        result.claimed = len(claims)
        # make claims visible to other dispatchers and the sweeper before dialing
        await self._session.commit()

        for claim in claims:
            await self._initiate(broadcast, claim, result)

        if not claims:
            result.completed = await self._complete_if_drained(broadcast, now)
            if result.skipped_reason is None:
                result.skipped_reason = "completed" if result.completed else "no_pending_items"

        logger.info(
            "Dispatch tick finished",
            extra={
                "broadcast_id": str(broadcast_id),
                "active_calls": active,
                "available_slots": metrics.available_slots,
                "recommended_rate": metrics.recommended_rate,
                "claimed": result.claimed,
                "initiated": result.initiated,
                "requeued": result.requeued,
                "failed": result.failed,
            },
        )
        return result

    async def pacing_for(
        self,
        broadcast: Broadcast,
    ) -> tuple[ConcurrencySettings, PacingRecommendation, DialingRateMetrics]:
        """Effective settings, learner output and live metrics for a broadcast.

        The broadcast's own calls-per-minute seeds the rate; the concurrency
        ceiling comes from the broadcast override or the tenant settings.
        """
        concurrency = await self._pacing.get_settings(broadcast.tenant_id, broadcast.id)
        concurrency = replace(
            concurrency,
            calls_per_minute=broadcast.calls_per_minute or concurrency.calls_per_minute,
        )
        history = await self._pacing.recent_stats(
            broadcast.tenant_id,
            self._settings.pacing_window,
            broadcast_id=broadcast.id,
        )
        recommendation = learn_from_history(
            history,
            concurrency,
            seed_calls_per_minute=concurrency.calls_per_minute,
            window=self._settings.pacing_window,
        )
        active = await self._items.count_active(broadcast.id)
        return concurrency, recommendation, compute_dialing_rate(active, concurrency, recommendation)

    async def _claim(
        self,
        broadcast: Broadcast,
        budget: int,
        ceiling: int,
        now: datetime,
    ) -> list[_Claim]:
        pending = await self._items.list_pending(broadcast.id, now, limit=budget)
        if not pending:
            return []

        pool = await load_caller_id_pool(self._session, broadcast, now)
        claims: list[_Claim] = []
        for item in pending:
            attempts = await self._items.claim(item.id, broadcast.id, now, ceiling)
            if attempts is None:
                continue
            claims.append(_Claim(item=item, attempts=attempts, caller_id=pool.pick(item.phone_number)))
        await record_usage(self._session, pool, now)
        return claims

    async def _initiate(self, broadcast: Broadcast, claim: _Claim, result: DispatchResult) -> None:
        item = claim.item
        request = CallInitiationRequest(
            phone_number=item.phone_number,
            caller_id=claim.caller_id,
            agent_id=broadcast.agent_id,
            work_item_id=item.id,
            broadcast_id=broadcast.id,
            callback_url=self._settings.status_callback_url,
            metadata={"attempt": claim.attempts, "lead_id": str(item.lead_id) if item.lead_id else None},
        )
        try:
            response = await self._call_service.create_call(request)
        except TelephonyProviderError as e:
            await self._handle_initiation_failure(claim, str(e), result)
            return

        await self._items.update_fields(item.id, call_id=response.call_id, last_error=None)
        result.initiated += 1

    async def _handle_initiation_failure(
        self,
        claim: _Claim,
        error: str,
        result: DispatchResult,
    ) -> None:
        now = self._clock()
        exhausted = claim.attempts >= claim.item.max_attempts
        target = WorkItemStatus.FAILED if exhausted else WorkItemStatus.PENDING
        ensure_transition(WorkItemStatus.CALLING, target)
        moved = await self._items.transition(
            claim.item.id,
            expected=WorkItemStatus.CALLING,
            target=target,
            now=now,
            last_error=error[:500],
        )
        if moved:
            if exhausted:
                result.failed += 1
            else:
                result.requeued += 1

        logger.warning(
            "Call initiation failed",
            extra={
                "work_item_id": str(claim.item.id),
                "attempts": claim.attempts,
                "max_attempts": claim.item.max_attempts,
                "next_status": target.value,
                "error": error,
            },
        )

    async def _error_rate_paused(self, broadcast: Broadcast, now: datetime) -> bool:
        """Pause the broadcast when recent failures cross the pause threshold."""
        outcomes = await self._items.recent_outcomes(
            broadcast.id, self._settings.error_rate_window
        )
        if len(outcomes) < self._settings.error_rate_min_sample:
            return False

        failed = sum(1 for status in outcomes if status is WorkItemStatus.FAILED)
        rate = failed / len(outcomes)
        percent = f"{rate * 100:.1f}%"

        if rate >= self._settings.error_rate_pause_threshold:
            await self._broadcasts.set_status(
                broadcast.id,
                BroadcastStatus.PAUSED,
                now,
                expected=[BroadcastStatus.RUNNING],
                last_error=f"Auto-paused: {percent} error rate in last {len(outcomes)} calls",
                last_error_at=now,
            )
            await self._alerts.create(
                tenant_id=broadcast.tenant_id,
                related_id=broadcast.id,
                alert_type=HIGH_ERROR_RATE_ALERT,
                severity=AlertSeverity.CRITICAL,
                message=(
                    f"Broadcast paused due to {percent} error rate. "
                    "Please check your configuration."
                ),
            )
            logger.error(
                "Broadcast auto-paused on error rate",
                extra={"broadcast_id": str(broadcast.id), "error_rate": rate},
            )
            return True

        if rate >= self._settings.error_rate_alert_threshold:
            open_warnings = await self._alerts.count_unacknowledged(
                broadcast.tenant_id,
                [AlertSeverity.WARNING],
                related_id=broadcast.id,
                alert_type=ERROR_RATE_WARNING_ALERT,
            )
            if open_warnings == 0:
                await self._alerts.create(
                    tenant_id=broadcast.tenant_id,
                    related_id=broadcast.id,
                    alert_type=ERROR_RATE_WARNING_ALERT,
                    severity=AlertSeverity.WARNING,
                    message=f"Broadcast has {percent} error rate. Monitor closely.",
                )
        return False

    async def _complete_if_drained(self, broadcast: Broadcast, now: datetime) -> bool:
        counts = await self._items.count_by_status(broadcast.id)
        total = sum(counts.values())
        pending = counts.get(WorkItemStatus.PENDING, 0)
        active = sum(counts.get(s, 0) for s in ACTIVE_STATUSES)
        if total == 0 or pending or active:
            return False
        completed = await self._broadcasts.set_status(
            broadcast.id,
            BroadcastStatus.COMPLETED,
            now,
            expected=[BroadcastStatus.RUNNING],
        )
        if completed:
            logger.info(
                "Broadcast completed",
                extra={"broadcast_id": str(broadcast.id), "total_items": total},
            )
        return completed
