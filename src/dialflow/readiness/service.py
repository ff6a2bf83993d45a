"""
Readiness preflight run before a broadcast is started or resumed.

Configuration problems (no audio, no usable caller IDs, empty queue) are
reported here as critical failures instead of surfacing mid-broadcast.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.broadcasts.calling_hours import is_within_calling_hours, local_time_for
from dialflow.broadcasts.models import Broadcast, IvrMode
from dialflow.broadcasts.repository import BroadcastRepository
from dialflow.config import Settings, get_settings
from dialflow.queue.models import WorkItemStatus
from dialflow.queue.repository import WorkItemRepository
from dialflow.readiness.alerts import AlertRepository
from dialflow.readiness.models import AlertSeverity, PhoneNumber, PhoneNumberStatus
from dialflow.shared.clock import Clock, as_utc, utcnow
from dialflow.shared.logging import get_logger

logger = get_logger(__name__)

MIN_RECOMMENDED_NUMBERS = 3
ERROR_RATE_SAMPLE = 50
ERROR_RATE_MIN_SAMPLE = 10
ERROR_RATE_WARNING = 0.25
HIGH_CALL_RATE = 100


class CheckStatus(str, Enum):
    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"


@dataclass(frozen=True)
class ReadinessCheck:
    id: str
    label: str
    status: CheckStatus
    message: str
    critical: bool = False


@dataclass
class ReadinessResult:
    """Outcome of the preflight battery.

    ``is_ready`` is False only when a critical check failed; warnings never
    block a start.
    """

    checks: list[ReadinessCheck] = field(default_factory=list)
    blocking_reasons: list[str] = field(default_factory=list)

    @property
    def critical_failures(self) -> int:
        return sum(1 for c in self.checks if c.critical and c.status is CheckStatus.FAIL)

    @property
    def warnings(self) -> int:
        return sum(1 for c in self.checks if c.status is CheckStatus.WARNING)

    @property
    def is_ready(self) -> bool:
        return self.critical_failures == 0

    def add(self, check: ReadinessCheck, blocking_reason: str | None = None) -> None:
        self.checks.append(check)
        if blocking_reason and check.critical and check.status is CheckStatus.FAIL:
            self.blocking_reasons.append(blocking_reason)


class ReadinessPreflight:
    """Evaluates whether a broadcast can start."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = utcnow,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._clock = clock
        self._settings = settings or get_settings()
        self._broadcasts = BroadcastRepository(session)
        self._items = WorkItemRepository(session)
        self._alerts = AlertRepository(session)

    async def check_readiness(
        self,
        broadcast_id: UUID,
        tenant_id: UUID | None = None,
    ) -> ReadinessResult:
        """Run the full readiness battery for a broadcast.

        Args:
            broadcast_id: Broadcast to check.
            tenant_id: If given, the broadcast must belong to this tenant.

        Returns:
            Every check with its status, plus the reasons blocking a start.

        Raises:
            BroadcastNotFoundError: If the broadcast does not exist.
        """
        broadcast = await self._broadcasts.get_or_raise(broadcast_id, tenant_id)
        now = self._clock()
        result = ReadinessResult()

        self._check_content(broadcast, result)
        await self._check_queue(broadcast, result)
        await self._check_phone_numbers(broadcast, now, result)
        self._check_calling_hours(broadcast, now, result)
        self._check_transfer_number(broadcast, result)
        await self._check_stuck_items(broadcast, now, result)
        await self._check_error_rate(broadcast, result)
        self._check_limits(broadcast, result)
        await self._check_alerts(broadcast, result)

        logger.info(
            "Readiness check finished",
            extra={
                "broadcast_id": str(broadcast_id),
                "is_ready": result.is_ready,
                "critical_failures": result.critical_failures,
                "warnings": result.warnings,
            },
        )
        return result

    def _check_content(self, broadcast: Broadcast, result: ReadinessResult) -> None:
        result.add(
            ReadinessCheck(
                id="broadcast_name",
                label="Broadcast name",
                status=CheckStatus.PASS if broadcast.name else CheckStatus.FAIL,
                message=broadcast.name or "No name set",
                critical=True,
            ),
            "Broadcast needs a name",
        )
        result.add(
            ReadinessCheck(
                id="message_text",
                label="Message script",
                status=CheckStatus.PASS if broadcast.message_text else CheckStatus.FAIL,
                message=(broadcast.message_text or "No message script")[:50],
                critical=True,
            ),
            "No message script written",
        )
        if broadcast.ivr_mode is not IvrMode.AI_CONVERSATIONAL:
            result.add(
                ReadinessCheck(
                    id="audio_generated",
                    label="Audio generated",
                    status=CheckStatus.PASS if broadcast.audio_url else CheckStatus.FAIL,
                    message="Audio ready" if broadcast.audio_url else "No audio generated for the message",
                    critical=True,
                ),
                "Audio not generated - generate audio before starting",
            )

    async def _check_queue(self, broadcast: Broadcast, result: ReadinessResult) -> None:
        counts = await self._items.count_by_status(broadcast.id)
        total = sum(counts.values())
        pending = counts.get(WorkItemStatus.PENDING, 0)
        result.add(
            ReadinessCheck(
                id="leads_in_queue",
                label="Leads in queue",
                status=CheckStatus.PASS if pending else CheckStatus.FAIL,
                message=f"{total} total ({pending} pending)" if total else "No leads added",
                critical=True,
            ),
            "No pending leads in broadcast queue - add leads first",
        )

    async def _check_phone_numbers(
        self,
        broadcast: Broadcast,
        now: datetime,
        result: ReadinessResult,
    ) -> None:
        stmt = select(PhoneNumber).where(
            PhoneNumber.tenant_id == broadcast.tenant_id,
            PhoneNumber.status == PhoneNumberStatus.ACTIVE,
        )
        numbers = (await self._session.execute(stmt)).scalars().all()

        def quarantined(number: PhoneNumber) -> bool:
            until = as_utc(number.quarantine_until)
            return until is not None and until > now

        spam = [n for n in numbers if n.is_spam]
        eligible = [n for n in numbers if not n.is_spam and not quarantined(n)]
        agent_only_blocked = False
        if broadcast.uses_prerecorded_audio:
            agent_only_blocked = any(n.agent_only for n in eligible)
            eligible = [n for n in eligible if not n.agent_only]
        quarantined_count = sum(1 for n in numbers if quarantined(n))

        if broadcast.caller_id:
            status, message = CheckStatus.PASS, f"Fixed caller ID {broadcast.caller_id}"
        elif not eligible:
            status = CheckStatus.FAIL
            message = (
                "Available numbers are reserved for AI agent calls; audio broadcasts need other numbers"
                if agent_only_blocked
                else "No phone numbers available for broadcasts"
            )
        elif len(eligible) < MIN_RECOMMENDED_NUMBERS:
            status = CheckStatus.WARNING
            message = (
                f"Only {len(eligible)} number(s) - add more for better pickup rates with high volume"
            )
        else:
            status = CheckStatus.PASS
            message = f"{len(eligible)} number(s) ready"
            if quarantined_count:
                message += f" ({quarantined_count} quarantined)"

        result.add(
            ReadinessCheck(
                id="phone_numbers",
                label="Phone numbers available",
                status=status,
                message=message,
                critical=status is CheckStatus.FAIL,
            ),
            message,
        )

        if spam:
            result.add(
                ReadinessCheck(
                    id="spam_numbers",
                    label="Spam-flagged numbers",
                    status=CheckStatus.WARNING,
                    message=f"{len(spam)} number(s) flagged as spam and excluded from use",
                )
            )

    def _check_calling_hours(self, broadcast: Broadcast, now: datetime, result: ReadinessResult) -> None:
        if broadcast.bypass_calling_hours:
            status, message = CheckStatus.PASS, "Bypass enabled - can call anytime"
        elif is_within_calling_hours(broadcast, now):
            status = CheckStatus.PASS
            message = f"Within calling hours ({_window(broadcast)})"
        else:
            status = CheckStatus.WARNING
            current = local_time_for(broadcast, now).strftime("%H:%M")
            message = f"Outside calling hours. Current: {current} {broadcast.timezone}. Hours: {_window(broadcast)}"
        result.add(
            ReadinessCheck(id="calling_hours", label="Calling hours", status=status, message=message)
        )

    def _check_transfer_number(self, broadcast: Broadcast, result: ReadinessResult) -> None:
        if not broadcast.ivr_enabled:
            return
        transfer = next(
            (a for a in broadcast.dtmf_actions or [] if a.get("action") == "transfer"),
            None,
        )
        if transfer is None:
            return
        target = transfer.get("transfer_to")
        result.add(
            ReadinessCheck(
                id="transfer_number",
                label="Transfer number configured",
                status=CheckStatus.PASS if target else CheckStatus.WARNING,
                message=f"Transfer to: {target}" if target else "Transfer action enabled but no number set",
            )
        )

    async def _check_stuck_items(self, broadcast: Broadcast, now: datetime, result: ReadinessResult) -> None:
        threshold = timedelta(minutes=self._settings.stale_threshold_minutes)
        stuck = await self._items.count_stale(broadcast.id, now - threshold)
        if stuck:
            result.add(
                ReadinessCheck(
                    id="stuck_calls",
                    label="Stuck calls detected",
                    status=CheckStatus.WARNING,
                    message=(
                        f"{stuck} call(s) stuck in calling status for more than "
                        f"{self._settings.stale_threshold_minutes:g} min; the sweeper will reset them"
                    ),
                )
            )

    async def _check_error_rate(self, broadcast: Broadcast, result: ReadinessResult) -> None:
        outcomes = await self._items.recent_outcomes(broadcast.id, ERROR_RATE_SAMPLE)
        if len(outcomes) < ERROR_RATE_MIN_SAMPLE:
            return
        rate = sum(1 for s in outcomes if s is WorkItemStatus.FAILED) / len(outcomes)
        if rate >= ERROR_RATE_WARNING:
            result.add(
                ReadinessCheck(
                    id="error_rate",
                    label="Recent error rate",
                    status=CheckStatus.WARNING,
                    message=f"{rate * 100:.1f}% of recent calls failed. Check configuration.",
                )
            )

    def _check_limits(self, broadcast: Broadcast, result: ReadinessResult) -> None:
        max_attempts = broadcast.max_attempts or 1
        result.add(
            ReadinessCheck(
                id="max_attempts",
                label="Retry configuration",
                status=CheckStatus.PASS if max_attempts > 1 else CheckStatus.WARNING,
                message=(
                    f"Will retry failed calls up to {max_attempts} times"
                    if max_attempts > 1
                    else "No retries configured. Consider setting max_attempts > 1 for better reach."
                ),
            )
        )
        cpm = broadcast.calls_per_minute
        result.add(
            ReadinessCheck(
                id="calls_per_minute",
                label="Call rate",
                status=CheckStatus.PASS if cpm <= HIGH_CALL_RATE else CheckStatus.WARNING,
                message=f"{cpm} calls/minute"
                + (" (high rate may trigger rate limits)" if cpm > HIGH_CALL_RATE else ""),
            )
        )

    async def _check_alerts(self, broadcast: Broadcast, result: ReadinessResult) -> None:
        open_alerts = await self._alerts.count_unacknowledged(
            broadcast.tenant_id,
            [AlertSeverity.ERROR, AlertSeverity.CRITICAL],
            related_id=broadcast.id,
        )
        if open_alerts:
            result.add(
                ReadinessCheck(
                    id="system_alerts",
                    label="Unresolved alerts",
                    status=CheckStatus.WARNING,
                    message=f"{open_alerts} unacknowledged alert(s) for this broadcast",
                )
            )


def _window(broadcast: Broadcast) -> str:
    start = broadcast.calling_hours_start.strftime("%H:%M") if broadcast.calling_hours_start else "any"
    end = broadcast.calling_hours_end.strftime("%H:%M") if broadcast.calling_hours_end else "any"
    return f"{start} - {end} {broadcast.timezone}"
