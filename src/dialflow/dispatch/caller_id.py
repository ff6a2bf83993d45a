"""
Caller-ID selection with local presence and rotation.
"""

from collections import Counter
from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.broadcasts.models import Broadcast
from dialflow.queue.phone import area_code
from dialflow.readiness.models import PhoneNumber, PhoneNumberStatus
from dialflow.shared.clock import as_utc

LOCAL_PRESENCE_BONUS = 50
AGENT_NUMBER_BONUS = 20
ROTATION_PENALTY = 2
DAILY_USAGE_PENALTY_CAP = 50


def is_eligible(number: PhoneNumber, now: datetime) -> bool:
    """Spam-flagged and quarantined numbers are never used as caller ID."""
    if number.is_spam:
        return False
    quarantine_until = as_utc(number.quarantine_until)
    return quarantine_until is None or quarantine_until <= now


def score_number(
    number: PhoneNumber,
    to_number: str,
    used_this_tick: int = 0,
    prefer_agent_numbers: bool = False,
) -> int:
    """Score an eligible caller-ID candidate for one destination; higher is better."""
    score = 0
    destination_area = area_code(to_number)
    if destination_area is not None and area_code(number.number) == destination_area:
        score += LOCAL_PRESENCE_BONUS
    if prefer_agent_numbers and number.agent_only:
        score += AGENT_NUMBER_BONUS
    score -= used_this_tick * ROTATION_PENALTY
    score -= min(number.daily_calls or 0, DAILY_USAGE_PENALTY_CAP)
    return score


class CallerIdPool:
    """Caller-ID inventory for one dispatch tick."""

    def __init__(
        self,
        numbers: Sequence[PhoneNumber],
        now: datetime,
        fixed: str | None = None,
        prefer_agent_numbers: bool = False,
    ) -> None:
        self._numbers = [n for n in numbers if is_eligible(n, now)]
        self._fixed = fixed
        self._prefer_agent_numbers = prefer_agent_numbers
        self._usage: Counter[UUID] = Counter()

    @property
    def usage(self) -> Counter[UUID]:
        return self._usage

    def pick(self, to_number: str) -> str | None:
        """Best caller ID for ``to_number``; None if no eligible number is left."""
        if self._fixed:
            return self._fixed
        if not self._numbers:
            return None
        best = max(
            self._numbers,
            key=lambda n: score_number(
                n,
                to_number,
                used_this_tick=self._usage[n.id],
                prefer_agent_numbers=self._prefer_agent_numbers,
            ),
        )
        self._usage[best.id] += 1
        return best.number


async def load_caller_id_pool(
    session: AsyncSession,
    broadcast: Broadcast,
    now: datetime,
) -> CallerIdPool:
    """Load eligible numbers for the broadcast's tenant.

    Pre-recorded audio broadcasts cannot use numbers registered to an AI agent only.
    """
    if broadcast.caller_id:
        return CallerIdPool([], now, fixed=broadcast.caller_id)

    stmt = select(PhoneNumber).where(
        PhoneNumber.tenant_id == broadcast.tenant_id,
        PhoneNumber.status == PhoneNumberStatus.ACTIVE,
        PhoneNumber.is_spam.is_(False),
    )
    if broadcast.uses_prerecorded_audio:
        stmt = stmt.where(PhoneNumber.agent_only.is_(False))
    numbers = (await session.execute(stmt)).scalars().all()
    return CallerIdPool(
        numbers,
        now,
        prefer_agent_numbers=not broadcast.uses_prerecorded_audio,
    )


async def record_usage(session: AsyncSession, pool: CallerIdPool, now: datetime) -> None:
    """Persist per-number usage counted during a tick."""
    for number_id, count in pool.usage.items():
        await session.execute(
            update(PhoneNumber)
            .where(PhoneNumber.id == number_id)
            .values(daily_calls=PhoneNumber.daily_calls + count, last_used_at=now)
            .execution_options(synchronize_session=False)
        )
