"""
Admission filter: validates and screens candidates before they enter the queue.

Candidate-level problems (unparseable numbers, DNC matches, duplicates) are
reported as counts, never raised.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.broadcasts.repository import BroadcastRepository
from dialflow.config import get_settings
from dialflow.dnc.service import DoNotCallRegistry
from dialflow.leads.models import Lead
from dialflow.queue.phone import normalize_phone_number
from dialflow.queue.repository import NewWorkItem, WorkItemRepository
from dialflow.shared.clock import Clock, utcnow
from dialflow.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Candidate:
    """A phone number offered for enqueue, optionally linked to a lead."""

    phone_number: str
    lead_id: UUID | None = None
    name: str | None = None
    priority: int = 0


@dataclass
class EnqueueResult:
    """Outcome of an enqueue call.

    ``skipped`` covers every candidate not added for a reason other than the
    DNC list (``invalid`` and ``duplicates`` break it down).
    """

    added: int = 0
    skipped: int = 0
    dnc_filtered: int = 0
    invalid: int = 0
    duplicates: int = 0
    total_items: int = 0
    reason: str | None = None

    def describe(self) -> str:
        parts: list[str] = []
        if self.dnc_filtered:
            parts.append(f"{self.dnc_filtered} numbers skipped: already on DNC list")
        if self.duplicates:
            parts.append(f"{self.duplicates} numbers skipped: already in this broadcast")
        if self.invalid:
            parts.append(f"{self.invalid} numbers skipped: invalid phone number")
        missing = self.skipped - self.duplicates - self.invalid
        if missing > 0:
            parts.append(f"{missing} leads skipped: not found")
        return "; ".join(parts) if parts else "No candidates provided"


class AdmissionFilter:
    """Normalizes, DNC-screens and dedupes candidates, then inserts them as pending."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = utcnow,
        chunk_size: int | None = None,
    ) -> None:
        self._session = session
        self._clock = clock
        self._chunk_size = chunk_size or get_settings().insert_chunk_size
        self._broadcasts = BroadcastRepository(session)
        self._items = WorkItemRepository(session)
        self._dnc = DoNotCallRegistry(session)

    async def enqueue(
        self,
        broadcast_id: UUID,
        candidates: Sequence[str | Candidate],
        tenant_id: UUID | None = None,
        result: EnqueueResult | None = None,
    ) -> EnqueueResult:
        """Enqueue phone numbers or candidates into a broadcast.

        Args:
            broadcast_id: Target broadcast.
            candidates: Raw phone strings or Candidate records.
            tenant_id: If given, the broadcast must belong to this tenant.
            result: Partially filled result to accumulate into.

        Returns:
            Counts of added / skipped / DNC-filtered candidates.

        Raises:
            BroadcastNotFoundError: If the broadcast does not exist.
        """
        broadcast = await self._broadcasts.get_or_raise(broadcast_id, tenant_id)
        result = result or EnqueueResult()

        normalized: list[NewWorkItem] = []
        for candidate in candidates:
            if isinstance(candidate, str):
                candidate = Candidate(phone_number=candidate)
            phone = normalize_phone_number(candidate.phone_number)
            if phone is None:
                result.invalid += 1
                result.skipped += 1
                continue
            normalized.append(
                NewWorkItem(
                    phone_number=phone,
                    lead_id=candidate.lead_id,
                    lead_name=candidate.name,
                    priority=candidate.priority,
                )
            )

        phones = [item.phone_number for item in normalized]
        listed = await self._dnc.listed_bulk(broadcast.tenant_id, phones)
        existing = await self._items.existing_phones(broadcast_id, phones)

        survivors: list[NewWorkItem] = []
        seen: set[str] = set()
        for item in normalized:
            if item.phone_number in listed:
                result.dnc_filtered += 1
            elif item.phone_number in existing or item.phone_number in seen:
                result.duplicates += 1
                result.skipped += 1
            else:
                seen.add(item.phone_number)
                survivors.append(item)

        inserted = await self._items.insert_pending(
            broadcast_id,
            survivors,
            max_attempts=max(broadcast.max_attempts or 1, 1),
            now=self._clock(),
            chunk_size=self._chunk_size,
        )
        lost_races = len(survivors) - inserted
        result.added += inserted
        result.duplicates += lost_races
        result.skipped += lost_races

        result.total_items = await self._items.count_total(broadcast_id)
        await self._broadcasts.set_total_items(broadcast_id, result.total_items)

        if result.added == 0:
            result.reason = result.describe()

        logger.info(
            "Enqueued candidates",
            extra={
                "broadcast_id": str(broadcast_id),
                "added": result.added,
                "skipped": result.skipped,
                "dnc_filtered": result.dnc_filtered,
                "total_items": result.total_items,
            },
        )
        return result

    async def enqueue_leads(
        self,
        broadcast_id: UUID,
        lead_ids: Sequence[UUID],
        tenant_id: UUID | None = None,
    ) -> EnqueueResult:
        """Enqueue CRM leads; leads flagged do-not-call count as DNC-filtered.

        Args:
            broadcast_id: Target broadcast.
            lead_ids: Leads to enqueue.
            tenant_id: If given, the broadcast must belong to this tenant.

        Returns:
            Counts of added / skipped / DNC-filtered leads.
        """
        broadcast = await self._broadcasts.get_or_raise(broadcast_id, tenant_id)
        unique_ids = list(dict.fromkeys(lead_ids))

        leads: list[Lead] = []
        for start in range(0, len(unique_ids), 500):
            stmt = select(Lead).where(
                Lead.tenant_id == broadcast.tenant_id,
                Lead.id.in_(unique_ids[start : start + 500]),
            )
            leads.extend((await self._session.execute(stmt)).scalars().all())

        result = EnqueueResult(skipped=len(unique_ids) - len(leads))
        candidates: list[Candidate] = []
        for lead in leads:
            if lead.do_not_call:
                result.dnc_filtered += 1
                continue
            candidates.append(
                Candidate(phone_number=lead.phone_number, lead_id=lead.id, name=lead.name)
            )

        return await self.enqueue(broadcast_id, candidates, result=result)
