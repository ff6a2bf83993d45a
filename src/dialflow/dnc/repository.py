"""
Repository for do-not-call registry database operations.
"""

from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.dnc.models import DncEntry, DncSource
from dialflow.shared.clock import utcnow
from dialflow.shared.database import upsert_insert


class DncRepository:
    """Repository for do-not-call registry database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def get_by_phone(self, tenant_id: UUID, phone_number: str) -> DncEntry | None:
        """Get a DNC entry by phone number.

        Args:
            tenant_id: Owning tenant.
            phone_number: E.164 phone number.

        Returns:
            DncEntry if found, None otherwise.
        """
        stmt = select(DncEntry).where(
            DncEntry.tenant_id == tenant_id,
            DncEntry.phone_number == phone_number,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def exists_bulk(self, tenant_id: UUID, phone_numbers: Sequence[str]) -> set[str]:
        """Return the subset of phone numbers that are on the tenant's DNC list.

        Args:
            tenant_id: Owning tenant.
            phone_numbers: E.164 phone numbers to check.

        Returns:
            Set of listed phone numbers.
        """
        if not phone_numbers:
            return set()

        listed: set[str] = set()
        unique = list(dict.fromkeys(phone_numbers))
        # keep IN lists bounded
        for start in range(0, len(unique), 500):
            chunk = unique[start : start + 500]
            stmt = select(DncEntry.phone_number).where(
                DncEntry.tenant_id == tenant_id,
                DncEntry.phone_number.in_(chunk),
            )
            result = await self._session.execute(stmt)
            listed.update(result.scalars().all())
        return listed

    async def create(
        self,
        tenant_id: UUID,
        phone_number: str,
        source: DncSource,
        reason: str | None = None,
    ) -> DncEntry:
        """Create a DNC entry.

        Args:
            tenant_id: Owning tenant.
            phone_number: E.164 phone number.
            source: Where the entry came from.
            reason: Optional free-text reason.

        Returns:
            Created entry.
        """
        entry = DncEntry(
            tenant_id=tenant_id,
            phone_number=phone_number,
            source=source,
            reason=reason,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def delete(self, tenant_id: UUID, entry_id: UUID) -> bool:
        """Delete a DNC entry.

        Returns:
            True if a row was deleted.
        """
        stmt = delete(DncEntry).where(
            DncEntry.tenant_id == tenant_id,
            DncEntry.id == entry_id,
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) > 0

    async def list_all(
        self,
        tenant_id: UUID,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[Sequence[DncEntry], int]:
        """List DNC entries with pagination.

        Returns:
            Tuple of (entries, total count).
        """
        count_stmt = select(func.count(DncEntry.id)).where(DncEntry.tenant_id == tenant_id)
        total = (await self._session.execute(count_stmt)).scalar_one()

        stmt = (
            select(DncEntry)
            .where(DncEntry.tenant_id == tenant_id)
            .order_by(DncEntry.created_at.desc(), DncEntry.phone_number)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all(), total

    async def create_bulk(
        self,
        tenant_id: UUID,
        entries: Sequence[tuple[str, DncSource, str | None]],
    ) -> int:
        """Create multiple DNC entries, ignoring numbers already listed.

        Args:
            tenant_id: Owning tenant.
            entries: (phone_number, source, reason) tuples.

        Returns:
            Number of rows actually inserted.
        """
        if not entries:
            return 0

        rows = [
            {
                "id": uuid4(),
                "tenant_id": tenant_id,
                "phone_number": phone,
                "source": source,
                "reason": reason,
                "created_at": utcnow(),
            }
            for phone, source, reason in entries
        ]
        stmt = (
            upsert_insert(self._session, DncEntry)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["tenant_id", "phone_number"])
            .returning(DncEntry.id)
        )
        result = await self._session.execute(stmt)
        return len(result.scalars().all())
