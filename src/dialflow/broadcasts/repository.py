"""
Repository for broadcast persistence.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.broadcasts.models import Broadcast, BroadcastStatus
from dialflow.shared.exceptions import BroadcastNotFoundError


class BroadcastRepository:
    """Repository for broadcast database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def get(self, broadcast_id: UUID, tenant_id: UUID | None = None) -> Broadcast | None:
        """Get a broadcast by ID, optionally scoped to a tenant.

        Args:
            broadcast_id: Broadcast UUID.
            tenant_id: If given, the broadcast must belong to this tenant.

        Returns:
            Broadcast if found, None otherwise.
        """
        stmt = (
            select(Broadcast)
            .where(Broadcast.id == broadcast_id)
            .execution_options(populate_existing=True)
        )
        if tenant_id is not None:
            stmt = stmt.where(Broadcast.tenant_id == tenant_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_raise(self, broadcast_id: UUID, tenant_id: UUID | None = None) -> Broadcast:
        """Get a broadcast or raise BroadcastNotFoundError."""
        broadcast = await self.get(broadcast_id, tenant_id)
        if broadcast is None:
            raise BroadcastNotFoundError(broadcast_id)
        return broadcast

    async def create(self, tenant_id: UUID, **fields: Any) -> Broadcast:
        broadcast = Broadcast(tenant_id=tenant_id, **fields)
        self._session.add(broadcast)
        await self._session.flush()
        return broadcast

    async def list_ids_by_status(self, statuses: Iterable[BroadcastStatus]) -> Sequence[UUID]:
        """IDs of broadcasts in any of the given statuses, oldest first."""
        stmt = (
            select(Broadcast.id)
            .where(Broadcast.status.in_(list(statuses)))
            .order_by(Broadcast.created_at)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def set_status(
        self,
        broadcast_id: UUID,
        target: BroadcastStatus,
        now: datetime,
        expected: Iterable[BroadcastStatus] | None = None,
        **values: Any,
    ) -> bool:
        """Change the broadcast status, optionally only from expected statuses.

        Returns:
            True if the row was updated.
        """
        stmt = update(Broadcast).where(Broadcast.id == broadcast_id)
        if expected is not None:
            stmt = stmt.where(Broadcast.status.in_(list(expected)))
        stmt = stmt.values(status=target, updated_at=now, **values).execution_options(
            synchronize_session=False
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def set_total_items(self, broadcast_id: UUID, total: int) -> None:
        stmt = (
            update(Broadcast)
            .where(Broadcast.id == broadcast_id)
            .values(total_items=total)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)
