"""
Repository for concurrency settings and historical pacing stats.
"""

from collections.abc import Sequence
from dataclasses import asdict, replace
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.config import get_settings
from dialflow.pacing.estimator import ConcurrencySettings
from dialflow.pacing.learner import HistoricalStat
from dialflow.pacing.models import ConcurrencySettingsRecord, HistoricalStatRecord
from dialflow.shared.clock import as_utc


def _to_settings(record: ConcurrencySettingsRecord) -> ConcurrencySettings:
    return ConcurrencySettings(
        max_concurrent_calls=record.max_concurrent_calls,
        calls_per_minute=record.calls_per_minute,
        target_abandonment_rate=record.target_abandonment_rate,
        target_utilization=record.target_utilization,
        enable_adaptive_pacing=record.enable_adaptive_pacing,
        min_calls_per_minute=record.min_calls_per_minute,
        max_calls_per_minute=record.max_calls_per_minute,
    )


def default_concurrency_settings() -> ConcurrencySettings:
    """Settings used when a tenant has none stored."""
    settings = get_settings()
    return ConcurrencySettings(
        max_concurrent_calls=settings.default_max_concurrent_calls,
        calls_per_minute=settings.default_calls_per_minute,
        target_abandonment_rate=settings.target_abandonment_rate,
        target_utilization=settings.target_utilization,
    )


class PacingRepository:
    """Repository for pacing configuration and history."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def _get_record(
        self,
        tenant_id: UUID,
        broadcast_id: UUID | None,
    ) -> ConcurrencySettingsRecord | None:
        stmt = select(ConcurrencySettingsRecord).where(
            ConcurrencySettingsRecord.tenant_id == tenant_id
        )
        if broadcast_id is None:
            stmt = stmt.where(ConcurrencySettingsRecord.broadcast_id.is_(None))
        else:
            stmt = stmt.where(ConcurrencySettingsRecord.broadcast_id == broadcast_id)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def get_settings(
        self,
        tenant_id: UUID,
        broadcast_id: UUID | None = None,
    ) -> ConcurrencySettings:
        """Resolve effective settings: broadcast override, then tenant row, then defaults.

        Args:
            tenant_id: Owning tenant.
            broadcast_id: Broadcast whose override should win, if any.

        Returns:
            Effective concurrency settings.
        """
        if broadcast_id is not None:
            record = await self._get_record(tenant_id, broadcast_id)
            if record is not None:
                return _to_settings(record)
        record = await self._get_record(tenant_id, None)
        if record is not None:
            return _to_settings(record)
        return default_concurrency_settings()

    async def save_settings(
        self,
        tenant_id: UUID,
        values: dict[str, Any],
        broadcast_id: UUID | None = None,
    ) -> ConcurrencySettings:
        """Create or update the settings row for the tenant (or broadcast override).

        Args:
            tenant_id: Owning tenant.
            values: Column values to store.
            broadcast_id: Scope the row to one broadcast.

        Returns:
            The stored settings.

        Raises:
            ValueError: If the resulting settings are inconsistent.
        """
        record = await self._get_record(tenant_id, broadcast_id)
        current = _to_settings(record) if record is not None else default_concurrency_settings()
        settings = replace(current, **values)

        if record is None:
            record = ConcurrencySettingsRecord(tenant_id=tenant_id, broadcast_id=broadcast_id)
            self._session.add(record)
        for key, value in asdict(settings).items():
            setattr(record, key, value)
        await self._session.flush()
        return settings

    async def append_stat(
        self,
        tenant_id: UUID,
        stat: HistoricalStat,
        broadcast_id: UUID | None = None,
    ) -> HistoricalStatRecord:
        record = HistoricalStatRecord(
            tenant_id=tenant_id,
            broadcast_id=broadcast_id,
            timestamp=stat.timestamp,
            answer_rate=stat.answer_rate,
            abandonment_rate=stat.abandonment_rate,
            concurrent_calls=stat.concurrent_calls,
        )
        self._session.add(record)
        await self._session.flush()
        return record

    async def recent_stats(
        self,
        tenant_id: UUID,
        window: int,
        broadcast_id: UUID | None = None,
        until: datetime | None = None,
    ) -> Sequence[HistoricalStat]:
        """Most recent stats for the tenant, newest first.

        With ``broadcast_id`` the window covers that broadcast's stats plus
        tenant-wide ones.
        """
        stmt = select(HistoricalStatRecord).where(HistoricalStatRecord.tenant_id == tenant_id)
        if broadcast_id is not None:
            stmt = stmt.where(
                or_(
                    HistoricalStatRecord.broadcast_id == broadcast_id,
                    HistoricalStatRecord.broadcast_id.is_(None),
                )
            )
        if until is not None:
            stmt = stmt.where(HistoricalStatRecord.timestamp <= until)
        stmt = stmt.order_by(HistoricalStatRecord.timestamp.desc()).limit(window)
        result = await self._session.execute(stmt)
        return [
            HistoricalStat(
                timestamp=as_utc(r.timestamp),
                answer_rate=r.answer_rate,
                abandonment_rate=r.abandonment_rate,
                concurrent_calls=r.concurrent_calls,
            )
            for r in result.scalars().all()
        ]
