"""
Repository for operator-facing system alerts.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.readiness.models import AlertSeverity, SystemAlert
from dialflow.shared.logging import get_logger

logger = get_logger(__name__)


class AlertRepository:
    """Create and query system alerts."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        tenant_id: UUID,
        alert_type: str,
        severity: AlertSeverity,
        message: str,
        related_id: UUID | None = None,
    ) -> SystemAlert:
        alert = SystemAlert(
            tenant_id=tenant_id,
            related_id=related_id,
            alert_type=alert_type,
            severity=severity,
            message=message,
        )
        self._session.add(alert)
        await self._session.flush()
        logger.warning(
            "System alert raised",
            extra={
                "tenant_id": str(tenant_id),
                "alert_type": alert_type,
                "severity": severity.value,
                "related_id": str(related_id) if related_id else None,
            },
        )
        return alert

    async def count_unacknowledged(
        self,
        tenant_id: UUID,
        severities: Iterable[AlertSeverity],
        related_id: UUID | None = None,
        alert_type: str | None = None,
    ) -> int:
        """Count open alerts of the given severities, optionally for one broadcast or type."""
        stmt = select(func.count(SystemAlert.id)).where(
            SystemAlert.tenant_id == tenant_id,
            SystemAlert.acknowledged.is_(False),
            SystemAlert.severity.in_(list(severities)),
        )
        if related_id is not None:
            stmt = stmt.where(SystemAlert.related_id == related_id)
        if alert_type is not None:
            stmt = stmt.where(SystemAlert.alert_type == alert_type)
        return (await self._session.execute(stmt)).scalar_one()
