"""
Pytest configuration and fixtures for the dialflow engine.

Tests run against in-memory SQLite (aiosqlite) with a fixed clock.
"""

from collections.abc import AsyncGenerator
from datetime import datetime, time, timedelta, timezone
from typing import Any
from uuid import UUID

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

import dialflow.models  # noqa: F401
from dialflow.broadcasts.models import Broadcast, BroadcastStatus, IvrMode
from dialflow.config import Settings
from dialflow.leads.models import Lead
from dialflow.pacing.estimator import ConcurrencySettings
from dialflow.pacing.repository import PacingRepository
from dialflow.queue.models import WorkItem, WorkItemStatus
from dialflow.readiness.models import PhoneNumber, PhoneNumberStatus
from dialflow.shared.database import Base
from dialflow.telephony.mock_adapter import MockCallInitiationService

TENANT_ID = UUID("7b0d5a3e-2f4c-4f5e-9a51-0c6f1f1d2a10")
OTHER_TENANT_ID = UUID("1c9e2a44-5d6b-47c8-8e0f-3a2b1c0d9e8f")

# Monday 15:00 UTC
NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class Factory:
    """Creates persisted test rows with sensible defaults."""

    def __init__(self, session: AsyncSession, clock: FrozenClock) -> None:
        self.session = session
        self.clock = clock
        self._position = 0

    async def broadcast(self, **overrides: Any) -> Broadcast:
        fields: dict[str, Any] = {
            "tenant_id": TENANT_ID,
            "name": "Spring promo",
            "message_text": "Hi, this is a reminder about your appointment.",
            "audio_url": "https://cdn.example.com/audio/spring.mp3",
            "ivr_enabled": False,
            "ivr_mode": IvrMode.DTMF,
            "dtmf_actions": [],
            "calls_per_minute": 30,
            "max_attempts": 3,
            "timezone": "UTC",
            "bypass_calling_hours": False,
            "status": BroadcastStatus.DRAFT,
            "created_at": self.clock(),
            "updated_at": self.clock(),
        }
        fields.update(overrides)
        broadcast = Broadcast(**fields)
        self.session.add(broadcast)
        await self.session.flush()
        return broadcast

    async def running_broadcast(self, **overrides: Any) -> Broadcast:
        overrides.setdefault("status", BroadcastStatus.RUNNING)
        return await self.broadcast(**overrides)

    async def item(
        self,
        broadcast: Broadcast,
        phone_number: str | None = None,
        status: WorkItemStatus = WorkItemStatus.PENDING,
        attempts: int = 0,
        max_attempts: int | None = None,
        updated_at: datetime | None = None,
        **overrides: Any,
    ) -> WorkItem:
        self._position += 1
        item = WorkItem(
            broadcast_id=broadcast.id,
            phone_number=phone_number or f"+1415555{self._position:04d}",
            status=status,
            attempts=attempts,
            max_attempts=max_attempts if max_attempts is not None else broadcast.max_attempts,
            queue_position=self._position,
            created_at=self.clock(),
            updated_at=updated_at or self.clock(),
            **overrides,
        )
        self.session.add(item)
        await self.session.flush()
        return item

    async def items(self, broadcast: Broadcast, count: int, **kwargs: Any) -> list[WorkItem]:
        return [await self.item(broadcast, **kwargs) for _ in range(count)]

    async def phone_number(self, number: str = "+14155550100", **overrides: Any) -> PhoneNumber:
        fields: dict[str, Any] = {
            "tenant_id": TENANT_ID,
            "number": number,
            "status": PhoneNumberStatus.ACTIVE,
            "is_spam": False,
            "agent_only": False,
            "daily_calls": 0,
        }
        fields.update(overrides)
        phone = PhoneNumber(**fields)
        self.session.add(phone)
        await self.session.flush()
        return phone

    async def lead(self, phone_number: str, **overrides: Any) -> Lead:
        fields: dict[str, Any] = {
            "tenant_id": TENANT_ID,
            "name": "Dana Whitfield",
            "phone_number": phone_number,
            "do_not_call": False,
        }
        fields.update(overrides)
        lead = Lead(**fields)
        self.session.add(lead)
        await self.session.flush()
        return lead

    async def concurrency(
        self,
        broadcast_id: UUID | None = None,
        **values: Any,
    ) -> ConcurrencySettings:
        return await PacingRepository(self.session).save_settings(
            TENANT_ID, values, broadcast_id=broadcast_id
        )


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        engine_enabled=False,
        dispatcher_interval_seconds=5.0,
        sweeper_interval_seconds=60.0,
        stale_threshold_minutes=5.0,
        webhook_base_url="http://testserver",
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def factory(session: AsyncSession, clock: FrozenClock) -> Factory:
    return Factory(session, clock)


@pytest.fixture
def call_service() -> MockCallInitiationService:
    return MockCallInitiationService()


@pytest_asyncio.fixture
async def async_client(
    session: AsyncSession,
    call_service: MockCallInitiationService,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app with DB and telephony dependencies overridden."""
    from dialflow.dependencies import get_call_initiation_service
    from dialflow.main import app
    from dialflow.shared.database import get_db_session

    async def _override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        yield session

    app.dependency_overrides[get_db_session] = _override_get_db_session
    app.dependency_overrides[get_call_initiation_service] = lambda: call_service
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://testserver",
        headers={"X-Tenant-ID": str(TENANT_ID)},
    ) as client:
        yield client
    app.dependency_overrides.clear()


def calling_window(start: str, end: str) -> dict[str, time]:
    return {
        "calling_hours_start": time.fromisoformat(start),
        "calling_hours_end": time.fromisoformat(end),
    }

