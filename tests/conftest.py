"""
Shared Test Fixtures
====================

In-memory SQLite database, a dict-backed Redis stand-in, a controllable
clock and an HTTP client wired to the FastAPI app.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REVENUECAT_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("REVENUECAT_API_KEY", "")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy import event
from sqlalchemy.pool import StaticPool

from nutrilytics.db.base import Base
from nutrilytics.db.session import get_db
from nutrilytics.dependencies import get_clock
from nutrilytics.main import app
from nutrilytics.schemas.subscription import RevenueCatWebhookEvent
import nutrilytics.models  # noqa: F401  (register tables)


T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return now


class FakeRedis:
    """Just enough of redis.asyncio.Redis for CacheManager."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    async def setex(self, key: str, ttl: int, value) -> bool:
        self.store[key] = str(value)
        self.ttls[key] = ttl
        return True

    async def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if key in self.store)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture(autouse=True)
def fake_redis():
    """Route every CacheManager call to an in-memory dict."""
    redis = FakeRedis()
    with patch(
        "nutrilytics.services.cache.get_redis",
        new=AsyncMock(return_value=redis),
    ):
        yield redis


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory, clock) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the test database and clock."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


@pytest.fixture
def make_event(clock):
    """Factory for RevenueCat webhook events (model, or raw dict with as_dict=True)."""
    counter = {"n": 0}

    def _make(event_type: str, user_id: str = "user-1", as_dict: bool = False, **fields):
        counter["n"] += 1
        data = {
            "id": f"evt-{counter['n']}",
            "type": event_type,
            "app_user_id": user_id,
            "product_id": "nutrilytics_premium_monthly",
            "period_type": "NORMAL",
            "purchased_at_ms": to_ms(clock()),
            "expiration_at_ms": to_ms(clock() + timedelta(days=30)),
            "event_timestamp_ms": to_ms(clock()),
            "price": 9.99,
            "currency": "USD",
            "is_trial_conversion": False,
            "cancellation_reason": None,
        }
        data.update(fields)
        if as_dict:
            return data
        return RevenueCatWebhookEvent.model_validate(data)

    return _make
