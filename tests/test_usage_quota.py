"""
Usage Quota Tests
=================

Tests for daily counters: capped increments, lazy reset, bulk reset and
parallel increments against a file-backed database.
"""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from nutrilytics.core.feature_limits import UsageKind, get_limit
from nutrilytics.db.base import Base
from nutrilytics.models.usage import UsageQuota
from nutrilytics.services.usage_quota import UsageQuotaService


@pytest.fixture
def quotas(db, clock) -> UsageQuotaService:
    return UsageQuotaService(db, clock)


class TestTryIncrement:

    @pytest.mark.asyncio
    async def test_counter_never_exceeds_limit(self, quotas, db):
        results = [await quotas.try_increment("user-1", UsageKind.BARCODE) for _ in range(6)]

        assert results == [True] * 5 + [False]
        quota = await db.get(UsageQuota, "user-1")
        assert quota.barcode_scans_today == 5

    @pytest.mark.asyncio
    async def test_counters_are_independent(self, quotas, db):
        for _ in range(3):
            assert await quotas.try_increment("user-1", UsageKind.AI) is True

        assert await quotas.try_increment("user-1", UsageKind.AI) is False
        assert await quotas.try_increment("user-1", UsageKind.PHOTO) is True

        quota = await db.get(UsageQuota, "user-1")
        assert quota.ai_messages_today == 3
        assert quota.photo_scans_today == 1
        assert quota.barcode_scans_today == 0

    @pytest.mark.asyncio
    async def test_new_day_allows_increment_again(self, quotas, clock):
        for _ in range(3):
            await quotas.try_increment("user-1", UsageKind.PHOTO)
        assert await quotas.try_increment("user-1", UsageKind.PHOTO) is False

        clock.advance(days=1)

        assert await quotas.try_increment("user-1", UsageKind.PHOTO) is True


class TestLazyReset:

    @pytest.mark.asyncio
    async def test_same_day_keeps_counts(self, quotas, clock):
        await quotas.try_increment("user-1", UsageKind.BARCODE)
        clock.set(clock().replace(hour=23, minute=59))

        view = await quotas.get_quota("user-1")

        assert view.barcode_scans.used == 1

    @pytest.mark.asyncio
    async def test_stale_record_is_zeroed_on_read(self, quotas, clock):
        await quotas.try_increment("user-1", UsageKind.BARCODE)
        await quotas.try_increment("user-1", UsageKind.PHOTO)
        clock.advance(days=1)

        quota = await quotas.get_current("user-1")

        assert quota.barcode_scans_today == 0
        assert quota.photo_scans_today == 0
        assert quota.last_reset_at == clock()

    @pytest.mark.asyncio
    async def test_view_reports_limits_and_next_midnight(self, quotas, clock):
        await quotas.try_increment("user-1", UsageKind.AI)

        view = await quotas.get_quota("user-1")

        assert (view.ai_messages.used, view.ai_messages.limit) == (1, 3)
        assert view.barcode_scans.limit == 5
        assert view.photo_scans.limit == 3
        assert view.resets_at == clock().replace(hour=0, minute=0) + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_peek_does_not_create_or_reset(self, quotas, clock, db):
        assert await quotas.peek_used("nobody", UsageKind.BARCODE) == 0
        assert await db.get(UsageQuota, "nobody") is None

        await quotas.try_increment("user-1", UsageKind.BARCODE)
        clock.advance(days=1)

        assert await quotas.peek_used("user-1", UsageKind.BARCODE) == 0
        quota = await db.get(UsageQuota, "user-1")
        assert quota.barcode_scans_today == 1


class TestBulkReset:

    @pytest.mark.asyncio
    async def test_reset_many_only_touches_given_users(self, quotas, db):
        for user_id in ("a", "b", "c"):
            await quotas.try_increment(user_id, UsageKind.BARCODE)

        reset = await quotas.reset_many(["a", "b"])

        assert reset == 2
        counts = {}
        for user_id in ("a", "b", "c"):
            quota = await db.get(UsageQuota, user_id)
            await db.refresh(quota)
            counts[user_id] = quota.barcode_scans_today
        assert counts == {"a": 0, "b": 0, "c": 1}

    @pytest.mark.asyncio
    async def test_reset_many_with_no_users(self, quotas):
        assert await quotas.reset_many([]) == 0

    @pytest.mark.asyncio
    async def test_user_id_batches(self, quotas):
        for user_id in ("u0", "u1", "u2", "u3", "u4"):
            await quotas.get_or_create(user_id)

        batches = [batch async for batch in quotas.iter_user_id_batches(2)]

        assert batches == [["u0", "u1"], ["u2", "u3"], ["u4"]]

    @pytest.mark.asyncio
    async def test_reset_user(self, quotas):
        await quotas.try_increment("user-1", UsageKind.AI)

        quota = await quotas.reset_user("user-1")

        assert quota.ai_messages_today == 0


class TestConcurrentIncrements:

    @pytest_asyncio.fixture
    async def file_session_factory(self, tmp_path):
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'quota.db'}",
            poolclass=NullPool,
            connect_args={"timeout": 30},
        )

        # Take the write lock up front; SQLite refuses lock upgrades between readers
        @event.listens_for(engine.sync_engine, "connect")
        def _disable_driver_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_parallel_sessions_stop_at_limit(self, file_session_factory, clock):
        async with file_session_factory() as session:
            await UsageQuotaService(session, clock).get_or_create("user-1")
            await session.commit()

        async def scan() -> bool:
            async with file_session_factory() as session:
                incremented = await UsageQuotaService(session, clock).try_increment(
                    "user-1", UsageKind.BARCODE
                )
                await session.commit()
                return incremented

        results = await asyncio.gather(*(scan() for _ in range(8)))

        assert sum(results) == get_limit(UsageKind.BARCODE) == 5
        async with file_session_factory() as session:
            quota = await session.get(UsageQuota, "user-1")
            assert quota.barcode_scans_today == 5
