"""Unit tests for the connection pool.

Tests verify:
- Exclusive check-out: no two callers hold the same connection
- Waiting at capacity, wake-up on release, acquire timeout
- Close semantics (busy, forced, idempotent) and PoolClosedError
- Reset and discard behaviour on release
"""

import asyncio

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from sqldao.exceptions import PoolBusyError, PoolClosedError, PoolError, PoolExhaustedError
from sqldao.models.domain import PoolStats
from sqldao.pool import DbPool
from tests.fakes import FakeConnector


class TestPoolConstruction:
    def test_rejects_zero_max_size(self, connector: FakeConnector):
        with pytest.raises(ValueError, match="max_size"):
            DbPool(connector, max_size=0)

    @pytest.mark.parametrize("min_size", [-1, 5])
    def test_rejects_min_size_out_of_range(self, connector: FakeConnector, min_size: int):
        with pytest.raises(ValueError, match="min_size"):
            DbPool(connector, min_size=min_size, max_size=4)

    async def test_open_creates_min_size_connections(self, connector: FakeConnector):
        pool = DbPool(connector, min_size=3, max_size=5)
        await pool.open()
        assert connector.connect_count == 3
        stats = pool.get_stats()
        assert stats.size == 3
        assert stats.available == 3
        await pool.open()
        assert connector.connect_count == 3
        await pool.close()

    async def test_open_retries_after_failed_connect(self, connector: FakeConnector):
        pool = DbPool(connector, min_size=2, max_size=4)
        connector.failures_remaining = 1

        with pytest.raises(ConnectionError):
            await pool.open()
        assert pool.size == 0

        await pool.open()
        assert pool.size == 2
        await pool.close()

    async def test_open_replaces_discarded_connections(self, connector: FakeConnector):
        pool = DbPool(connector, min_size=2, max_size=4)
        await pool.open()
        pooled = await pool.obtain()
        await pooled.wrapped.close()
        await pool.release(pooled)
        assert pool.size == 1

        await pool.open()
        assert pool.size == 2
        assert connector.connect_count == 3
        await pool.close()

    async def test_obtain_opens_lazily(self, connector: FakeConnector):
        pool = DbPool(connector, min_size=2, max_size=2)
        pooled = await pool.obtain()
        assert pooled.in_use
        assert pooled.checked_out_at is not None
        assert connector.connect_count == 2
        await pool.release(pooled)
        await pool.close()

    async def test_async_context_manager(self, connector: FakeConnector):
        async with DbPool(connector, min_size=1, max_size=2) as pool:
            assert pool.size == 1
        assert pool.closed
        assert connector.disposed


class TestObtainRelease:
    async def test_obtain_returns_distinct_connections(self, pool: DbPool):
        first = await pool.obtain()
        second = await pool.obtain()
        assert first.wrapped is not second.wrapped
        assert first.wrapped.id != second.wrapped.id
        await pool.release(first)
        await pool.release(second)

    async def test_released_connection_is_reused(self, pool: DbPool, connector: FakeConnector):
        first = await pool.obtain()
        db = first.wrapped
        await pool.release(first)
        assert not first.in_use
        assert first.checked_out_at is None

        again = await pool.obtain()
        assert again.wrapped is db
        assert connector.connect_count == 1
        await pool.release(again)

    async def test_waits_at_capacity_until_release(self, connector: FakeConnector):
        pool = DbPool(connector, min_size=0, max_size=1, acquire_timeout=2.0)
        held = await pool.obtain()

        waiter = asyncio.create_task(pool.obtain())
        await asyncio.sleep(0.01)
        assert not waiter.done()
        assert pool.get_stats().waiting == 1

        await pool.release(held)
        pooled = await asyncio.wait_for(waiter, timeout=1.0)
        assert pooled.wrapped is held.wrapped
        assert pool.get_stats().waiting == 0
        assert connector.connect_count == 1

        await pool.release(pooled)
        await pool.close()

    async def test_acquire_timeout_raises_pool_exhausted(self, connector: FakeConnector):
        pool = DbPool(connector, min_size=0, max_size=1, acquire_timeout=0.05)
        held = await pool.obtain()

        with pytest.raises(PoolExhaustedError, match="within 0.05s"):
            await pool.obtain()
        assert pool.get_stats().waiting == 0

        await pool.release(held)
        await pool.close()

    async def test_timed_out_waiter_does_not_steal_wakeup(self, connector: FakeConnector):
        pool = DbPool(connector, min_size=0, max_size=1, acquire_timeout=1.0)
        held = await pool.obtain()

        doomed = asyncio.create_task(pool.obtain())
        patient = asyncio.create_task(pool.obtain())
        await asyncio.sleep(0.01)
        doomed.cancel()
        await pool.release(held)

        pooled = await asyncio.wait_for(patient, timeout=1.0)
        assert pooled.wrapped is held.wrapped
        with pytest.raises(asyncio.CancelledError):
            await doomed

        await pool.release(pooled)
        await pool.close()

    async def test_failed_connect_frees_slot(self, connector: FakeConnector):
        pool = DbPool(connector, min_size=0, max_size=1)
        connector.failures_remaining = 1

        with pytest.raises(ConnectionError):
            await pool.obtain()
        assert pool.get_stats().size == 0

        pooled = await pool.obtain()
        assert pooled.in_use
        await pool.release(pooled)
        await pool.close()

    async def test_release_twice_is_an_error(self, pool: DbPool):
        pooled = await pool.obtain()
        await pool.release(pooled)
        with pytest.raises(PoolError, match="not checked out"):
            await pool.release(pooled)

    async def test_release_to_wrong_pool_is_an_error(self, pool: DbPool):
        other = DbPool(FakeConnector(), min_size=0, max_size=1)
        foreign = await other.obtain()
        with pytest.raises(PoolError, match="does not belong"):
            await pool.release(foreign)
        await other.release(foreign)
        await other.close()

    async def test_release_to_wrong_pool_after_close_is_an_error(self, pool: DbPool):
        other = DbPool(FakeConnector(), min_size=0, max_size=1)
        foreign = await other.obtain()
        await pool.close()

        with pytest.raises(PoolError, match="does not belong"):
            await pool.release(foreign)
        assert foreign.in_use
        assert not foreign.wrapped.closed
        await other.release(foreign)
        await other.close()

    async def test_release_rolls_back_dangling_transaction(
        self, pool: DbPool, connector: FakeConnector
    ):
        pooled = await pool.obtain()
        await pooled.wrapped.connection.begin()

        await pool.release(pooled)

        fake = connector.connections[0]
        assert fake.calls == ["begin", "rollback"]
        assert not fake.in_transaction()

    async def test_closed_connection_is_discarded_on_release(
        self, pool: DbPool, connector: FakeConnector
    ):
        pooled = await pool.obtain()
        await pooled.wrapped.close()

        await pool.release(pooled)

        assert pool.size == 0
        replacement = await pool.obtain()
        assert replacement.wrapped is not pooled.wrapped
        assert connector.connect_count == 2
        await pool.release(replacement)

    async def test_stats(self, pool: DbPool):
        first = await pool.obtain()
        second = await pool.obtain()
        await pool.release(second)

        stats = pool.get_stats()
        assert isinstance(stats, PoolStats)
        assert stats.name == "test"
        assert stats.size == 2
        assert stats.available == 1
        assert stats.in_use == 1
        assert stats.max_size == 4
        assert stats.closed is False
        assert '"inUse":1' in stats.to_json()

        await pool.release(first)


class TestPoolConcurrency:
    async def test_concurrent_obtains_never_share(self, connector: FakeConnector):
        pool = DbPool(connector, min_size=0, max_size=3, acquire_timeout=5.0)
        holders: set[int] = set()
        max_concurrent = 0

        async def worker() -> None:
            nonlocal max_concurrent
            pooled = await pool.obtain()
            db_id = pooled.wrapped.id
            assert db_id not in holders
            holders.add(db_id)
            max_concurrent = max(max_concurrent, len(holders))
            await asyncio.sleep(0.001)
            holders.discard(db_id)
            await pool.release(pooled)

        await asyncio.gather(*(worker() for _ in range(20)))

        assert max_concurrent <= 3
        assert connector.connect_count <= 3
        await pool.close()

    @given(
        max_size=st.integers(min_value=1, max_value=4),
        workers=st.integers(min_value=1, max_value=12),
        connect_delay=st.sampled_from([0.0, 0.001]),
    )
    @settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_exclusive_checkout_property(self, max_size: int, workers: int, connect_delay: float):
        """Property: whatever the interleaving, a connection has one holder at a time."""

        async def scenario() -> None:
            connector = FakeConnector(connect_delay=connect_delay)
            pool = DbPool(connector, min_size=0, max_size=max_size, acquire_timeout=5.0)
            holders: set[int] = set()

            async def worker() -> None:
                pooled = await pool.obtain()
                assert pooled.wrapped.id not in holders
                holders.add(pooled.wrapped.id)
                await asyncio.sleep(0)
                holders.remove(pooled.wrapped.id)
                await pool.release(pooled)

            await asyncio.gather(*(worker() for _ in range(workers)))
            assert connector.connect_count <= max_size
            assert pool.get_stats().in_use == 0
            await pool.close()

        asyncio.run(scenario())


class TestPoolClose:
    async def test_close_disposes_connector_and_connections(self, connector: FakeConnector):
        pool = DbPool(connector, min_size=2, max_size=2)
        await pool.open()
        await pool.close()

        assert pool.closed
        assert connector.disposed
        assert all(conn.closed for conn in connector.connections)

    async def test_obtain_after_close_raises(self, connector: FakeConnector):
        pool = DbPool(connector, min_size=0, max_size=1)
        await pool.close()
        with pytest.raises(PoolClosedError):
            await pool.obtain()

    async def test_close_twice_is_noop(self, connector: FakeConnector):
        pool = DbPool(connector, min_size=0, max_size=1)
        await pool.close()
        await pool.close()

    async def test_close_with_connection_in_use_fails(self, pool: DbPool):
        pooled = await pool.obtain()

        with pytest.raises(PoolBusyError, match="1 connection"):
            await pool.close()
        assert not pool.closed

        await pool.release(pooled)
        await pool.close()
        assert pool.closed

    async def test_force_close_closes_checked_out_connections(
        self, pool: DbPool, connector: FakeConnector
    ):
        pooled = await pool.obtain()

        await pool.close(force=True)

        assert pooled.wrapped.closed
        with pytest.raises(RuntimeError, match="closed"):
            await pooled.wrapped.execute("select 1")
        # The late release is accepted and does not resurrect the connection
        await pool.release(pooled)
        assert pool.size == 0

    async def test_close_fails_waiters(self, connector: FakeConnector):
        pool = DbPool(connector, min_size=0, max_size=1)
        held = await pool.obtain()
        waiter = asyncio.create_task(pool.obtain())
        await asyncio.sleep(0.01)

        await pool.close(force=True)

        with pytest.raises(PoolClosedError):
            await waiter
        await pool.release(held)
