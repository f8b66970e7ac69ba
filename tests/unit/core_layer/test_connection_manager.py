"""
Unit Tests for ConnectionManager

Tests exclusive connection loans, health-driven eviction, pool exhaustion,
maintenance and efficiency metrics. Clients are httpx.AsyncClient instances
backed by httpx.MockTransport.
"""

import asyncio

import pytest

from llm_reliability.core.exceptions import (
    ConnectionPoolError,
    ConnectionPoolExhaustedError,
    TransportError,
)
from llm_reliability.core.resilience.connection_manager import (
    ConnectionConfig,
    ConnectionHealth,
    ConnectionManager,
    calculate_efficiency_score,
)
from tests.test_fixtures import HttpTestFactory

HOST = "api.example.com"


@pytest.fixture
def created_clients():
    return []


@pytest.fixture
async def manager(fast_connection_config, created_clients):
    factory = HttpTestFactory.client_factory(HttpTestFactory.json_handler(), created=created_clients)
    manager = ConnectionManager(fast_connection_config, client_factory=factory)
    yield manager
    await manager.aclose()


@pytest.mark.unit
class TestConnectionLoans:
    async def test_get_connection_creates_for_host(self, manager):
        conn = await manager.get_connection(HOST)

        assert conn.host == HOST
        assert conn.id.startswith("conn_")
        stats = manager.get_all_stats()[0]
        assert stats.in_use_connections == 1
        assert stats.total_connections_created == 1

    async def test_connection_is_never_loaned_twice(self, manager):
        first = await manager.get_connection(HOST)
        second = await manager.get_connection(HOST)

        assert first is not second
        assert first.id != second.id

    async def test_returned_connection_is_reused(self, manager):
        first = await manager.get_connection(HOST)
        await manager.return_connection(first)
        again = await manager.get_connection(HOST)

        assert again is first
        stats = manager.get_all_stats()[0]
        assert stats.total_connections_created == 1
        assert stats.total_requests_served == 2

    async def test_scoped_connection_returned_on_error(self, manager):
        with pytest.raises(RuntimeError):
            async with manager.connection(HOST):
                raise RuntimeError("caller failed")

        stats = manager.get_all_stats()[0]
        assert stats.in_use_connections == 0
        assert stats.available_connections == 1

    async def test_concurrent_loans_are_exclusive(self, manager):
        seen: list[str] = []
        active: set[str] = set()

        async def worker():
            async with manager.connection(HOST) as conn:
                assert conn.id not in active
                active.add(conn.id)
                seen.append(conn.id)
                await asyncio.sleep(0.01)
                active.discard(conn.id)

        await asyncio.gather(*(worker() for _ in range(6)))

        assert len(seen) == 6
        assert manager.get_all_stats()[0].peak_connections <= 2

    async def test_pools_are_per_host(self, manager):
        await manager.get_connection("a.example.com")
        await manager.get_connection("b.example.com")

        assert {s.host for s in manager.get_all_stats()} == {"a.example.com", "b.example.com"}


@pytest.mark.unit
class TestExhaustion:
    async def test_exhausted_pool_raises_after_wait_timeout(self, manager):
        await manager.get_connection(HOST)
        await manager.get_connection(HOST)

        with pytest.raises(ConnectionPoolExhaustedError) as exc_info:
            await manager.get_connection(HOST)

        assert exc_info.value.details["host"] == HOST
        assert manager.get_all_stats()[0].total_connections_created == 2

    async def test_waiter_receives_released_connection(self, manager):
        first = await manager.get_connection(HOST)
        await manager.get_connection(HOST)

        waiter = asyncio.create_task(manager.get_connection(HOST))
        await asyncio.sleep(0.01)
        await manager.return_connection(first)

        assert await waiter is first


@pytest.mark.unit
class TestHealth:
    async def test_failures_degrade_then_evict(self, manager, created_clients):
        conn = await manager.get_connection(HOST)
        conn.record_failure()
        assert conn.health == ConnectionHealth.DEGRADED
        assert conn.is_reusable

        conn.record_failure()
        conn.record_failure()
        assert conn.health == ConnectionHealth.UNHEALTHY

        await manager.return_connection(conn)

        stats = manager.get_all_stats()[0]
        assert stats.available_connections == 0
        assert stats.total_connections_destroyed == 1
        assert created_clients[0].is_closed

    async def test_success_restores_health(self, manager):
        conn = await manager.get_connection(HOST)
        conn.record_failure()
        conn.record_success(0.2)

        assert conn.health == ConnectionHealth.HEALTHY
        assert conn.consecutive_failures == 0
        assert conn.avg_response_time == pytest.approx(0.2)

    async def test_closed_client_is_not_reused(self, manager):
        conn = await manager.get_connection(HOST)
        await manager.return_connection(conn)
        await conn.client.aclose()

        fresh = await manager.get_connection(HOST)

        assert fresh is not conn

    async def test_factory_error_becomes_transport_error(self, fast_connection_config):
        def broken_factory(host, config):
            raise OSError("no sockets left")

        manager = ConnectionManager(fast_connection_config, client_factory=broken_factory)
        with pytest.raises(TransportError):
            await manager.get_connection(HOST)
        await manager.aclose()


@pytest.mark.unit
class TestMaintenance:
    async def test_cleanup_evicts_idle_connections(self, created_clients):
        config = ConnectionConfig(
            max_connections_per_host=2,
            min_connections_per_host=0,
            idle_timeout=0.01,
            health_check_interval=3600.0,
        )
        factory = HttpTestFactory.client_factory(HttpTestFactory.json_handler(), created=created_clients)
        async with ConnectionManager(config, client_factory=factory) as manager:
            conn = await manager.get_connection(HOST)
            await manager.return_connection(conn)
            await asyncio.sleep(0.03)

            assert await manager.cleanup() == 1
            assert manager.get_all_stats()[0].available_connections == 0

    async def test_cleanup_warms_to_minimum(self, json_client_factory):
        config = ConnectionConfig(max_connections_per_host=4, min_connections_per_host=2)
        manager = ConnectionManager(config, client_factory=json_client_factory)
        await manager.get_connection(HOST)

        await manager.cleanup()

        stats = manager.get_all_stats()[0]
        assert stats.in_use_connections == 1
        assert stats.available_connections == 1
        await manager.aclose()

    async def test_warm_up_respects_maximum(self, manager):
        created = await manager.warm_up(HOST, count=5)

        assert created == 2
        assert manager.get_all_stats()[0].available_connections == 2

    async def test_background_cleanup_loop_runs(self, json_client_factory):
        config = ConnectionConfig(
            max_connections_per_host=2,
            min_connections_per_host=0,
            idle_timeout=0.01,
            health_check_interval=0.02,
        )
        async with ConnectionManager(config, client_factory=json_client_factory) as manager:
            conn = await manager.get_connection(HOST)
            await manager.return_connection(conn)
            await asyncio.sleep(0.1)

            assert manager.get_all_stats()[0].available_connections == 0

    async def test_aclose_rejects_new_loans(self, manager, created_clients):
        conn = await manager.get_connection(HOST)
        await manager.return_connection(conn)
        await manager.aclose()

        assert created_clients[0].is_closed
        with pytest.raises(ConnectionPoolError):
            await manager.get_connection(HOST)


@pytest.mark.unit
class TestEfficiency:
    @pytest.mark.parametrize(
        "reuse, utilization, expected",
        [
            (20.0, 0.7, 1.0),
            (5.0, 0.7, 0.75),
            (20.0, 0.3, 0.75),
            (0.0, 0.0, 0.0),
        ],
    )
    def test_calculate_efficiency_score(self, reuse, utilization, expected):
        assert calculate_efficiency_score(reuse, utilization) == pytest.approx(expected)

    async def test_efficiency_metrics_aggregate_pools(self, manager):
        for _ in range(3):
            async with manager.connection(HOST):
                pass

        metrics = manager.get_efficiency_metrics()

        assert metrics.active_pools == 1
        assert metrics.total_connections_created == 1
        assert metrics.total_requests_served == 3
        assert metrics.connection_reuse_ratio == pytest.approx(3.0)
        assert 0.0 <= metrics.efficiency_score <= 1.0

    def test_efficiency_metrics_empty(self, fast_connection_config):
        metrics = ConnectionManager(fast_connection_config).get_efficiency_metrics()

        assert metrics.active_pools == 0
        assert metrics.connection_reuse_ratio == 0.0

    def test_config_rejects_min_above_max(self):
        with pytest.raises(ValueError):
            ConnectionConfig(max_connections_per_host=1, min_connections_per_host=2)
