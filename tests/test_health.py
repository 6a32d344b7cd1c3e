from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import pytest
from aiohttp import test_utils

from bookingrelay.dedup import DedupCache
from bookingrelay.health import Heartbeat, RelayMonitor, build_app, format_uptime, memory_mb
from bookingrelay.models.stats import RelayStats
from bookingrelay.supervisor import ConnectionSupervisor


def _monitor() -> RelayMonitor:
    stats = RelayStats(worker_id="worker_test")
    cache = DedupCache()
    cache.mark("B1")
    return RelayMonitor(stats, ConnectionSupervisor(), cache)


@asynccontextmanager
async def _client(monitor: RelayMonitor) -> AsyncIterator[test_utils.TestClient]:
    client = test_utils.TestClient(test_utils.TestServer(build_app(monitor)))
    await client.start_server()
    try:
        yield client
    finally:
        await client.close()


@pytest.mark.parametrize(("seconds", "expected"), [(0, "0h 0m"), (59, "0h 0m"), (3660, "1h 1m"), (90000, "25h 0m")])
def test_format_uptime(seconds: int, expected: str) -> None:
    assert format_uptime(seconds) == expected


@pytest.mark.asyncio
async def test_index_reports_status_snapshot() -> None:
    monitor = _monitor()
    monitor.stats.record_processed()
    monitor.stats.record_retry()

    async with _client(monitor) as client:
        resp = await client.get("/")
        body = await resp.json()

    assert resp.status == 200
    assert body["status"] == "connecting"
    assert body["worker_id"] == "worker_test"
    assert body["processed"] == 1
    assert body["retries"] == 1
    assert body["errors"] == 0
    assert body["cache_size"] == 1
    assert isinstance(body["memory_mb"], int)
    assert body["memory_mb"] >= 0
    assert body["uptime_display"].endswith("m")
    assert body["timestamp"].endswith("Z")


@pytest.mark.asyncio
async def test_health_is_unavailable_until_connected() -> None:
    monitor = _monitor()

    async with _client(monitor) as client:
        before = await client.get("/health")
        before_body = await before.json()
        monitor.supervisor.on_connectivity(True)
        after = await client.get("/health")
        after_body = await after.json()

    assert before.status == 503
    assert before_body["healthy"] is False
    assert before_body["status"] == "connecting"
    assert after.status == 200
    assert after_body == {"healthy": True, "status": "connected", "uptime": after_body["uptime"], "processed": 0}


@pytest.mark.asyncio
async def test_health_reports_shutdown() -> None:
    monitor = _monitor()
    monitor.supervisor.on_connectivity(True)
    monitor.stats.shutting_down = True

    async with _client(monitor) as client:
        resp = await client.get("/health")
        body = await resp.json()

    assert resp.status == 503
    assert body["status"] == "shutting_down"


@pytest.mark.asyncio
async def test_ping_refreshes_last_activity() -> None:
    monitor = _monitor()
    pinged_at = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)
    monitor.stats.clock = lambda: pinged_at

    async with _client(monitor) as client:
        resp = await client.get("/ping")
        body = await resp.json()

    assert body == {"pong": True, "timestamp": "2026-05-01T12:00:00.000Z", "worker_id": "worker_test"}
    assert monitor.stats.last_activity == pinged_at


def test_memory_mb_reports_resident_size() -> None:
    assert memory_mb() > 0


def test_heartbeat_counts_consecutive_unhealthy_intervals() -> None:
    monitor = _monitor()
    heartbeat = Heartbeat(monitor, interval=180)

    heartbeat.beat()
    heartbeat.beat()
    assert heartbeat.unhealthy_intervals == 2

    monitor.supervisor.on_connectivity(True)
    heartbeat.beat()
    assert heartbeat.unhealthy_intervals == 0


@pytest.mark.asyncio
async def test_heartbeat_stops_when_shutting_down() -> None:
    monitor = _monitor()
    delays: list[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)
        if len(delays) == 2:
            monitor.stats.shutting_down = True
        await asyncio.sleep(0)

    heartbeat = Heartbeat(monitor, interval=180, sleep=sleep)
    await asyncio.wait_for(heartbeat.run(), timeout=1.0)

    assert delays == [180, 180]
    assert heartbeat.unhealthy_intervals == 1
