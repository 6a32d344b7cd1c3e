"""Operator-facing status endpoints and periodic heartbeat logging."""

from __future__ import annotations

import asyncio
import logging
import resource
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from bookingrelay._clock import isoformat_z, utcnow
from bookingrelay.dedup import DedupCache
from bookingrelay.models.stats import HealthReport, RelayStats, StatusSnapshot
from bookingrelay.supervisor import ConnectionSupervisor

_logger = logging.getLogger(__name__)

SHUTTING_DOWN = "shutting_down"


def format_uptime(seconds: int) -> str:
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def memory_mb() -> int:
    """Peak resident set size of this process, in MiB."""
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Reported in bytes on macOS and in KiB elsewhere.
    if sys.platform == "darwin":
        return round(peak / (1024 * 1024))
    return round(peak / 1024)


class RelayMonitor:
    """Read-only view over the relay's runtime state."""

    def __init__(self, stats: RelayStats, supervisor: ConnectionSupervisor, cache: DedupCache) -> None:
        self.stats = stats
        self.supervisor = supervisor
        self.cache = cache

    @property
    def status(self) -> str:
        if self.stats.shutting_down:
            return SHUTTING_DOWN
        return self.supervisor.state.value

    @property
    def healthy(self) -> bool:
        return self.supervisor.is_connected and not self.stats.shutting_down

    def snapshot(self) -> StatusSnapshot:
        uptime = self.stats.uptime_seconds()
        return StatusSnapshot(
            status=self.status,
            worker_id=self.stats.worker_id,
            processed=self.stats.processed,
            uptime_seconds=uptime,
            uptime_display=format_uptime(uptime),
            last_activity=isoformat_z(self.stats.last_activity),
            errors=self.stats.errors,
            retries=self.stats.retries,
            reconnects=self.stats.reconnects,
            cache_size=len(self.cache),
            memory_mb=memory_mb(),
            started_at=isoformat_z(self.stats.started_at),
            timestamp=isoformat_z(utcnow()),
        )

    def report(self) -> HealthReport:
        return HealthReport(
            healthy=self.healthy,
            status=self.status,
            uptime=self.stats.uptime_seconds(),
            processed=self.stats.processed,
        )


def build_app(monitor: RelayMonitor) -> web.Application:
    """Build the aiohttp application serving ``/``, ``/health`` and ``/ping``."""

    async def index(_request: web.Request) -> web.Response:
        return web.json_response(monitor.snapshot().model_dump())

    async def health(_request: web.Request) -> web.Response:
        report = monitor.report()
        return web.json_response(report.model_dump(), status=200 if report.healthy else 503)

    async def ping(_request: web.Request) -> web.Response:
        monitor.stats.touch()
        return web.json_response(
            {
                "pong": True,
                "timestamp": isoformat_z(monitor.stats.last_activity),
                "worker_id": monitor.stats.worker_id,
            }
        )

    app = web.Application()
    app.router.add_get("/", index)
    app.router.add_get("/health", health)
    app.router.add_get("/ping", ping)
    return app


class HealthServer:
    """Run :func:`build_app` on a TCP site."""

    def __init__(self, monitor: RelayMonitor, *, host: str, port: int) -> None:
        self._monitor = monitor
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        runner = web.AppRunner(build_app(self._monitor), access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()
        self._runner = runner
        _logger.info("Health server listening on http://%s:%d (/, /health, /ping)", self._host, self._port)

    async def stop(self) -> None:
        runner = self._runner
        self._runner = None
        if runner is not None:
            await runner.cleanup()


class Heartbeat:
    """Log a status line every interval and count unhealthy intervals.

    Being unhealthy only produces warnings; reconnection is the
    supervisor's job and the process keeps running.
    """

    def __init__(
        self,
        monitor: RelayMonitor,
        *,
        interval: float,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._monitor = monitor
        self._interval = interval
        self._sleep = sleep
        self.unhealthy_intervals = 0

    def beat(self) -> None:
        snap = self._monitor.snapshot()
        _logger.info(
            "Worker status: %s uptime | %d processed | %d errors | %d retries | cache %d | %d MB | %s",
            snap.uptime_display,
            snap.processed,
            snap.errors,
            snap.retries,
            snap.cache_size,
            snap.memory_mb,
            snap.status,
        )
        if self._monitor.healthy:
            self.unhealthy_intervals = 0
            return
        self.unhealthy_intervals += 1
        _logger.warning("Unhealthy for %d intervals (status: %s)", self.unhealthy_intervals, snap.status)

    async def run(self) -> None:
        while True:
            await self._sleep(self._interval)
            if self._monitor.stats.shutting_down:
                return
            self.beat()
