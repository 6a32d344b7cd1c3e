"""Process-level wiring of the relay components."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from bookingrelay._redact import redact_url
from bookingrelay._transport import HttpSinkTransport, SinkTransport
from bookingrelay.config import RelayConfig
from bookingrelay.dedup import DedupCache
from bookingrelay.delivery import DeliveryWorker
from bookingrelay.exceptions import RelayError
from bookingrelay.health import HealthServer, Heartbeat, RelayMonitor
from bookingrelay.models.stats import RelayStats
from bookingrelay.relay import RelayOrchestrator
from bookingrelay.source import FirebaseSource, RecordSource, SourceMutator
from bookingrelay.supervisor import ConnectionSupervisor

_logger = logging.getLogger(__name__)


class RelayService:
    """Owns the relay runtime for one process.

    Usage::

        async with RelayService(config) as service:
            await service.run()

    ``run`` returns after :meth:`request_stop`; shutdown stops accepting
    records, closes the watch, and lets in-flight deliveries finish.
    """

    def __init__(
        self,
        config: RelayConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        source: RecordSource | None = None,
        transport: SinkTransport | None = None,
        serve_health: bool = True,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._source_override = source
        self._transport_override = transport
        self._serve_health = serve_health

        self.stats = RelayStats(worker_id=config.worker_id)
        self.cache = DedupCache(config.cache_max_size)
        self.supervisor = ConnectionSupervisor.from_config(config, stats=self.stats)
        self.monitor = RelayMonitor(self.stats, self.supervisor, self.cache)
        self.relay: RelayOrchestrator | None = None
        self._source: RecordSource | None = None
        self._health: HealthServer | None = None
        self._stop_event = asyncio.Event()
        self._background: list[asyncio.Task[Any]] = []

    async def __aenter__(self) -> RelayService:
        if self._http_session is None and (self._source_override is None or self._transport_override is None):
            self._http_session = aiohttp.ClientSession()

        if self._source_override is not None:
            source = self._source_override
        else:
            assert self._http_session is not None  # noqa: S101
            source = FirebaseSource(self._config, self._http_session)

        if self._transport_override is not None:
            transport = self._transport_override
        else:
            assert self._http_session is not None  # noqa: S101
            transport = HttpSinkTransport(self._http_session)

        self._source = source
        self.relay = RelayOrchestrator(
            source=source,
            cache=self.cache,
            worker=DeliveryWorker(self._config, transport, stats=self.stats),
            mutator=SourceMutator(source, enabled=self._config.should_delete),
            stats=self.stats,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self.relay = None
        self._source = None

    def _require_relay(self) -> RelayOrchestrator:
        if self.relay is None or self._source is None:
            raise RelayError("Service not initialized. Use 'async with RelayService(...) as service:'")
        return self.relay

    def request_stop(self, reason: str = "") -> None:
        if not self._stop_event.is_set():
            _logger.info("Stop requested%s", f" ({reason})" if reason else "")
        self._stop_event.set()

    async def run(self) -> None:
        relay = self._require_relay()
        assert self._source is not None  # noqa: S101
        config = self._config

        _logger.info("Starting worker %s", config.worker_id)
        _logger.info("Sink: %s", redact_url(config.sink_url))
        _logger.info("Mode: %s (delete after delivery: %s)", config.mode, config.should_delete)

        if self._serve_health:
            self._health = HealthServer(self.monitor, host=config.host, port=config.port)
            await self._health.start()

        loop = asyncio.get_running_loop()
        heartbeat = Heartbeat(self.monitor, interval=config.heartbeat_interval)
        self._background = [
            loop.create_task(self.cache.run_eviction(config.cache_eviction_interval), name="relay:eviction"),
            loop.create_task(heartbeat.run(), name="relay:heartbeat"),
        ]
        supervisor_task = loop.create_task(self.supervisor.run(self._source, relay), name="relay:supervisor")

        try:
            await self._stop_event.wait()
        finally:
            await self._shutdown(relay, supervisor_task)

    async def _shutdown(self, relay: RelayOrchestrator, supervisor_task: asyncio.Task[Any]) -> None:
        _logger.info("Shutting down: %d relay tasks in flight", relay.pending)
        self.stats.shutting_down = True
        relay.stop_accepting()
        self.supervisor.stop()

        tasks = [supervisor_task, *self._background]
        for task in tasks:
            task.cancel()
        for result in await asyncio.gather(*tasks, return_exceptions=True):
            if isinstance(result, Exception):
                _logger.warning("Background task ended with error: %s", result)
        self._background = []

        await relay.drain()

        if self._health is not None:
            await self._health.stop()
            self._health = None
        _logger.info("Shutdown complete (%d processed, %d errors)", self.stats.processed, self.stats.errors)
