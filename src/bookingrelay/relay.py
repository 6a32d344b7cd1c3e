"""Relay pipeline: filter, dedup, deliver, then delete or release."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from bookingrelay._redact import redact_for_log
from bookingrelay.dedup import DedupCache
from bookingrelay.delivery import DeliveryWorker
from bookingrelay.eligibility import decide
from bookingrelay.exceptions import RelaySourceError
from bookingrelay.models.booking import Booking
from bookingrelay.models.delivery import DeliveryFailure
from bookingrelay.models.stats import RelayStats
from bookingrelay.source import RecordSource, SourceMutator, iterate_snapshot

_logger = logging.getLogger(__name__)


class RelayOrchestrator:
    """Run every observed record through the same pipeline.

    Full scans and live change events both end up in :meth:`process`.
    Live events are scheduled as independent tasks so one booking's
    retry backoff never holds up another; a scan walks the snapshot
    sequentially.  Per-record failures are logged and counted, never
    propagated.
    """

    def __init__(
        self,
        *,
        source: RecordSource,
        cache: DedupCache,
        worker: DeliveryWorker,
        mutator: SourceMutator,
        stats: RelayStats,
    ) -> None:
        self._source = source
        self._cache = cache
        self._worker = worker
        self._mutator = mutator
        self._stats = stats
        self._accepting = True
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        """Scheduled scans and deliveries that have not finished."""
        return len(self._tasks)

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any] | None:
        if not self._accepting:
            coro.close()
            _logger.debug("Not accepting work, dropped %s", name)
            return None
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def submit(self, key: str, record: Any) -> asyncio.Task[Any] | None:
        """Schedule a live change event."""
        status = record.get("booking_status") if isinstance(record, dict) else None
        _logger.info("Change detected: %s (%s)", key, status)
        return self._spawn(self.process(key, record), f"relay:{key}")

    def start_scan(self) -> asyncio.Task[Any] | None:
        """Schedule a full-collection scan."""
        return self._spawn(self.scan(), "relay:scan")

    async def scan(self) -> int:
        """Process every record currently in the store; returns how many were forwarded."""
        _logger.info("Performing full scan")
        seen = 0
        forwarded = 0
        try:
            async for key, record in iterate_snapshot(self._source):
                if not self._accepting:
                    break
                seen += 1
                if await self.process(key, record):
                    forwarded += 1
        except RelaySourceError as exc:
            _logger.error("Full scan failed after %d records: %s", seen, exc)
            self._stats.record_error()
            return forwarded

        if seen == 0:
            _logger.info("No existing bookings found")
        else:
            _logger.info("Full scan complete: %d of %d bookings forwarded", forwarded, seen)
        return forwarded

    async def process(self, key: str, record: Any) -> bool:
        """Relay one record; returns True when the sink accepted it."""
        if not self._accepting:
            return False
        self._stats.touch()

        decision = decide(record, self._cache)
        if not decision.eligible:
            _logger.debug("Skipping %s: %s (status=%s)", key, decision.reason.value, decision.status)
            return False

        booking_id = decision.booking_id
        assert booking_id is not None  # noqa: S101
        if not self._cache.mark(booking_id):
            _logger.debug("Skipping %s: already in flight", booking_id)
            return False

        _logger.info("Processing %s (%s)", booking_id, decision.status)
        try:
            booking = Booking.model_validate(record)
            result = await self._worker.send(booking)
        except Exception:
            _logger.exception("Unexpected error relaying %s: %s", booking_id, redact_for_log(record))
            self._cache.unmark(booking_id)
            self._stats.record_error()
            return False

        if isinstance(result, DeliveryFailure):
            self._cache.unmark(booking_id)
            self._stats.record_error()
            return False

        self._stats.record_processed()
        try:
            await self._mutator.delete(key)
        except RelaySourceError as exc:
            # Already accepted downstream; keep the mark so this process does not resend it.
            _logger.error("Delivered %s but could not delete %s: %s", booking_id, key, exc)
            self._stats.record_error()
        finally:
            self._cache.release(booking_id)
        return True

    def stop_accepting(self) -> None:
        self._accepting = False

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for scheduled work; returns False if *timeout* expired first."""
        if not self._tasks:
            return True
        _done, still_pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if still_pending:
            _logger.warning("%d relay tasks still running after %.1fs", len(still_pending), timeout or 0.0)
            return False
        return True
