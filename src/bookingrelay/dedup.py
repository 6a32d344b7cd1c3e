"""Bounded in-memory record of bookings already handed to the sink."""

from __future__ import annotations

import asyncio
import logging
import threading

_logger = logging.getLogger(__name__)


class DedupCache:
    """Insertion-ordered set of booking IDs with periodic FIFO eviction.

    Membership is an idempotency hint scoped to the process lifetime.
    ``mark`` is an atomic test-and-set, so it doubles as the gate that
    keeps two deliveries of the same booking from running at once.
    Eviction never runs inline; :meth:`run_eviction` calls
    :meth:`evict` on a timer.  Entries marked but not yet released or
    unmarked are in flight and are never evicted.
    """

    def __init__(self, max_size: int = 5000) -> None:
        if max_size <= 0:
            raise ValueError(f"max_size must be > 0, got {max_size}")
        self._max_size = max_size
        # dict preserves insertion order; values are unused.
        self._entries: dict[str, None] = {}
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def eviction_target(self) -> int:
        """Size an eviction pass trims down to (80% of ``max_size``)."""
        return self._max_size - self._max_size // 5

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, booking_id: object) -> bool:
        with self._lock:
            return booking_id in self._entries

    def contains(self, booking_id: str) -> bool:
        return booking_id in self

    def in_flight(self, booking_id: str) -> bool:
        with self._lock:
            return booking_id in self._in_flight

    def mark(self, booking_id: str) -> bool:
        """Insert *booking_id* as in flight; ``False`` if already present."""
        with self._lock:
            if booking_id in self._entries:
                return False
            self._entries[booking_id] = None
            self._in_flight.add(booking_id)
            return True

    def release(self, booking_id: str) -> None:
        """Keep *booking_id* as processed and make it evictable."""
        with self._lock:
            self._in_flight.discard(booking_id)

    def unmark(self, booking_id: str) -> None:
        """Forget *booking_id* so a later notification can retry it."""
        with self._lock:
            self._entries.pop(booking_id, None)
            self._in_flight.discard(booking_id)

    def evict(self) -> int:
        """Drop the oldest settled entries once the size exceeds ``max_size``.

        Returns the number of entries removed.
        """
        with self._lock:
            size = len(self._entries)
            if size <= self._max_size:
                return 0
            excess = size - self.eviction_target
            victims: list[str] = []
            for booking_id in self._entries:
                if len(victims) >= excess:
                    break
                if booking_id in self._in_flight:
                    continue
                victims.append(booking_id)
            for booking_id in victims:
                del self._entries[booking_id]
            remaining = len(self._entries)

        if victims:
            _logger.info("Evicted %d dedup entries (%d -> %d)", len(victims), size, remaining)
        return len(victims)

    async def run_eviction(self, interval: float) -> None:
        """Evict every *interval* seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            self.evict()
