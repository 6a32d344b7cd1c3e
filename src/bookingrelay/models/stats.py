"""Runtime counters and the status snapshot served by the health endpoints."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from bookingrelay._clock import utcnow


@dataclass
class RelayStats:
    """Process-lifetime counters, constructed once and shared by reference."""

    worker_id: str
    processed: int = 0
    errors: int = 0
    retries: int = 0
    reconnects: int = 0
    shutting_down: bool = False
    clock: Callable[[], datetime] = field(default=utcnow, repr=False)
    started_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)
    _started_monotonic: float = field(default_factory=time.monotonic, repr=False)

    def touch(self) -> None:
        self.last_activity = self.clock()

    def record_processed(self) -> None:
        self.processed += 1
        self.touch()

    def record_error(self) -> None:
        self.errors += 1

    def record_retry(self) -> None:
        self.retries += 1

    def record_reconnect(self) -> None:
        self.reconnects += 1

    def uptime_seconds(self) -> int:
        return int(time.monotonic() - self._started_monotonic)


class StatusSnapshot(BaseModel):
    """Payload of ``GET /``."""

    model_config = ConfigDict(frozen=True)

    status: str
    worker_id: str
    processed: int
    uptime_seconds: int
    uptime_display: str
    last_activity: str
    errors: int
    retries: int
    reconnects: int
    cache_size: int
    memory_mb: int
    started_at: str
    timestamp: str


class HealthReport(BaseModel):
    """Payload of ``GET /health``."""

    model_config = ConfigDict(frozen=True)

    healthy: bool
    status: str
    uptime: int
    processed: int
