"""Connection state machine and reconnection loop for the watch stream."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from bookingrelay.config import RelayConfig
from bookingrelay.exceptions import RelayConnectivityError
from bookingrelay.models.connection import ConnectionState, StateTransition
from bookingrelay.models.stats import RelayStats
from bookingrelay.source import ConnectivityChanged, RecordSource

_logger = logging.getLogger(__name__)


class WatchConsumer(Protocol):
    """What the supervisor feeds: live changes and a scan trigger."""

    def submit(self, key: str, record: Any) -> Any:
        ...

    def start_scan(self) -> Any:
        ...


class ConnectionSupervisor:
    """Keep the watch subscription alive for the life of the process.

    States move ``connecting -> connected`` on a positive connectivity
    signal, ``connected -> disconnected`` on a negative one or when the
    stream ends, and to ``error`` when the subscription fails.  From
    ``disconnected``/``error`` the supervisor waits an exponential backoff
    and re-subscribes; each new live subscription triggers a full scan.

    The backoff counter resets after ``max_attempts`` consecutive
    failures, so supervision never gives up.
    """

    def __init__(
        self,
        *,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        max_attempts: int = 10,
        stats: RelayStats | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_transition: Callable[[StateTransition], None] | None = None,
        history_size: int = 100,
    ) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._max_attempts = max_attempts
        self._stats = stats
        self._sleep = sleep
        self._on_transition = on_transition
        self._state = ConnectionState.CONNECTING
        self._failures = 0
        self._stopping = False
        self._history: deque[StateTransition] = deque(maxlen=history_size)

    @classmethod
    def from_config(cls, config: RelayConfig, **kwargs: Any) -> ConnectionSupervisor:
        return cls(
            base_delay=config.reconnect_base_delay,
            max_delay=config.reconnect_max_delay,
            max_attempts=config.max_reconnect_attempts,
            **kwargs,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def failures(self) -> int:
        """Consecutive failed subscriptions since the last connection."""
        return self._failures

    @property
    def history(self) -> list[StateTransition]:
        return list(self._history)

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def stop(self) -> None:
        self._stopping = True

    def _transition(self, new_state: ConnectionState, reason: str = "") -> None:
        previous = self._state
        if previous is new_state:
            return
        self._state = new_state
        transition = StateTransition(previous=previous, current=new_state, reason=reason)
        self._history.append(transition)
        _logger.info("Connection %s -> %s%s", previous.value, new_state.value, f" ({reason})" if reason else "")
        if self._on_transition is not None:
            try:
                self._on_transition(transition)
            except Exception:
                _logger.debug("Transition listener failed", exc_info=True)

    def begin_connect(self) -> None:
        self._transition(ConnectionState.CONNECTING, "subscribing")

    def on_connectivity(self, connected: bool) -> bool:
        """Apply a connectivity signal.

        Returns True when the signal completed a connection, which is the
        caller's cue to run a full scan.
        """
        if connected:
            if self._state is ConnectionState.CONNECTED:
                return False
            self._failures = 0
            self._transition(ConnectionState.CONNECTED, "stream live")
            return True
        self._transition(ConnectionState.DISCONNECTED, "connectivity lost")
        return False

    def on_error(self, exc: BaseException) -> None:
        _logger.warning("Watch subscription failed: %s", exc)
        if self._stats is not None:
            self._stats.record_error()
        self._transition(ConnectionState.ERROR, type(exc).__name__)

    def next_delay(self) -> float:
        """Count a failed subscription and return the delay before the next one."""
        self._failures += 1
        if self._failures > self._max_attempts:
            _logger.warning(
                "Reconnection failed %d times in a row; resetting backoff and continuing",
                self._max_attempts,
            )
            self._failures = 1
        return min(self._max_delay, self._base_delay * (2 ** (self._failures - 1)))

    async def run(self, source: RecordSource, consumer: WatchConsumer) -> None:
        """Subscribe, feed *consumer*, and re-subscribe until stopped."""
        while not self._stopping:
            self.begin_connect()
            try:
                await self._consume(source, consumer)
            except RelayConnectivityError as exc:
                self.on_error(exc)
            except Exception as exc:
                _logger.exception("Unexpected error in watch subscription")
                self.on_error(exc)
            else:
                if not self._stopping and self._state is not ConnectionState.DISCONNECTED:
                    self._transition(ConnectionState.DISCONNECTED, "stream closed")

            if self._stopping:
                break

            delay = self.next_delay()
            if self._stats is not None:
                self._stats.record_reconnect()
            _logger.info("Reconnecting in %.1fs (attempt %d/%d)", delay, self._failures, self._max_attempts)
            await self._sleep(delay)

    async def _consume(self, source: RecordSource, consumer: WatchConsumer) -> None:
        async with contextlib.aclosing(source.watch()) as events:
            async for event in events:
                if self._stopping:
                    return
                if isinstance(event, ConnectivityChanged):
                    if not event.connected:
                        self.on_connectivity(False)
                        return
                    if self.on_connectivity(True):
                        consumer.start_scan()
                    continue
                consumer.submit(event.key, event.record)
