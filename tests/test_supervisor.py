from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from typing import Any

import pytest

from bookingrelay.exceptions import RelayConnectivityError
from bookingrelay.models.connection import ConnectionState, StateTransition
from bookingrelay.models.stats import RelayStats
from bookingrelay.source import ConnectivityChanged, RecordChanged, WatchEvent
from bookingrelay.supervisor import ConnectionSupervisor

_HOLD = object()


class _ScriptedSource:
    """Each ``watch()`` call replays the next script.

    Script items are events to yield, exceptions to raise, or ``_HOLD``
    to block until ``release`` is set.
    """

    def __init__(self, *sessions: list[Any]) -> None:
        self._sessions = list(sessions)
        self.opened = 0
        self.release = asyncio.Event()

    async def snapshot(self) -> dict[str, Any]:
        return {}

    async def delete(self, key: str) -> None:
        return None

    async def watch(self) -> AsyncGenerator[WatchEvent, None]:
        self.opened += 1
        script = self._sessions.pop(0) if self._sessions else [_HOLD]
        for item in script:
            if item is _HOLD:
                await self.release.wait()
            elif isinstance(item, BaseException):
                raise item
            else:
                yield item


class _Consumer:
    def __init__(self) -> None:
        self.scans = 0
        self.submitted: list[tuple[str, Any]] = []

    def submit(self, key: str, record: Any) -> None:
        self.submitted.append((key, record))

    def start_scan(self) -> None:
        self.scans += 1


class _StopAfter:
    """Sleep double that stops *supervisor* on the n-th call."""

    def __init__(self, calls: int) -> None:
        self.supervisor: ConnectionSupervisor | None = None
        self.calls = calls
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if len(self.delays) >= self.calls and self.supervisor is not None:
            self.supervisor.stop()
        await asyncio.sleep(0)


async def _wait_for(predicate: Any, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def _pairs(history: list[StateTransition]) -> list[tuple[str, str]]:
    return [(t.previous.value, t.current.value) for t in history]


def test_backoff_doubles_caps_and_resets_after_max_attempts() -> None:
    supervisor = ConnectionSupervisor(base_delay=1.0, max_delay=30.0, max_attempts=10)

    delays = [supervisor.next_delay() for _ in range(11)]

    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0, 30.0, 30.0, 30.0, 1.0]
    assert supervisor.failures == 1


def test_connectivity_signal_resets_failures() -> None:
    supervisor = ConnectionSupervisor()
    supervisor.next_delay()
    supervisor.next_delay()

    assert supervisor.on_connectivity(True) is True
    assert supervisor.failures == 0
    assert supervisor.is_connected
    # A repeated positive signal does not count as a new connection.
    assert supervisor.on_connectivity(True) is False


def test_transition_listener_receives_changes_and_errors_are_contained() -> None:
    seen: list[StateTransition] = []

    def listener(transition: StateTransition) -> None:
        seen.append(transition)
        raise RuntimeError("listener broke")

    supervisor = ConnectionSupervisor(on_transition=listener)
    supervisor.on_connectivity(True)
    supervisor.on_connectivity(False)

    assert _pairs(seen) == [("connecting", "connected"), ("connected", "disconnected")]
    assert supervisor.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_connectivity_flip_reconnects_and_rescans() -> None:
    stats = RelayStats(worker_id="worker_test")
    sleep = _StopAfter(calls=99)
    supervisor = ConnectionSupervisor(base_delay=1.0, stats=stats, sleep=sleep)
    source = _ScriptedSource(
        [ConnectivityChanged(True), ConnectivityChanged(False)],
        [ConnectivityChanged(True), _HOLD],
    )
    consumer = _Consumer()

    task = asyncio.create_task(supervisor.run(source, consumer))  # type: ignore[arg-type]
    await _wait_for(lambda: consumer.scans == 2)
    supervisor.stop()
    source.release.set()
    await asyncio.wait_for(task, timeout=1.0)

    assert _pairs(supervisor.history) == [
        ("connecting", "connected"),
        ("connected", "disconnected"),
        ("disconnected", "connecting"),
        ("connecting", "connected"),
    ]
    assert sleep.delays == [1.0]
    assert stats.reconnects == 1
    assert source.opened == 2


@pytest.mark.asyncio
async def test_subscription_error_backs_off_and_resubscribes() -> None:
    stats = RelayStats(worker_id="worker_test")
    sleep = _StopAfter(calls=2)
    supervisor = ConnectionSupervisor(base_delay=1.0, stats=stats, sleep=sleep)
    sleep.supervisor = supervisor
    record = {"bookingId": "B1", "booking_status": "Completed"}
    source = _ScriptedSource(
        [RelayConnectivityError("stream refused")],
        [ConnectivityChanged(True), RecordChanged(key="k1", record=record)],
    )
    consumer = _Consumer()

    await asyncio.wait_for(supervisor.run(source, consumer), timeout=1.0)  # type: ignore[arg-type]

    assert _pairs(supervisor.history) == [
        ("connecting", "error"),
        ("error", "connecting"),
        ("connecting", "connected"),
        ("connected", "disconnected"),
    ]
    assert consumer.scans == 1
    assert consumer.submitted == [("k1", record)]
    # The successful connection reset the failure count.
    assert sleep.delays == [1.0, 1.0]
    assert stats.errors == 1
    assert stats.reconnects == 2


@pytest.mark.asyncio
async def test_consecutive_failures_grow_the_delay() -> None:
    sleep = _StopAfter(calls=3)
    supervisor = ConnectionSupervisor(base_delay=0.5, max_delay=30.0, sleep=sleep)
    sleep.supervisor = supervisor
    source = _ScriptedSource(
        [RelayConnectivityError("down")],
        [RelayConnectivityError("down")],
        [RelayConnectivityError("down")],
    )

    await asyncio.wait_for(supervisor.run(source, _Consumer()), timeout=1.0)  # type: ignore[arg-type]

    assert sleep.delays == [0.5, 1.0, 2.0]
    assert supervisor.state == ConnectionState.ERROR


@pytest.mark.asyncio
async def test_unexpected_exception_does_not_end_supervision() -> None:
    stats = RelayStats(worker_id="worker_test")
    sleep = _StopAfter(calls=1)
    supervisor = ConnectionSupervisor(stats=stats, sleep=sleep)
    sleep.supervisor = supervisor
    source = _ScriptedSource([ValueError("bad frame")])

    await asyncio.wait_for(supervisor.run(source, _Consumer()), timeout=1.0)  # type: ignore[arg-type]

    assert supervisor.state == ConnectionState.ERROR
    assert stats.errors == 1


@pytest.mark.asyncio
async def test_stop_prevents_resubscription() -> None:
    supervisor = ConnectionSupervisor(sleep=_StopAfter(calls=99))
    source = _ScriptedSource([ConnectivityChanged(True), _HOLD])
    consumer = _Consumer()

    task = asyncio.create_task(supervisor.run(source, consumer))  # type: ignore[arg-type]
    await _wait_for(lambda: supervisor.is_connected)
    supervisor.stop()
    source.release.set()
    await asyncio.wait_for(task, timeout=1.0)

    assert source.opened == 1
    assert supervisor.is_connected
