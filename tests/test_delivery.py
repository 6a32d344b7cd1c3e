from __future__ import annotations

import pytest
from _fakes import RecordingSleep, ScriptedTransport, make_config, ok, timeout_error

from bookingrelay._transport import SinkResponse
from bookingrelay.delivery import DeliveryWorker, classify_response, looks_like_markup, parse_body
from bookingrelay.exceptions import RelayTransportError
from bookingrelay.models.delivery import DeliveryAccepted, DeliveryFailure, FailureKind
from bookingrelay.models.stats import RelayStats

_B1 = {"bookingId": "B1", "booking_status": "Completed", "fare": 120}


def _worker(transport: ScriptedTransport, **overrides: object) -> tuple[DeliveryWorker, RecordingSleep, RelayStats]:
    sleep = RecordingSleep()
    stats = RelayStats(worker_id="worker_test")
    worker = DeliveryWorker(make_config(**overrides), transport, stats=stats, sleep=sleep)
    return worker, sleep, stats


@pytest.mark.asyncio
async def test_send_posts_normalized_payload_once() -> None:
    transport = ScriptedTransport(ok())
    worker, sleep, _stats = _worker(transport)

    result = await worker.send(_B1)

    assert isinstance(result, DeliveryAccepted)
    assert result.status_code == 200
    assert result.body == {"ok": True}
    assert result.attempts == 1
    assert sleep.delays == []
    assert len(transport.calls) == 1

    call = transport.calls[0]
    assert call["url"] == "https://sink.example.com/api/insert-booking"
    assert call["timeout"] == 30.0
    assert call["headers"]["x-worker-id"] == "worker_test"
    assert call["headers"]["user-agent"] == "bookingrelay/worker_test"
    assert call["payload"]["bookingId"] == "B1"
    assert call["payload"]["fare"] == 120
    assert call["payload"]["paymentMethod"] == "Cash"
    assert call["payload"]["ratings"] is None
    assert call["payload"]["attempt"] == 1


@pytest.mark.asyncio
async def test_persistent_server_error_exhausts_retries() -> None:
    transport = ScriptedTransport(ok('{"message":"unavailable"}', status=503))
    worker, sleep, stats = _worker(transport, retry_base_delay=1.0)

    result = await worker.send(_B1)

    assert isinstance(result, DeliveryFailure)
    assert result.kind == FailureKind.SERVER_ERROR
    assert result.retryable is True
    assert result.attempts == 4
    assert result.status_code == 503
    assert result.message == "HTTP 503: unavailable"
    assert len(transport.calls) == 4
    assert [call["payload"]["attempt"] for call in transport.calls] == [1, 2, 3, 4]
    assert sleep.delays == [2.0, 4.0, 8.0]
    assert stats.retries == 3


@pytest.mark.asyncio
async def test_every_attempt_carries_the_same_booking_data() -> None:
    transport = ScriptedTransport(ok(status=502), ok())
    worker, _sleep, _stats = _worker(transport)

    await worker.send(_B1)

    first, second = (dict(call["payload"]) for call in transport.calls)
    first.pop("attempt")
    second.pop("attempt")
    assert first == second


@pytest.mark.asyncio
async def test_client_error_is_not_retried() -> None:
    transport = ScriptedTransport(ok('{"error":"bad booking"}', status=400))
    worker, sleep, stats = _worker(transport)

    result = await worker.send(_B1)

    assert isinstance(result, DeliveryFailure)
    assert result.kind == FailureKind.CLIENT_ERROR
    assert result.retryable is False
    assert result.message == "HTTP 400: bad booking"
    assert len(transport.calls) == 1
    assert sleep.delays == []
    assert stats.retries == 0


@pytest.mark.asyncio
async def test_markup_success_page_is_unexpected_format() -> None:
    transport = ScriptedTransport(SinkResponse(status=200, text="<!DOCTYPE html><html>Login</html>"))
    worker, _sleep, _stats = _worker(transport)

    result = await worker.send(_B1)

    assert isinstance(result, DeliveryFailure)
    assert result.kind == FailureKind.UNEXPECTED_FORMAT
    assert result.retryable is False
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_timeout_then_success() -> None:
    transport = ScriptedTransport(timeout_error(), ok())
    worker, sleep, stats = _worker(transport)

    result = await worker.send(_B1)

    assert isinstance(result, DeliveryAccepted)
    assert result.attempts == 2
    assert sleep.delays == [2.0]
    assert stats.retries == 1


@pytest.mark.asyncio
async def test_network_errors_are_retried_and_classified() -> None:
    transport = ScriptedTransport(RelayTransportError("connection refused"))
    worker, sleep, _stats = _worker(transport, max_retries=1)

    result = await worker.send(_B1)

    assert isinstance(result, DeliveryFailure)
    assert result.kind == FailureKind.NETWORK
    assert result.retryable is True
    assert result.status_code is None
    assert len(transport.calls) == 2
    assert sleep.delays == [2.0]


@pytest.mark.asyncio
async def test_zero_retries_means_a_single_attempt() -> None:
    transport = ScriptedTransport(timeout_error())
    worker, sleep, _stats = _worker(transport, max_retries=0)

    result = await worker.send(_B1)

    assert isinstance(result, DeliveryFailure)
    assert result.kind == FailureKind.TIMEOUT
    assert len(transport.calls) == 1
    assert sleep.delays == []


def test_backoff_is_capped() -> None:
    worker = DeliveryWorker(make_config(retry_base_delay=1.0, retry_max_delay=5.0), ScriptedTransport())

    assert [worker.backoff_delay(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 5.0, 5.0]


@pytest.mark.parametrize(
    ("status", "kind"),
    [(500, FailureKind.SERVER_ERROR), (504, FailureKind.SERVER_ERROR), (404, FailureKind.CLIENT_ERROR), (302, FailureKind.UNEXPECTED_FORMAT)],
)
def test_classify_non_success_statuses(status: int, kind: FailureKind) -> None:
    result = classify_response(SinkResponse(status=status, text=""), booking_id="B1")

    assert isinstance(result, DeliveryFailure)
    assert result.kind == kind
    assert result.message == f"HTTP {status}: Unknown error"


def test_classify_success_with_plain_text_body() -> None:
    result = classify_response(SinkResponse(status=201, text="stored"), booking_id="B1")

    assert isinstance(result, DeliveryAccepted)
    assert result.body == "stored"


def test_classify_success_with_empty_body() -> None:
    result = classify_response(SinkResponse(status=204, text=""), booking_id="B1")

    assert isinstance(result, DeliveryAccepted)
    assert result.body is None


def test_parse_body_and_markup_detection() -> None:
    assert parse_body('{"a": 1}') == (True, {"a": 1})
    assert parse_body("   ") == (True, None)
    assert parse_body("<html>") == (False, "<html>")
    assert looks_like_markup("  <HTML><body>oops</body></HTML>")
    assert looks_like_markup("<?xml version='1.0'?><error/>")
    assert looks_like_markup("\ufeff<div>oops</div>")
    assert looks_like_markup("oops", "text/html; charset=utf-8")
    assert not looks_like_markup("plain text")


@pytest.mark.parametrize(
    ("text", "content_type"),
    [
        ("\ufeff<!DOCTYPE html><html><body>Sign in</body></html>", "text/html"),
        ("<div>Server Error</div>", "text/html; charset=utf-8"),
        ("\ufeff  <div>Server Error</div>", ""),
        ("Service temporarily unavailable", "application/xhtml+xml"),
    ],
)
def test_markup_success_pages_are_not_accepted(text: str, content_type: str) -> None:
    result = classify_response(SinkResponse(status=200, text=text, content_type=content_type), booking_id="B1")

    assert isinstance(result, DeliveryFailure)
    assert result.kind == FailureKind.UNEXPECTED_FORMAT
    assert result.retryable is False


@pytest.mark.asyncio
async def test_markup_page_with_byte_order_mark_is_not_delivered() -> None:
    page = SinkResponse(status=200, text="\ufeff<!DOCTYPE html><html>Error</html>", content_type="text/html")
    transport = ScriptedTransport(page)
    worker, sleep, _stats = _worker(transport)

    result = await worker.send(_B1)

    assert isinstance(result, DeliveryFailure)
    assert result.kind == FailureKind.UNEXPECTED_FORMAT
    assert len(transport.calls) == 1
    assert sleep.delays == []


def test_json_body_wins_over_declared_content_type() -> None:
    result = classify_response(SinkResponse(status=200, text='{"ok":true}', content_type="text/html"), booking_id="B1")

    assert isinstance(result, DeliveryAccepted)
    assert result.body == {"ok": True}
