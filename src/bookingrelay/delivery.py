"""Send bookings to the downstream sink with retry and outcome classification."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from typing import Any

from bookingrelay._clock import utcnow
from bookingrelay._constants import BODY_SNIPPET_LENGTH, MARKUP_CONTENT_TYPES, USER_AGENT_PREFIX
from bookingrelay._redact import redact_for_log
from bookingrelay._transport import SinkResponse, SinkTransport
from bookingrelay.config import RelayConfig
from bookingrelay.exceptions import RelayTransportError
from bookingrelay.models.booking import Booking, BookingPayload
from bookingrelay.models.delivery import (
    RETRYABLE_KINDS,
    DeliveryAccepted,
    DeliveryFailure,
    DeliveryResult,
    FailureKind,
)
from bookingrelay.models.stats import RelayStats

_logger = logging.getLogger(__name__)


def looks_like_markup(text: str, content_type: str = "") -> bool:
    """Return True when a body is an HTML/XML page rather than data.

    Either the declared content type says so, or the body (ignoring a
    byte order mark and leading whitespace) opens with a tag.
    """
    if content_type.split(";", 1)[0].strip().lower() in MARKUP_CONTENT_TYPES:
        return True
    return text.lstrip("\ufeff \t\r\n").startswith("<")


def parse_body(text: str) -> tuple[bool, Any]:
    """Parse a response body as JSON.

    Returns ``(True, value)`` on success and ``(False, text)`` otherwise.
    An empty body parses to ``None``.
    """
    if not text.strip():
        return True, None
    try:
        return True, json.loads(text)
    except ValueError:
        return False, text


def _describe(status: int, body: Any, text: str) -> str:
    detail: Any = None
    if isinstance(body, Mapping):
        detail = body.get("message") or body.get("error")
    if not detail:
        detail = text.strip()[:BODY_SNIPPET_LENGTH] or "Unknown error"
    return f"HTTP {status}: {detail}"


def classify_response(response: SinkResponse, *, booking_id: str, attempts: int = 1) -> DeliveryResult:
    """Map a sink response to an accepted or failed delivery."""
    status = response.status
    parsed, body = parse_body(response.text)

    if 200 <= status < 300:
        if not parsed and looks_like_markup(response.text, response.content_type):
            return DeliveryFailure(
                booking_id=booking_id,
                kind=FailureKind.UNEXPECTED_FORMAT,
                retryable=False,
                attempts=attempts,
                status_code=status,
                message=f"HTTP {status} returned a markup page: {response.text.strip()[:BODY_SNIPPET_LENGTH]}",
            )
        return DeliveryAccepted(booking_id=booking_id, status_code=status, attempts=attempts, body=body)

    if status >= 500:
        kind = FailureKind.SERVER_ERROR
    elif status >= 400:
        kind = FailureKind.CLIENT_ERROR
    else:
        kind = FailureKind.UNEXPECTED_FORMAT

    return DeliveryFailure(
        booking_id=booking_id,
        kind=kind,
        retryable=kind in RETRYABLE_KINDS,
        attempts=attempts,
        status_code=status,
        message=_describe(status, body, response.text),
    )


class DeliveryWorker:
    """POST one booking at a time to the sink.

    Retryable failures (timeouts, network errors, 5xx) are retried up to
    ``config.max_retries`` more times with exponential backoff; every
    retry is a fresh request carrying the same payload and the next
    ``attempt`` number.  The final outcome is returned, never raised.
    """

    def __init__(
        self,
        config: RelayConfig,
        transport: SinkTransport,
        *,
        stats: RelayStats | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config
        self._transport = transport
        self._stats = stats
        self._sleep = sleep
        self._clock = clock
        self._headers = {
            "user-agent": f"{USER_AGENT_PREFIX}/{config.worker_id}",
            "x-worker-id": config.worker_id,
        }

    @property
    def max_attempts(self) -> int:
        return 1 + self._config.max_retries

    def build_payload(self, booking: Booking) -> BookingPayload:
        return BookingPayload.from_booking(
            booking,
            worker_id=self._config.worker_id,
            processed_at=self._clock(),
        )

    def backoff_delay(self, retry: int) -> float:
        """Delay before retry number *retry* (1-based)."""
        return min(self._config.retry_max_delay, self._config.retry_base_delay * (2**retry))

    async def send(self, booking: Booking | Mapping[str, Any]) -> DeliveryResult:
        """Deliver *booking* and return the final outcome."""
        if not isinstance(booking, Booking):
            booking = Booking.model_validate(booking)

        payload = self.build_payload(booking)
        _logger.debug("Payload for %s: %s", booking.booking_id, redact_for_log(payload.to_wire()))

        attempt = 1
        while True:
            result = await self._attempt(payload.for_attempt(attempt), attempt)
            if isinstance(result, DeliveryAccepted):
                _logger.info("Sent %s (HTTP %d, attempt %d)", booking.booking_id, result.status_code, attempt)
                return result

            if not result.retryable:
                _logger.error(
                    "Delivery of %s rejected (%s): %s",
                    booking.booking_id,
                    result.kind.value,
                    result.message,
                )
                return result

            if attempt >= self.max_attempts:
                _logger.error(
                    "Delivery of %s gave up after %d attempts (%s): %s",
                    booking.booking_id,
                    attempt,
                    result.kind.value,
                    result.message,
                )
                return result

            delay = self.backoff_delay(attempt)
            _logger.warning(
                "Delivery of %s failed (attempt %d/%d, %s), retrying in %.1fs",
                booking.booking_id,
                attempt,
                self.max_attempts,
                result.message,
                delay,
            )
            if self._stats is not None:
                self._stats.record_retry()
            await self._sleep(delay)
            attempt += 1

    async def _attempt(self, payload: BookingPayload, attempt: int) -> DeliveryResult:
        try:
            response = await self._transport.post_json(
                self._config.sink_url,
                payload.to_wire(),
                headers=self._headers,
                timeout=self._config.request_timeout,
            )
        except RelayTransportError as exc:
            return DeliveryFailure(
                booking_id=payload.booking_id,
                kind=FailureKind.TIMEOUT if exc.timed_out else FailureKind.NETWORK,
                retryable=True,
                attempts=attempt,
                message=str(exc),
            )
        return classify_response(response, booking_id=payload.booking_id, attempts=attempt)
