"""Decide whether an observed record should be forwarded."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from bookingrelay._constants import TERMINAL_STATUSES
from bookingrelay.dedup import DedupCache
from bookingrelay.models.booking import coerce_booking_id
from bookingrelay.models.decision import Decision, DecisionReason


def is_terminal_status(status: Any) -> bool:
    return isinstance(status, str) and status in TERMINAL_STATUSES


def decide(record: Any, cache: DedupCache) -> Decision:
    """Classify *record* without side effects.

    Rules are checked in order and the first match wins: a record without
    an identifiable ``bookingId`` is invalid, an identifier already in
    *cache* was already processed, a non-terminal status is not eligible,
    anything else is eligible.
    """
    if not isinstance(record, Mapping):
        return Decision(eligible=False, reason=DecisionReason.INVALID_RECORD)

    booking_id = coerce_booking_id(record.get("bookingId"))
    status = record.get("booking_status")
    status_text = None if status is None else str(status)
    if booking_id is None:
        return Decision(eligible=False, reason=DecisionReason.INVALID_RECORD, status=status_text)

    if cache.contains(booking_id):
        return Decision(
            eligible=False,
            reason=DecisionReason.ALREADY_PROCESSED,
            booking_id=booking_id,
            status=status_text,
        )

    if not is_terminal_status(status):
        return Decision(
            eligible=False,
            reason=DecisionReason.STATUS_NOT_TERMINAL,
            booking_id=booking_id,
            status=status_text,
        )

    return Decision(
        eligible=True,
        reason=DecisionReason.ELIGIBLE,
        booking_id=booking_id,
        status=status_text,
    )
