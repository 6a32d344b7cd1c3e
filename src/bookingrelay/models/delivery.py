"""Delivery outcome models."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class FailureKind(StrEnum):
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    UNEXPECTED_FORMAT = "unexpected_format"


RETRYABLE_KINDS: frozenset[FailureKind] = frozenset(
    {FailureKind.TIMEOUT, FailureKind.NETWORK, FailureKind.SERVER_ERROR}
)


class DeliveryAccepted(BaseModel):
    """The sink acknowledged the booking with a 2xx response."""

    model_config = ConfigDict(frozen=True)

    accepted: Literal[True] = True
    booking_id: str
    status_code: int
    attempts: int = 1
    body: Any = None
    """Parsed JSON body, or the raw text when the body is not JSON."""


class DeliveryFailure(BaseModel):
    """The booking was not accepted.

    ``retryable`` failures were retried until the attempt budget ran out
    before being surfaced; the others are surfaced on first occurrence.
    """

    model_config = ConfigDict(frozen=True)

    accepted: Literal[False] = False
    booking_id: str
    kind: FailureKind
    retryable: bool
    attempts: int = 1
    status_code: int | None = None
    message: str = ""


DeliveryResult = DeliveryAccepted | DeliveryFailure
