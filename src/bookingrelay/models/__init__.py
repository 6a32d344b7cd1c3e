"""Pydantic and dataclass models used across the relay."""

from bookingrelay.models.booking import Booking, BookingPayload
from bookingrelay.models.connection import ConnectionState, StateTransition
from bookingrelay.models.decision import Decision, DecisionReason
from bookingrelay.models.delivery import (
    RETRYABLE_KINDS,
    DeliveryAccepted,
    DeliveryFailure,
    DeliveryResult,
    FailureKind,
)
from bookingrelay.models.stats import HealthReport, RelayStats, StatusSnapshot

__all__ = [
    "RETRYABLE_KINDS",
    "Booking",
    "BookingPayload",
    "ConnectionState",
    "Decision",
    "DecisionReason",
    "DeliveryAccepted",
    "DeliveryFailure",
    "DeliveryResult",
    "FailureKind",
    "HealthReport",
    "RelayStats",
    "StateTransition",
    "StatusSnapshot",
]
