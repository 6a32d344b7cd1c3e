"""Eligibility decision model."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class DecisionReason(StrEnum):
    ELIGIBLE = "eligible"
    INVALID_RECORD = "invalid record"
    ALREADY_PROCESSED = "already processed"
    STATUS_NOT_TERMINAL = "status not terminal"


class Decision(BaseModel):
    """Outcome of the eligibility check for one observed record."""

    model_config = ConfigDict(frozen=True)

    eligible: bool
    reason: DecisionReason
    booking_id: str | None = None
    status: str | None = None
    """Observed status, kept for diagnostics."""
