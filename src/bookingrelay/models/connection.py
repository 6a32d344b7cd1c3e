"""Connection state of the watch subscription."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from bookingrelay._clock import utcnow


class ConnectionState(StrEnum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class StateTransition(BaseModel):
    model_config = ConfigDict(frozen=True)

    previous: ConnectionState
    current: ConnectionState
    reason: str = ""
    at: datetime = Field(default_factory=utcnow)
