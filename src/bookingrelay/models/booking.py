"""Booking record and the normalized payload sent to the sink."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from bookingrelay._clock import isoformat_z


def coerce_booking_id(value: Any) -> str | None:
    """Return the booking identifier as a non-empty string, or ``None``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _is_absent(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


class Booking(BaseModel):
    """A booking record as stored under ``Bookings/{key}``.

    Attribute names follow the upstream wire format (a mix of camelCase
    and snake_case), exposed here as snake_case fields with aliases.
    Absent attributes (missing, ``null`` or empty string) resolve to the
    field default so a payload built from the record never carries an
    undefined value.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    booking_id: str = Field(alias="bookingId")
    booking_status: str | None = None
    assigned_rider: Any = Field(default=None, alias="assignedRider")
    auto_cancel_at: Any = None
    booked_at: Any = None
    booked_at_timestamp: Any = None
    plate_number: Any = None
    destination_coordinates: Any = Field(default=None, alias="destinationCoordinates")
    expires_at: Any = None
    fare: Any = 0
    luggage_count: Any = Field(default=0, alias="luggageCount")
    number_of_passengers: Any = Field(default="1", alias="numberofPassengers")
    passenger_id: Any = Field(default=None, alias="passengerId")
    passenger_name: Any = Field(default=None, alias="passengerName")
    payment_method: Any = Field(default="Cash", alias="paymentMethod")
    pickup_coordinates: Any = Field(default=None, alias="pickupCoordinates")
    ratings: Any = None

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)
    """Record as read from the store."""

    @model_validator(mode="before")
    @classmethod
    def _drop_absent_values(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        cleaned = {key: value for key, value in values.items() if not _is_absent(value)}
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned

    @field_validator("booking_id", mode="before")
    @classmethod
    def _normalize_booking_id(cls, value: Any) -> str:
        booking_id = coerce_booking_id(value)
        if booking_id is None:
            raise ValueError("bookingId must be a non-empty string or integer")
        return booking_id

    @field_validator("booking_status", mode="before")
    @classmethod
    def _stringify_status(cls, value: Any) -> str | None:
        if value is None:
            return None
        return str(value)


class BookingPayload(Booking):
    """Normalized sink payload: every booking attribute plus delivery metadata."""

    processed_at: str
    worker_id: str
    attempt: int = 1

    @classmethod
    def from_booking(cls, booking: Booking, *, worker_id: str, processed_at: datetime) -> BookingPayload:
        return cls.model_validate(
            {
                **booking.model_dump(),
                "raw": booking.raw,
                "worker_id": worker_id,
                "processed_at": isoformat_z(processed_at),
            }
        )

    def for_attempt(self, attempt: int) -> BookingPayload:
        return self.model_copy(update={"attempt": attempt})

    def to_wire(self) -> dict[str, Any]:
        """JSON body for the sink, using upstream field names."""
        return self.model_dump(by_alias=True, mode="json")
