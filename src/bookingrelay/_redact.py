"""Helpers for safe debug logging.

Booking records carry passenger identity and location data, and store
URLs may carry a database secret.  This module redacts those before
they reach DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "passengerid",
        "passengername",
        "passenger_id",
        "passenger_name",
        "pickupcoordinates",
        "destinationcoordinates",
        "auth",
        "access_token",
        "authorization",
        "cookie",
    }
)


def redact_for_log(record: Any) -> Any:
    """Return a copy of a booking record or payload safe for debug logs.

    Passenger identity and coordinates are masked, nested objects are
    walked, and anything that is not a record is returned unchanged.
    """
    if isinstance(record, Mapping):
        return {
            str(key): "<redacted>" if str(key).lower() in _SENSITIVE_VALUE_KEYS else redact_for_log(value)
            for key, value in record.items()
        }
    if isinstance(record, list):
        return [redact_for_log(item) for item in record]
    return record


def redact_url(url: str) -> str:
    """Mask credential query parameters (``auth``, ``access_token``) in *url*."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [
        (key, "<redacted>" if key.lower() in _SENSITIVE_VALUE_KEYS else value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(query, safe="<>")))
