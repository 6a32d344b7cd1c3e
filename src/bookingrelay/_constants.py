"""Internal constants shared across the package."""

TERMINAL_STATUSES: frozenset[str] = frozenset({"Cancelled", "Complete", "Completed"})
"""Upstream statuses that make a booking ready to relay.

``Complete`` and ``Completed`` are both produced upstream and are kept as
distinct, equally terminal values.
"""

DEFAULT_COLLECTION = "Bookings"
USER_AGENT_PREFIX = "bookingrelay"
EVENT_STREAM_MIME = "text/event-stream"

# Longest body excerpt carried in failure messages and log lines.
BODY_SNIPPET_LENGTH = 200

# Content types of markup error pages (login walls, proxy errors).
MARKUP_CONTENT_TYPES: frozenset[str] = frozenset({"text/html", "application/xhtml+xml"})
