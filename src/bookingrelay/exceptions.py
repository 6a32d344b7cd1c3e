"""Custom exception hierarchy for bookingrelay."""

from __future__ import annotations


class RelayError(Exception):
    """Base exception for all bookingrelay errors."""


class RelayConfigError(RelayError):
    """Invalid or missing configuration."""


class RelayTransportError(RelayError):
    """The sink could not be reached or did not answer in time."""

    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        timed_out: bool = False,
    ) -> None:
        self.url = url
        self.timed_out = timed_out
        super().__init__(message)


class RelaySourceError(RelayError):
    """A read, delete, or stream request against the record store failed."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        path: str = "",
    ) -> None:
        self.status_code = status_code
        self.path = path
        super().__init__(message)


class RelayConnectivityError(RelaySourceError):
    """The watch stream could not be opened or was closed by the server.

    Covers network failures, non-200 stream responses, and the
    ``cancel``/``auth_revoked`` stream events.  The connection supervisor
    reacts to it by backing off and re-subscribing.
    """

