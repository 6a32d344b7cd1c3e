"""Record store access: full reads, deletes, and the live change stream.

`FirebaseSource` talks to the Firebase Realtime Database REST API.  The
change stream is the REST streaming endpoint (``Accept:
text/event-stream``), which reports ``put``/``patch`` writes against
paths below the watched collection.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

import aiohttp

from bookingrelay._constants import BODY_SNIPPET_LENGTH, EVENT_STREAM_MIME
from bookingrelay._mirror import RecordMirror
from bookingrelay._redact import redact_url
from bookingrelay.config import RelayConfig
from bookingrelay.exceptions import RelayConnectivityError, RelaySourceError

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectivityChanged:
    """The watch stream opened (``True``) or closed (``False``)."""

    connected: bool


@dataclass(frozen=True)
class RecordChanged:
    """A child of the collection was written; ``record`` is its full value."""

    key: str
    record: Any


WatchEvent = ConnectivityChanged | RecordChanged


class RecordSource(Protocol):
    """Structural interface of the watched store.

    ``watch()`` returns a fresh, non-restartable subscription each time
    it is called.  It starts with ``ConnectivityChanged(True)`` once the
    subscription is live and ends after ``ConnectivityChanged(False)``
    or by raising :class:`RelayConnectivityError`.
    """

    async def snapshot(self) -> dict[str, Any]:
        ...

    def watch(self) -> AsyncGenerator[WatchEvent, None]:
        ...

    async def delete(self, key: str) -> None:
        ...


class EventStreamParser:
    """Incremental ``text/event-stream`` parser.

    Feed raw chunks, get back completed ``(event, data)`` pairs.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._event = ""
        self._data: list[str] = []

    def feed(self, chunk: bytes) -> list[tuple[str, str]]:
        self._buffer.extend(chunk)
        events: list[tuple[str, str]] = []
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            line = raw.decode("utf-8", errors="replace").rstrip("\r")
            event = self._feed_line(line)
            if event is not None:
                events.append(event)
        return events

    def _feed_line(self, line: str) -> tuple[str, str] | None:
        if not line:
            if not self._event and not self._data:
                return None
            event = (self._event or "message", "\n".join(self._data))
            self._event = ""
            self._data = []
            return event
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None


class FirebaseSource:
    """Firebase Realtime Database collection accessed over REST."""

    def __init__(
        self,
        config: RelayConfig,
        http_session: aiohttp.ClientSession,
        *,
        keepalive_timeout: float = 90.0,
    ) -> None:
        self._config = config
        self._http = http_session
        self._keepalive_timeout = keepalive_timeout
        self._root = config.database_url.rstrip("/")
        self._collection = config.collection.strip("/")

    def _path(self, key: str | None = None) -> str:
        return self._collection if key is None else f"{self._collection}/{key}"

    def _url(self, key: str | None = None) -> str:
        segments = self._path(key).split("/")
        return f"{self._root}/{'/'.join(quote(segment, safe='') for segment in segments)}.json"

    def _params(self) -> dict[str, str]:
        if self._config.database_auth:
            return {"auth": self._config.database_auth}
        return {}

    async def _request(self, method: str, key: str | None = None) -> Any:
        path = self._path(key)
        url = self._url(key)
        _logger.debug("%s %s", method, url)
        try:
            async with self._http.request(
                method,
                url,
                params=self._params(),
                timeout=aiohttp.ClientTimeout(total=self._config.request_timeout),
            ) as resp:
                text = await resp.text(errors="replace")
                if resp.status != 200:
                    raise RelaySourceError(
                        f"HTTP {resp.status} from {method} {path}: {text[:BODY_SNIPPET_LENGTH]}",
                        status_code=resp.status,
                        path=path,
                    )
        except RelaySourceError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise RelayConnectivityError(f"{method} {path} failed: {exc}", path=path) from exc

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise RelaySourceError(
                f"Invalid JSON from {method} {path}: {text[:BODY_SNIPPET_LENGTH]}",
                path=path,
            ) from exc

    async def snapshot(self) -> dict[str, Any]:
        """Read the whole collection as ``{key: record}``."""
        data = await self._request("GET")
        if data is None:
            return {}
        if isinstance(data, list):
            return {str(index): value for index, value in enumerate(data) if value is not None}
        if not isinstance(data, dict):
            raise RelaySourceError(
                f"Collection {self._collection} is not an object: {type(data).__name__}",
                path=self._collection,
            )
        return data

    async def delete(self, key: str) -> None:
        """Remove ``{collection}/{key}``."""
        await self._request("DELETE", key)

    async def watch(self) -> AsyncGenerator[WatchEvent, None]:
        """Open the change stream and yield watch events until it closes."""
        path = self._collection
        mirror = RecordMirror()
        timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=self._config.request_timeout,
            sock_read=self._keepalive_timeout,
        )
        try:
            async with self._http.get(
                self._url(),
                params=self._params(),
                headers={"accept": EVENT_STREAM_MIME},
                timeout=timeout,
            ) as resp:
                if resp.status != 200:
                    text = await resp.text(errors="replace")
                    raise RelayConnectivityError(
                        f"HTTP {resp.status} opening stream on {path}: {text[:BODY_SNIPPET_LENGTH]}",
                        status_code=resp.status,
                        path=path,
                    )
                _logger.info("Watching %s", redact_url(str(resp.url)))
                yield ConnectivityChanged(connected=True)

                parser = EventStreamParser()
                async for chunk in resp.content.iter_any():
                    for name, data in parser.feed(chunk):
                        for event in self._handle_stream_event(mirror, name, data):
                            yield event
        except RelaySourceError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise RelayConnectivityError(f"Stream on {path} failed: {exc}", path=path) from exc

        _logger.info("Stream on %s closed by server", path)
        yield ConnectivityChanged(connected=False)

    def _handle_stream_event(self, mirror: RecordMirror, name: str, data: str) -> list[RecordChanged]:
        path = self._collection
        if name == "keep-alive":
            return []
        if name == "cancel":
            raise RelayConnectivityError(f"Stream on {path} cancelled by server: {data}", path=path)
        if name == "auth_revoked":
            raise RelayConnectivityError(f"Stream credential for {path} was revoked", path=path)
        if name not in ("put", "patch"):
            _logger.debug("Ignoring stream event %s", name)
            return []

        try:
            message = json.loads(data)
        except json.JSONDecodeError as exc:
            raise RelaySourceError(f"Invalid {name} event on {path}: {data[:BODY_SNIPPET_LENGTH]}", path=path) from exc
        if not isinstance(message, dict):
            raise RelaySourceError(f"Invalid {name} event on {path}: not an object", path=path)

        event_path = str(message.get("path") or "/")
        if name == "put":
            keys = mirror.apply_put(event_path, message.get("data"))
        else:
            keys = mirror.apply_patch(event_path, message.get("data"))
        return [RecordChanged(key=key, record=mirror.get(key)) for key in keys]


class SourceMutator:
    """Remove delivered records from the store, when deletion is enabled.

    With deletion disabled (the default outside production) records are
    kept for inspection and only the decision is logged.
    """

    def __init__(self, source: RecordSource, *, enabled: bool) -> None:
        self._source = source
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def delete(self, key: str) -> bool:
        """Delete *key*; returns whether a delete was issued."""
        if not self._enabled:
            _logger.info("Retaining %s (deletion disabled)", key)
            return False
        await self._source.delete(key)
        _logger.info("Deleted %s", key)
        return True


async def iterate_snapshot(source: RecordSource) -> AsyncIterator[tuple[str, Any]]:
    """Yield ``(key, record)`` pairs of one full read, in store order."""
    records = await source.snapshot()
    for key, record in records.items():
        yield key, record
