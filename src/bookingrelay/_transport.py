"""HTTP transport for the downstream sink."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from bookingrelay.exceptions import RelayTransportError

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SinkResponse:
    """Status and body of one sink response."""

    status: int
    text: str
    content_type: str = ""


class SinkTransport(Protocol):
    """Structural transport interface used by the delivery worker.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`HttpSinkTransport`) concrete.
    """

    async def post_json(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        headers: Mapping[str, str],
        timeout: float,
    ) -> SinkResponse:
        ...


class HttpSinkTransport:
    """aiohttp-backed sink transport.

    Returns every HTTP response, whatever its status; only network
    failures and timeouts raise :class:`RelayTransportError`.
    """

    def __init__(self, http_session: aiohttp.ClientSession) -> None:
        self._http = http_session

    async def post_json(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        headers: Mapping[str, str],
        timeout: float,
    ) -> SinkResponse:
        body = json.dumps(payload, separators=(",", ":"))
        request_headers: dict[str, str] = {"content-type": "application/json"}
        request_headers.update(headers)

        _logger.debug("POST %s", url)

        try:
            async with self._http.post(
                url,
                data=body,
                headers=request_headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                text = await resp.text(errors="replace")
                return SinkResponse(status=resp.status, text=text, content_type=resp.content_type)
        except TimeoutError as exc:
            raise RelayTransportError(
                f"Request to {url} timed out after {timeout:.1f}s",
                url=url,
                timed_out=True,
            ) from exc
        except aiohttp.ClientError as exc:
            raise RelayTransportError(f"Request to {url} failed: {exc}", url=url) from exc
