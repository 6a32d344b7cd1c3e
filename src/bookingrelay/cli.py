"""Command-line entry point: ``bookingrelay`` / ``python -m bookingrelay``."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from collections.abc import Sequence
from typing import Any

from bookingrelay import __version__
from bookingrelay.config import RelayConfig
from bookingrelay.exceptions import RelayConfigError
from bookingrelay.service import RelayService

_LOG = logging.getLogger("bookingrelay")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bookingrelay",
        description=(
            "Relay completed and cancelled bookings from a Firebase Realtime Database "
            "collection to an HTTP endpoint. Settings come from RELAY_* environment "
            "variables; flags override them."
        ),
    )
    parser.add_argument("--sink-url", help="Endpoint receiving one POST per booking (RELAY_SINK_URL)")
    parser.add_argument("--database-url", help="Realtime Database root URL (RELAY_DATABASE_URL)")
    parser.add_argument("--collection", help="Watched collection path (RELAY_COLLECTION)")
    parser.add_argument(
        "--production",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Production mode; delivered bookings are deleted (RELAY_PRODUCTION)",
    )
    parser.add_argument(
        "--delete",
        dest="delete_enabled",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Force deletion after delivery on or off regardless of mode (RELAY_DELETE_ENABLED)",
    )
    parser.add_argument("--max-retries", type=int, help="Extra delivery attempts (RELAY_MAX_RETRIES)")
    parser.add_argument("--port", type=int, help="Health server port (PORT)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    fields = ("sink_url", "database_url", "collection", "production", "delete_enabled", "max_retries", "port")
    return {name: getattr(args, name) for name in fields if getattr(args, name) is not None}


async def _run(config: RelayConfig) -> None:
    async with RelayService(config) as service:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # Not available on Windows event loops.
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, service.request_stop, sig.name)
        await service.run()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = RelayConfig.from_env(**_overrides(args))
    except RelayConfigError as exc:
        _LOG.error("Invalid configuration: %s", exc)
        return 2

    try:
        asyncio.run(_run(config))
    except KeyboardInterrupt:
        _LOG.info("Interrupted")
    return 0
