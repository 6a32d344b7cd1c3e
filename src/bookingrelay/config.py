"""Relay configuration."""

from __future__ import annotations

import dataclasses
import os
import secrets
import time
from typing import Any

from bookingrelay._constants import DEFAULT_COLLECTION
from bookingrelay.exceptions import RelayConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_optional_bool(value: str | None) -> bool | None:
    if value is None or not value.strip():
        return None
    normalized = value.strip().lower()
    if normalized in {"auto", "default"}:
        return None
    return _env_bool(normalized, False)


def _generate_worker_id() -> str:
    return f"worker_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def _is_http_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


@dataclasses.dataclass(frozen=True)
class RelayConfig:
    """Relay configuration, read once at startup.

    Parameters
    ----------
    sink_url : str
        URL that receives one JSON ``POST`` per terminal booking.
    database_url : str
        Root URL of the Firebase Realtime Database
        (e.g. ``https://example-default-rtdb.firebaseio.com``).
    database_auth : str or None
        Database secret or ID token sent as the ``auth`` query parameter.
    collection : str
        Path of the watched collection below the database root.
    production : bool
        Production mode.  Delivered bookings are deleted from the store
        only in production, unless ``delete_enabled`` says otherwise.
    delete_enabled : bool or None
        Explicit override for deletion after delivery.  ``None`` follows
        ``production``.
    max_retries : int
        Additional delivery attempts after a retryable failure.
    request_timeout : float
        Seconds before a sink request is abandoned as a timeout.
    retry_base_delay : float
        Base of the delivery backoff; retry ``n`` waits
        ``retry_base_delay * 2**n`` seconds.
    retry_max_delay : float
        Ceiling for a single delivery backoff delay.
    cache_max_size : int
        Dedup cache size above which the periodic eviction trims entries.
    cache_eviction_interval : float
        Seconds between dedup cache eviction passes.
    reconnect_base_delay : float
        First reconnection delay; doubles per consecutive failure.
    reconnect_max_delay : float
        Ceiling for a single reconnection delay.
    max_reconnect_attempts : int
        Consecutive failures after which the reconnection counter resets.
    heartbeat_interval : float
        Seconds between status log lines.
    host : str
        Bind address of the health server.
    port : int
        Port of the health server.
    worker_id : str
        Identifier sent with every delivery.  Generated when not given.
    """

    sink_url: str
    database_url: str
    database_auth: str | None = None
    collection: str = DEFAULT_COLLECTION
    production: bool = False
    delete_enabled: bool | None = None
    max_retries: int = 3
    request_timeout: float = 30.0
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    cache_max_size: int = 5000
    cache_eviction_interval: float = 20 * 60
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    max_reconnect_attempts: int = 10
    heartbeat_interval: float = 3 * 60
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000
    worker_id: str = dataclasses.field(default_factory=_generate_worker_id)

    def __post_init__(self) -> None:
        if not _is_http_url(self.sink_url):
            raise RelayConfigError(f"sink_url must be an http(s) URL, got {self.sink_url!r}")
        if not _is_http_url(self.database_url):
            raise RelayConfigError(f"database_url must be an http(s) URL, got {self.database_url!r}")
        if not self.collection.strip("/"):
            raise RelayConfigError("collection must be a non-empty path")
        if self.max_retries < 0:
            raise RelayConfigError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.request_timeout <= 0:
            raise RelayConfigError(f"request_timeout must be > 0, got {self.request_timeout}")
        if self.cache_max_size <= 0:
            raise RelayConfigError(f"cache_max_size must be > 0, got {self.cache_max_size}")
        if self.max_reconnect_attempts < 1:
            raise RelayConfigError(f"max_reconnect_attempts must be >= 1, got {self.max_reconnect_attempts}")
        for name in (
            "retry_base_delay",
            "retry_max_delay",
            "reconnect_base_delay",
            "reconnect_max_delay",
        ):
            if getattr(self, name) < 0:
                raise RelayConfigError(f"{name} must be >= 0")
        for name in ("cache_eviction_interval", "heartbeat_interval"):
            if getattr(self, name) <= 0:
                raise RelayConfigError(f"{name} must be > 0")
        if not 0 <= self.port <= 65535:
            raise RelayConfigError(f"port out of range: {self.port}")
        if not self.worker_id.strip():
            raise RelayConfigError("worker_id must be non-empty")

    @property
    def should_delete(self) -> bool:
        """Whether delivered bookings are removed from the store."""
        if self.delete_enabled is not None:
            return self.delete_enabled
        return self.production

    @property
    def mode(self) -> str:
        return "production" if self.production else "development"

    @classmethod
    def from_env(cls, **overrides: Any) -> RelayConfig:
        """Create configuration from environment variables.

        Reads ``RELAY_SINK_URL``, ``RELAY_DATABASE_URL`` and the optional
        ``RELAY_*`` variables (plus ``PORT``).  Explicit keyword arguments
        override environment values.

        Raises
        ------
        RelayConfigError
            If a required value is missing or a value cannot be parsed.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "RELAY_SINK_URL": "sink_url",
            "RELAY_DATABASE_URL": "database_url",
            "RELAY_DATABASE_AUTH": "database_auth",
            "RELAY_COLLECTION": "collection",
            "RELAY_HOST": "host",
            "RELAY_WORKER_ID": "worker_id",
        }
        _ENV_INT_MAP = {
            "RELAY_MAX_RETRIES": "max_retries",
            "RELAY_CACHE_MAX_SIZE": "cache_max_size",
            "RELAY_MAX_RECONNECT_ATTEMPTS": "max_reconnect_attempts",
            "PORT": "port",
        }
        _ENV_FLOAT_MAP = {
            "RELAY_REQUEST_TIMEOUT": "request_timeout",
            "RELAY_RETRY_BASE_DELAY": "retry_base_delay",
            "RELAY_RETRY_MAX_DELAY": "retry_max_delay",
            "RELAY_CACHE_EVICTION_INTERVAL": "cache_eviction_interval",
            "RELAY_RECONNECT_BASE_DELAY": "reconnect_base_delay",
            "RELAY_RECONNECT_MAX_DELAY": "reconnect_max_delay",
            "RELAY_HEARTBEAT_INTERVAL": "heartbeat_interval",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and val.strip():
                config_kwargs[field_name] = val.strip()

        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = int(val)
            except ValueError as exc:
                raise RelayConfigError(f"{env_key} must be an integer, got {val!r}") from exc

        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = float(val)
            except ValueError as exc:
                raise RelayConfigError(f"{env_key} must be a number, got {val!r}") from exc

        if "production" not in overrides:
            config_kwargs["production"] = _env_bool(env.get("RELAY_PRODUCTION"), False)

        if "delete_enabled" not in overrides:
            config_kwargs["delete_enabled"] = _env_optional_bool(env.get("RELAY_DELETE_ENABLED"))

        config_kwargs.update(overrides)

        missing = [name for name in ("sink_url", "database_url") if not config_kwargs.get(name)]
        if missing:
            raise RelayConfigError(f"Missing required configuration: {', '.join(missing)}")

        return cls(**config_kwargs)
