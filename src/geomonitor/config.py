"""Server configuration for geomonitor."""

from __future__ import annotations

import dataclasses
import os
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from geomonitor._constants import MAX_POINTS, POLL_INTERVAL, STREAM_RETRY_MS
from geomonitor.exceptions import GeoMonitorConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class GeoMonitorConfig:
    """Server configuration.

    Parameters
    ----------
    data_dir : str
        Directory holding one JSON record per device.
    host : str
        Interface the HTTP server binds to.
    port : int
        TCP port of the HTTP server.
    max_points : int
        History points kept per device; older points are evicted.
    poll_interval : float
        Seconds between modification-time scans when filesystem
        watching is unavailable or disabled.
    watch_enabled : bool
        Prefer native filesystem change notification over polling.
    watch_debounce_ms : int
        Window in which a burst of filesystem events collapses into a
        single change signal.
    time_zone : str
        IANA zone used to render every canonical timestamp. Must be
        the same for the whole process.
    stream_retry_ms : int
        Reconnect hint sent to event-stream clients.
    stream_heartbeat : float
        Seconds of silence after which a comment line is written to an
        event stream, so that closed connections are noticed.
    log_file : str or None
        Optional file that receives a copy of all log records.
    log_level : str
        Root log level name.
    """

    data_dir: str = "locations"
    host: str = "0.0.0.0"
    port: int = 8080
    max_points: int = MAX_POINTS
    poll_interval: float = POLL_INTERVAL
    watch_enabled: bool = True
    watch_debounce_ms: int = 50
    time_zone: str = "UTC"
    stream_retry_ms: int = STREAM_RETRY_MS
    stream_heartbeat: float = 15.0
    log_file: str | None = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.max_points < 1:
            raise GeoMonitorConfigError(f"max_points must be positive, got {self.max_points}")
        if self.poll_interval <= 0:
            raise GeoMonitorConfigError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.stream_heartbeat <= 0:
            raise GeoMonitorConfigError(f"stream_heartbeat must be positive, got {self.stream_heartbeat}")
        if self.watch_debounce_ms < 1:
            raise GeoMonitorConfigError(f"watch_debounce_ms must be positive, got {self.watch_debounce_ms}")
        # Fail at startup rather than on the first formatted timestamp.
        self.tzinfo  # noqa: B018

    @property
    def tzinfo(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.time_zone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise GeoMonitorConfigError(f"unknown time zone {self.time_zone!r}") from exc

    @classmethod
    def from_env(cls, **overrides: Any) -> GeoMonitorConfig:
        """Create configuration from ``GEOMONITOR_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "GEOMONITOR_DATA_DIR": "data_dir",
            "GEOMONITOR_HOST": "host",
            "GEOMONITOR_TIME_ZONE": "time_zone",
            "GEOMONITOR_LOG_FILE": "log_file",
            "GEOMONITOR_LOG_LEVEL": "log_level",
        }
        _ENV_INT_MAP = {
            "GEOMONITOR_PORT": "port",
            "GEOMONITOR_MAX_POINTS": "max_points",
            "GEOMONITOR_WATCH_DEBOUNCE_MS": "watch_debounce_ms",
            "GEOMONITOR_STREAM_RETRY_MS": "stream_retry_ms",
        }
        _ENV_FLOAT_MAP = {
            "GEOMONITOR_POLL_INTERVAL": "poll_interval",
            "GEOMONITOR_STREAM_HEARTBEAT": "stream_heartbeat",
        }

        config_kwargs: dict[str, Any] = {}
        try:
            for env_key, field_name in _ENV_STR_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = val
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = int(val)
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = float(val)
        except ValueError as exc:
            raise GeoMonitorConfigError(f"invalid numeric environment value: {exc}") from exc

        if "watch_enabled" not in overrides:
            config_kwargs["watch_enabled"] = _env_bool(env.get("GEOMONITOR_WATCH_ENABLED"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
