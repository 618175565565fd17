"""Run the geomonitor HTTP server.

Usage::

    python -m geomonitor --data-dir ./locations --port 8080

Every option falls back to the matching ``GEOMONITOR_*`` environment
variable (see :class:`geomonitor.config.GeoMonitorConfig`).
"""

from __future__ import annotations

import argparse
import logging
from typing import Any

from aiohttp import web

from geomonitor.config import GeoMonitorConfig
from geomonitor.server import create_app

_LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def _configure_logging(config: GeoMonitorConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file, mode="a", encoding="utf-8"))
    logging.basicConfig(level=level, format=_LOG_FORMAT, handlers=handlers)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="geomonitor",
        description="Store device locations and stream live snapshots to viewers.",
    )
    parser.add_argument("--data-dir", help="Directory holding one JSON record per device")
    parser.add_argument("--host", help="Interface to bind")
    parser.add_argument("--port", type=int, help="TCP port")
    parser.add_argument("--max-points", type=int, help="History points kept per device")
    parser.add_argument("--poll-interval", type=float, help="Seconds between scans when not watching")
    parser.add_argument("--no-watch", action="store_true", help="Disable filesystem notification, always poll")
    parser.add_argument("--time-zone", help="IANA zone used for canonical timestamps")
    parser.add_argument("--log-file", help="Append logs to this file as well")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)

    overrides: dict[str, Any] = {}
    for option, field_name in (
        ("data_dir", "data_dir"),
        ("host", "host"),
        ("port", "port"),
        ("max_points", "max_points"),
        ("poll_interval", "poll_interval"),
        ("time_zone", "time_zone"),
        ("log_file", "log_file"),
    ):
        value = getattr(args, option)
        if value is not None:
            overrides[field_name] = value
    if args.no_watch:
        overrides["watch_enabled"] = False

    config = GeoMonitorConfig.from_env(**overrides)
    _configure_logging(config, args.verbose)
    web.run_app(create_app(config), host=config.host, port=config.port, print=None)


if __name__ == "__main__":
    main()
