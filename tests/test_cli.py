from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from aiohttp import web

from geomonitor import __main__ as cli
from geomonitor.exceptions import GeoMonitorConfigError
from geomonitor.server import SERVICES_KEY


def test_main_builds_app_from_flags_and_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    def fake_run_app(app: web.Application, **kwargs: Any) -> None:
        captured["app"] = app
        captured.update(kwargs)

    logging_calls: list[dict[str, Any]] = []
    monkeypatch.setattr(cli.web, "run_app", fake_run_app)
    monkeypatch.setattr(cli.logging, "basicConfig", lambda **kwargs: logging_calls.append(kwargs))
    monkeypatch.setenv("GEOMONITOR_HOST", "127.0.0.1")
    monkeypatch.setenv("GEOMONITOR_MAX_POINTS", "50")

    data_dir = tmp_path / "records"
    cli.main(["--data-dir", str(data_dir), "--port", "9999", "--no-watch", "--max-points", "10", "-v"])

    assert captured["host"] == "127.0.0.1"
    assert captured["port"] == 9999
    config = captured["app"][SERVICES_KEY].config
    assert config.data_dir == str(data_dir)
    assert config.watch_enabled is False
    assert config.max_points == 10
    assert data_dir.is_dir()
    assert logging_calls[0]["level"] == 10


def test_main_rejects_unknown_time_zone(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli.web, "run_app", lambda *args, **kwargs: None)
    with pytest.raises(GeoMonitorConfigError):
        cli.main(["--time-zone", "Nowhere/Special"])
