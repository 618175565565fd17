"""aiohttp application exposing ingestion, snapshot, history and stream endpoints."""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from typing import Any

from aiohttp import web

from geomonitor._logsafe import compact_for_log
from geomonitor.config import GeoMonitorConfig
from geomonitor.exceptions import DeviceNotFoundError, InvalidInputError, StorageWriteError
from geomonitor.ingestion.normalize import sanitize_device_id
from geomonitor.ingestion.payload import PAYLOAD_FIELDS, parse_location_payload
from geomonitor.state.aggregate import Aggregator
from geomonitor.state.backends import FileBackend, RecordBackend
from geomonitor.state.history import HistoryQuery
from geomonitor.state.store import LocationStore
from geomonitor.streaming.broker import StreamBroker
from geomonitor.streaming.detector import ChangeDetector
from geomonitor.streaming.sse import HEARTBEAT, encode_snapshot, format_event, format_retry

_logger = logging.getLogger(__name__)

_FORM_TYPES = frozenset({"application/x-www-form-urlencoded", "multipart/form-data"})

_dumps = functools.partial(json.dumps, ensure_ascii=False)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Services:
    """Everything a request handler needs, built once per application."""

    config: GeoMonitorConfig
    store: LocationStore
    aggregator: Aggregator
    history: HistoryQuery
    detector: ChangeDetector
    broker: StreamBroker
    clock: Callable[[], datetime]

    @property
    def tz(self) -> tzinfo:
        return self.store.tz


SERVICES_KEY = web.AppKey("services", Services)


def build_services(
    config: GeoMonitorConfig,
    *,
    backend: RecordBackend | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> Services:
    if backend is None:
        backend = FileBackend(config.data_dir)
    tz = config.tzinfo
    store = LocationStore(backend, max_points=config.max_points, tz=tz, clock=clock)
    aggregator = Aggregator(store)
    detector = ChangeDetector(
        backend,
        poll_interval=config.poll_interval,
        watch=config.watch_enabled,
        debounce_ms=config.watch_debounce_ms,
    )
    return Services(
        config=config,
        store=store,
        aggregator=aggregator,
        history=HistoryQuery(store, tz=tz),
        detector=detector,
        broker=StreamBroker(aggregator, detector),
        clock=clock,
    )


def _json(data: Any, *, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=_dumps)


def _error(status: int, msg: str) -> web.Response:
    return _json({"status": "error", "msg": msg}, status=status)


async def _read_payload(request: web.Request) -> Mapping[str, Any] | None:
    """Form fields when present, otherwise a JSON object body, otherwise ``None``."""
    if request.content_type in _FORM_TYPES:
        form = await request.post()
        if form:
            _logger.debug("POST form-data: %s", compact_for_log(dict(form)))
            return {key: form.get(key) for key in PAYLOAD_FIELDS if key in form}

    try:
        raw = await request.text()
    except UnicodeDecodeError:
        _logger.debug("POST body is not valid UTF-8")
        return None
    if not raw.strip():
        _logger.debug("POST with empty body")
        return None
    _logger.debug("POST raw body: %s", compact_for_log(raw))
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return decoded if isinstance(decoded, dict) else None


async def handle_ingest(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    payload = await _read_payload(request)
    try:
        update = parse_location_payload(payload, tz=services.tz, received_at=services.clock())
    except InvalidInputError:
        _logger.warning(
            "Rejected submission with invalid lat/lon: lat=%r lon=%r",
            payload.get("lat") if payload else None,
            payload.get("lon") if payload else None,
        )
        return _error(400, "invalid lat/lon")

    try:
        record = await services.store.upsert(update.device_id, update.point, update.summary)
    except StorageWriteError:
        return _error(500, "no write")

    _logger.info(
        "Stored %s lat=%s lon=%s ts=%s",
        update.device_id,
        update.point.lat,
        update.point.lon,
        update.point.ts,
    )
    return _json({"status": "ok", "data": record.to_stored()})


async def handle_snapshot(request: web.Request) -> web.Response:
    devices = await request.app[SERVICES_KEY].aggregator.snapshot()
    return web.Response(text=encode_snapshot(devices), content_type="application/json")


async def handle_history(request: web.Request) -> web.Response:
    services = request.app[SERVICES_KEY]
    user = request.query.get("user", "")
    if not user:
        return _error(400, "missing user")
    device_id = sanitize_device_id(user)

    try:
        result = await services.history.query(
            device_id,
            request.query.get("from"),
            request.query.get("to"),
        )
    except DeviceNotFoundError:
        return _error(404, "user not found")

    return _json(
        {
            "status": "ok",
            "user_id": result.device_id,
            "from": result.from_,
            "to": result.to,
            "history": [point.model_dump(mode="json") for point in result.history],
        }
    )


async def handle_stream(request: web.Request) -> web.StreamResponse:
    """Push every snapshot to the client as an ``update`` server-sent event."""
    services = request.app[SERVICES_KEY]
    broker = services.broker
    if not broker.running:
        return _error(503, "stream unavailable")

    response = web.StreamResponse(
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )
    await response.prepare(request)

    async with broker.subscribe() as subscription:
        try:
            await response.write(format_retry(services.config.stream_retry_ms))
            while True:
                try:
                    frame = await asyncio.wait_for(subscription.get(), timeout=services.config.stream_heartbeat)
                except TimeoutError:
                    await response.write(HEARTBEAT)
                    continue
                if frame is None:
                    break
                await response.write(format_event(frame.data))
        except ConnectionResetError:
            _logger.debug("Stream client %s disconnected", request.remote)
    return response


async def handle_root_get(request: web.Request) -> web.StreamResponse:
    """Single-URL dispatch used by the legacy map client (``?json=1`` etc.)."""
    query = request.query
    if query.get("json") == "1":
        return await handle_snapshot(request)
    if query.get("history") == "1":
        return await handle_history(request)
    if query.get("stream") == "1":
        return await handle_stream(request)
    return _error(404, "not found")


async def _broker_ctx(app: web.Application) -> AsyncIterator[None]:
    broker = app[SERVICES_KEY].broker
    await broker.start()
    yield
    await broker.stop()


async def _close_streams(app: web.Application) -> None:
    # Open streams would otherwise hold graceful shutdown until its timeout.
    await app[SERVICES_KEY].broker.stop()


def create_app(
    config: GeoMonitorConfig | None = None,
    *,
    backend: RecordBackend | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> web.Application:
    """Build the web application.

    Parameters
    ----------
    config
        Server configuration; defaults to :meth:`GeoMonitorConfig.from_env`.
    backend
        Record storage; defaults to a :class:`FileBackend` on ``config.data_dir``.
    clock
        Source of server time for ``last_update`` and missing point timestamps.
    """
    if config is None:
        config = GeoMonitorConfig.from_env()
    app = web.Application()
    app[SERVICES_KEY] = build_services(config, backend=backend, clock=clock)
    app.cleanup_ctx.append(_broker_ctx)
    app.on_shutdown.append(_close_streams)
    app.add_routes(
        [
            web.get("/", handle_root_get),
            web.post("/", handle_ingest),
            web.post("/api/locations", handle_ingest),
            web.get("/api/locations", handle_snapshot),
            web.get("/api/history", handle_history),
            web.get("/api/stream", handle_stream),
        ]
    )
    return app
