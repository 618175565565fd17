"""Durable per-device location store.

This is the only component allowed to mutate device records.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, tzinfo
from typing import Any, TypeVar

from pydantic import ValidationError

from geomonitor._constants import COORD_TOLERANCE, MAX_POINTS
from geomonitor.exceptions import (
    DeviceNotFoundError,
    InvalidInputError,
    MalformedRecordError,
    StorageWriteError,
)
from geomonitor.ingestion.normalize import is_valid_device_id
from geomonitor.ingestion.timestamps import format_timestamp
from geomonitor.models.location import HistoryPoint, LocationRecord, RecordSummary, parse_history
from geomonitor.state.backends import RecordBackend

_logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def is_duplicate(last: HistoryPoint | None, incoming: HistoryPoint) -> bool:
    """Exact-match dedup: same coordinates within tolerance and identical ``ts``."""
    if last is None:
        return False
    return (
        abs(last.lat - incoming.lat) < COORD_TOLERANCE
        and abs(last.lon - incoming.lon) < COORD_TOLERANCE
        and last.ts == incoming.ts
    )


def _coerce_point(point: HistoryPoint | Mapping[str, Any]) -> HistoryPoint:
    if isinstance(point, HistoryPoint):
        return point
    if not isinstance(point, Mapping):
        raise InvalidInputError("invalid lat/lon")
    try:
        return HistoryPoint.model_validate(dict(point))
    except ValidationError as exc:
        raise InvalidInputError("invalid lat/lon") from exc


class LocationStore:
    """Append-only, bounded, deduplicating history per device.

    Read-modify-write of one device's record happens under that device's
    lock; distinct devices never share a lock, and blocking backend I/O
    runs in the default executor so they proceed in parallel.
    """

    def __init__(
        self,
        backend: RecordBackend,
        *,
        max_points: int = MAX_POINTS,
        tz: tzinfo = UTC,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._backend = backend
        self._max_points = max_points
        self._tz = tz
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def backend(self) -> RecordBackend:
        return self._backend

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def _lock(self, device_id: str) -> asyncio.Lock:
        lock = self._locks.get(device_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[device_id] = lock
        return lock

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def _existing_history(self, device_id: str) -> list[HistoryPoint]:
        try:
            data = await self._call(self._backend.read, device_id)
        except MalformedRecordError as exc:
            _logger.warning("Replacing unreadable record for %s: %s", device_id, exc)
            return []
        except OSError as exc:
            _logger.error("Read failed for %s: %s", device_id, exc)
            raise StorageWriteError(f"could not read record {device_id}: {exc}", device_id=device_id) from exc
        if data is None:
            return []
        return parse_history(data.get("history"))

    async def upsert(
        self,
        device_id: str,
        point: HistoryPoint | Mapping[str, Any],
        summary: RecordSummary | None = None,
    ) -> LocationRecord:
        """Record a position report for *device_id*.

        The point is appended unless it duplicates the last one; the
        history is then trimmed to the newest ``max_points`` entries.
        ``last_update`` advances on every accepted call, duplicate or not.

        Raises
        ------
        InvalidInputError
            Invalid device id or coordinates. Nothing is written.
        StorageWriteError
            The backend could not read back or persist the record.
        """
        if not is_valid_device_id(device_id):
            raise InvalidInputError(f"invalid device id {device_id!r}")
        point = _coerce_point(point)
        if summary is None:
            summary = RecordSummary.from_point(point)

        async with self._lock(device_id):
            history = await self._existing_history(device_id)
            last = history[-1] if history else None
            if is_duplicate(last, point):
                _logger.debug("Duplicate point for %s at %s ignored", device_id, point.ts)
            else:
                history.append(point)
                if len(history) > self._max_points:
                    history = history[-self._max_points :]

            record = LocationRecord(
                device_id=device_id,
                latitude=point.lat,
                longitude=point.lon,
                last_update=format_timestamp(self._clock(), self._tz),
                history=history,
                **summary.model_dump(),
            )
            try:
                await self._call(self._backend.write, device_id, record.to_stored())
            except StorageWriteError as exc:
                _logger.error("Write failed for %s: %s", device_id, exc)
                raise

        _logger.debug("Stored %s lat=%s lon=%s ts=%s", device_id, point.lat, point.lon, point.ts)
        return record

    async def get(self, device_id: str) -> LocationRecord:
        """Return the record of *device_id*.

        Unreadable records are reported as missing, as are ids that could
        never have been stored.
        """
        if not is_valid_device_id(device_id):
            raise DeviceNotFoundError(f"device {device_id!r} not found", device_id=device_id)
        try:
            data = await self._call(self._backend.read, device_id)
        except MalformedRecordError as exc:
            _logger.warning("Unreadable record for %s: %s", device_id, exc)
            data = None
        except OSError as exc:
            _logger.warning("Read failed for %s: %s", device_id, exc)
            data = None
        if data is None:
            raise DeviceNotFoundError(f"device {device_id!r} not found", device_id=device_id)
        try:
            return LocationRecord.from_stored(data, device_id)
        except ValidationError as exc:
            _logger.warning("Malformed record for %s: %s", device_id, exc.errors()[:1])
            raise DeviceNotFoundError(f"device {device_id!r} not found", device_id=device_id) from exc

    def _read_all(self) -> list[tuple[str, dict[str, Any]]]:
        rows: list[tuple[str, dict[str, Any]]] = []
        for device_id in self._backend.list_ids():
            try:
                data = self._backend.read(device_id)
            except MalformedRecordError as exc:
                _logger.debug("Skipping unreadable record %s: %s", device_id, exc)
                continue
            except OSError as exc:
                _logger.debug("Skipping record %s that changed mid-scan: %s", device_id, exc)
                continue
            if data is not None:
                rows.append((device_id, data))
        return rows

    async def list_all(self) -> list[LocationRecord]:
        """Best-effort scan of every readable record, in no particular order."""
        records: list[LocationRecord] = []
        for device_id, data in await self._call(self._read_all):
            try:
                records.append(LocationRecord.from_stored(data, device_id))
            except ValidationError:
                _logger.debug("Excluding malformed record %s", device_id)
        return records
