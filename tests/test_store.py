from __future__ import annotations

import asyncio
import errno
import json
import stat
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from geomonitor._constants import MAX_POINTS
from geomonitor.exceptions import DeviceNotFoundError, InvalidInputError, StorageWriteError
from geomonitor.models.location import HistoryPoint
from geomonitor.state.backends import FileBackend, MemoryBackend
from geomonitor.state.store import LocationStore, is_duplicate


class _StepClock:
    """Advances one second on every call."""

    def __init__(self) -> None:
        self._now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        current = self._now
        self._now += timedelta(seconds=1)
        return current


class _FailingBackend(MemoryBackend):
    def write(self, device_id: str, data: dict[str, Any]) -> None:
        raise StorageWriteError("disk full", device_id=device_id)


class _UnreadableBackend(MemoryBackend):
    def read(self, device_id: str) -> dict[str, Any] | None:
        raise OSError(errno.EACCES, "Permission denied", device_id)


def _point(lat: float, lon: float = 0.0, ts: str = "2026-01-01 00:00:00", **extra: Any) -> HistoryPoint:
    return HistoryPoint(lat=lat, lon=lon, ts=ts, **extra)


@pytest.mark.asyncio
async def test_upsert_then_get_returns_last_point() -> None:
    store = LocationStore(MemoryBackend())

    await store.upsert("dev1", _point(-12.0464, -77.0428, accuracy=5.0, device_name="phone"))
    record = await store.get("dev1")

    assert record.device_id == "dev1"
    assert record.latitude == pytest.approx(-12.0464)
    assert record.longitude == pytest.approx(-77.0428)
    assert record.history[-1].lat == pytest.approx(-12.0464)
    assert record.history[-1].lon == pytest.approx(-77.0428)
    assert record.accuracy == 5.0
    assert record.device_name == "phone"


@pytest.mark.asyncio
async def test_identical_point_is_deduplicated_but_last_update_advances() -> None:
    store = LocationStore(MemoryBackend(), clock=_StepClock())

    first = await store.upsert("dev1", _point(1.0, 2.0))
    second = await store.upsert("dev1", _point(1.0 + 5e-8, 2.0))

    assert len(second.history) == 1
    assert first.last_update == "2026-01-01 00:00:00"
    assert second.last_update == "2026-01-01 00:00:01"


@pytest.mark.asyncio
async def test_same_position_new_timestamp_appends() -> None:
    store = LocationStore(MemoryBackend())

    await store.upsert("dev1", _point(1.0, 2.0, ts="2026-01-01 00:00:00"))
    record = await store.upsert("dev1", _point(1.0, 2.0, ts="2026-01-01 00:00:05"))

    assert len(record.history) == 2


@pytest.mark.asyncio
async def test_movement_with_same_timestamp_appends() -> None:
    store = LocationStore(MemoryBackend())

    await store.upsert("dev1", _point(1.0, 2.0))
    record = await store.upsert("dev1", _point(1.0 + 1e-6, 2.0))

    assert len(record.history) == 2


def test_is_duplicate_requires_both_axes_and_timestamp() -> None:
    base = _point(1.0, 2.0)
    assert is_duplicate(base, _point(1.0, 2.0))
    assert not is_duplicate(None, base)
    assert not is_duplicate(base, _point(1.0, 2.000001))
    assert not is_duplicate(base, _point(1.0, 2.0, ts="2026-01-01 00:00:01"))


@pytest.mark.asyncio
async def test_history_is_a_sliding_window() -> None:
    store = LocationStore(MemoryBackend(), max_points=5)

    for i in range(8):
        record = await store.upsert("dev1", _point(float(i)))

    assert [p.lat for p in record.history] == [3.0, 4.0, 5.0, 6.0, 7.0]


@pytest.mark.asyncio
async def test_default_bound_evicts_oldest_points() -> None:
    backend = MemoryBackend()
    seeded = [{"lat": float(i), "lon": 0.0, "ts": f"2025-01-01 00:00:{i % 60:02d}"} for i in range(MAX_POINTS)]
    backend.write("dev1", {"device_id": "dev1", "latitude": 0, "longitude": 0, "history": seeded})
    store = LocationStore(backend)

    for k in range(3):
        record = await store.upsert("dev1", _point(100.0 + k))

    assert len(record.history) == MAX_POINTS
    assert record.history[0].lat == 3.0
    assert [p.lat for p in record.history[-3:]] == [100.0, 101.0, 102.0]


@pytest.mark.asyncio
async def test_invalid_coordinates_create_nothing() -> None:
    backend = MemoryBackend()
    store = LocationStore(backend)

    with pytest.raises(InvalidInputError):
        await store.upsert("ghost", {"lat": "abc", "lon": 1.0})
    with pytest.raises(InvalidInputError):
        await store.upsert("ghost", {"lat": float("inf"), "lon": 1.0})

    assert backend.list_ids() == []
    with pytest.raises(DeviceNotFoundError):
        await store.get("ghost")


@pytest.mark.asyncio
async def test_invalid_device_id_rejected() -> None:
    store = LocationStore(MemoryBackend())

    with pytest.raises(InvalidInputError):
        await store.upsert("../escape", _point(1.0))


@pytest.mark.asyncio
async def test_mapping_points_are_validated() -> None:
    store = LocationStore(MemoryBackend())

    record = await store.upsert("dev1", {"lat": "1.25", "lon": "2.5", "ts": "2026-01-01 00:00:00"})

    assert record.history[0].lat == 1.25


@pytest.mark.asyncio
async def test_write_failure_raises_storage_error() -> None:
    store = LocationStore(_FailingBackend())

    with pytest.raises(StorageWriteError):
        await store.upsert("dev1", _point(1.0))


@pytest.mark.asyncio
async def test_read_failure_on_upsert_raises_storage_error() -> None:
    backend = _UnreadableBackend()
    store = LocationStore(backend)

    with pytest.raises(StorageWriteError) as excinfo:
        await store.upsert("dev1", _point(1.0))

    assert excinfo.value.device_id == "dev1"
    assert backend.list_ids() == []


@pytest.mark.asyncio
async def test_read_failure_on_get_reports_not_found() -> None:
    store = LocationStore(_UnreadableBackend())

    with pytest.raises(DeviceNotFoundError):
        await store.get("dev1")


@pytest.mark.asyncio
async def test_unreadable_record_is_replaced_on_write() -> None:
    backend = MemoryBackend()
    backend.write_raw("dev1", "{not json")
    store = LocationStore(backend)

    with pytest.raises(DeviceNotFoundError):
        await store.get("dev1")

    record = await store.upsert("dev1", _point(1.0))
    assert len(record.history) == 1
    assert (await store.get("dev1")).latitude == 1.0


@pytest.mark.asyncio
async def test_list_all_skips_malformed_records() -> None:
    backend = MemoryBackend()
    backend.write_raw("broken", "[]")
    backend.write("nolat", {"longitude": 3.0})
    store = LocationStore(backend)
    await store.upsert("good", _point(1.0))

    records = await store.list_all()

    assert [r.device_id for r in records] == ["good"]


@pytest.mark.asyncio
async def test_concurrent_upserts_to_distinct_devices() -> None:
    store = LocationStore(MemoryBackend())

    await asyncio.gather(*(store.upsert(f"dev{i}", _point(float(i))) for i in range(25)))

    for i in range(25):
        record = await store.get(f"dev{i}")
        assert record.latitude == float(i)
        assert len(record.history) == 1


@pytest.mark.asyncio
async def test_concurrent_upserts_to_same_device_never_lose_points() -> None:
    store = LocationStore(MemoryBackend())

    points = [_point(float(i)) for i in range(30)]
    # Two duplicates of an already submitted point.
    points += [_point(0.0), _point(0.0)]
    await asyncio.gather(*(store.upsert("shared", p) for p in points))

    record = await store.get("shared")
    lats = [p.lat for p in record.history]
    # Lock order is FIFO: the first repeated 0.0 follows 29.0, the second is a duplicate.
    assert lats == [float(i) for i in range(30)] + [0.0]


class TestFileBackend:
    @pytest.mark.asyncio
    async def test_record_written_as_pretty_unicode_json(self, tmp_path: Path) -> None:
        store = LocationStore(FileBackend(tmp_path))

        await store.upsert("dev1", _point(1.0, device_name="Teléfono"))

        path = tmp_path / "dev1.json"
        text = path.read_text(encoding="utf-8")
        assert "Teléfono" in text
        assert text.startswith("{\n    ")
        assert json.loads(text)["history"][0]["device_name"] == "Teléfono"
        assert [p.name for p in tmp_path.iterdir()] == ["dev1.json"]

    def test_directory_is_created(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "locations"
        backend = FileBackend(target)
        assert target.is_dir()
        assert backend.watch_path == target

    def test_modified_times_ignore_temp_files(self, tmp_path: Path) -> None:
        backend = FileBackend(tmp_path)
        backend.write("a", {"latitude": 1, "longitude": 2})
        (tmp_path / ".a.123.tmp").write_text("partial", encoding="utf-8")
        (tmp_path / "notes.txt").write_text("x", encoding="utf-8")

        assert list(backend.modified_times()) == ["a"]

    def test_unwritable_directory_raises_storage_error(self, tmp_path: Path) -> None:
        backend = FileBackend(tmp_path / "gone")
        (tmp_path / "gone").rmdir()

        with pytest.raises(StorageWriteError):
            backend.write("a", {"latitude": 1, "longitude": 2})

    @pytest.mark.asyncio
    async def test_overlong_device_id_fails_cleanly(self, tmp_path: Path) -> None:
        store = LocationStore(FileBackend(tmp_path))
        device_id = "a" * 300

        with pytest.raises(StorageWriteError):
            await store.upsert(device_id, _point(1.0))
        with pytest.raises(DeviceNotFoundError):
            await store.get(device_id)
        assert list(tmp_path.iterdir()) == []

    def test_records_are_world_readable(self, tmp_path: Path) -> None:
        backend = FileBackend(tmp_path)
        backend.write("a", {"latitude": 1, "longitude": 2})

        assert stat.S_IMODE((tmp_path / "a.json").stat().st_mode) == 0o644
