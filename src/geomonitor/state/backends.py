"""Record storage backends.

The store only needs a durable "one record per key" mapping with
observable modification times. :class:`FileBackend` keeps one JSON file
per device; :class:`MemoryBackend` is used by tests and ephemeral runs.

Backend methods are blocking and safe to call from executor threads.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Protocol

from geomonitor._constants import RECORD_SUFFIX
from geomonitor.exceptions import MalformedRecordError, StorageWriteError

_logger = logging.getLogger(__name__)

_RECORD_MODE = 0o644


class RecordBackend(Protocol):
    """Structural storage interface used by the store and change detector."""

    @property
    def watch_path(self) -> Path | None:
        """Directory to watch for native change notification, if any."""
        ...

    def read(self, device_id: str) -> dict[str, Any] | None:
        """Return the stored dict, ``None`` if absent.

        Raises :class:`MalformedRecordError` for undecodable content.
        """
        ...

    def write(self, device_id: str, data: dict[str, Any]) -> None:
        """Atomically replace the record. Raises :class:`StorageWriteError`."""
        ...

    def list_ids(self) -> list[str]: ...

    def modified_times(self) -> dict[str, int]:
        """Map device id to a modification marker that grows on every write."""
        ...


def _decode(device_id: str, text: str) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedRecordError(f"record {device_id} is not valid JSON: {exc}", device_id=device_id) from exc
    if not isinstance(data, dict):
        raise MalformedRecordError(f"record {device_id} is not a JSON object", device_id=device_id)
    return data


def _encode(data: dict[str, Any]) -> str:
    return json.dumps(data, indent=4, ensure_ascii=False)


class FileBackend:
    """One pretty-printed JSON file per device inside *directory*.

    Writes go to a hidden temporary file in the same directory and are
    published with :func:`os.replace`, so readers never observe a
    half-written record.
    """

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def watch_path(self) -> Path | None:
        return self._directory

    def _path(self, device_id: str) -> Path:
        return self._directory / f"{device_id}{RECORD_SUFFIX}"

    def read(self, device_id: str) -> dict[str, Any] | None:
        path = self._path(device_id)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as exc:
            raise MalformedRecordError(f"record {device_id} is not UTF-8", device_id=device_id) from exc
        return _decode(device_id, text)

    def write(self, device_id: str, data: dict[str, Any]) -> None:
        path = self._path(device_id)
        tmp_name: str | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._directory,
                prefix=f".{device_id}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(_encode(data))
                handle.flush()
                os.fsync(handle.fileno())
            # Temporary files are created 0600.
            os.chmod(tmp_name, _RECORD_MODE)
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
            raise StorageWriteError(f"could not write {path}: {exc}", device_id=device_id) from exc

    def list_ids(self) -> list[str]:
        return [path.stem for path in self._directory.glob(f"*{RECORD_SUFFIX}") if not path.name.startswith(".")]

    def modified_times(self) -> dict[str, int]:
        result: dict[str, int] = {}
        for device_id in self.list_ids():
            try:
                result[device_id] = self._path(device_id).stat().st_mtime_ns
            except FileNotFoundError:
                # Vanished between listing and stat.
                continue
        return result


class MemoryBackend:
    """Thread-safe in-memory backend.

    Records are kept serialized so callers never share mutable state
    with the backend.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, str] = {}
        self._mtimes: dict[str, int] = {}

    @property
    def watch_path(self) -> Path | None:
        return None

    def read(self, device_id: str) -> dict[str, Any] | None:
        with self._lock:
            text = self._records.get(device_id)
        if text is None:
            return None
        return _decode(device_id, text)

    def write(self, device_id: str, data: dict[str, Any]) -> None:
        text = _encode(data)
        with self._lock:
            previous = self._mtimes.get(device_id, 0)
            self._records[device_id] = text
            self._mtimes[device_id] = max(time.monotonic_ns(), previous + 1)

    def write_raw(self, device_id: str, text: str) -> None:
        """Store *text* verbatim, bypassing encoding (used to seed damaged records)."""
        with self._lock:
            previous = self._mtimes.get(device_id, 0)
            self._records[device_id] = text
            self._mtimes[device_id] = max(time.monotonic_ns(), previous + 1)

    def delete(self, device_id: str) -> None:
        with self._lock:
            self._records.pop(device_id, None)
            self._mtimes.pop(device_id, None)

    def list_ids(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def modified_times(self) -> dict[str, int]:
        with self._lock:
            return dict(self._mtimes)
