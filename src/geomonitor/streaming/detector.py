"""Store change detection.

Two interchangeable strategies produce the same stream of change
signals:

* watch: native filesystem notification on the record directory via
  :func:`watchfiles.awatch`; bursts collapse within the debounce window.
* poll: every ``poll_interval`` seconds the per-record modification
  markers are compared with the previous scan.

Watch is chosen at startup when the backend exposes a directory. Any
failure of the watcher degrades to polling instead of ending the stream.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from watchfiles import Change, awatch

from geomonitor._constants import POLL_INTERVAL, RECORD_SUFFIX
from geomonitor.exceptions import DetectorUnavailableError
from geomonitor.state.backends import RecordBackend

_logger = logging.getLogger(__name__)


class DetectorMode(StrEnum):
    WATCH = "watch"
    POLL = "poll"


@dataclass(frozen=True)
class ChangeSignal:
    """The store changed (or may have) since the previous signal."""

    sequence: int
    mode: DetectorMode
    reason: str


def _is_record_file(_change: Change, path: str) -> bool:
    name = Path(path).name
    return name.endswith(RECORD_SUFFIX) and not name.startswith(".")


class ChangeDetector:
    def __init__(
        self,
        backend: RecordBackend,
        *,
        poll_interval: float = POLL_INTERVAL,
        watch: bool = True,
        debounce_ms: int = 50,
    ) -> None:
        self._backend = backend
        self._poll_interval = poll_interval
        self._debounce_ms = debounce_ms
        self._watch_path = backend.watch_path if watch else None
        self._mode = DetectorMode.WATCH if self._watch_path is not None else DetectorMode.POLL
        self._stop = asyncio.Event()
        self._watch_stop = asyncio.Event()
        self._sequence = 0

    @property
    def mode(self) -> DetectorMode:
        return self._mode

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    def stop(self) -> None:
        self._stop.set()
        self._watch_stop.set()

    def _signal(self, reason: str) -> ChangeSignal:
        self._sequence += 1
        return ChangeSignal(sequence=self._sequence, mode=self._mode, reason=reason)

    async def _scan(self) -> dict[str, int]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._backend.modified_times)
        except OSError as exc:
            _logger.warning("Modification scan failed: %s", exc)
            return {}

    async def _pump(self, path: Path, dirty: asyncio.Event) -> None:
        """Set *dirty* for every batch of record file events under *path*."""
        try:
            async for changes in awatch(
                path,
                watch_filter=_is_record_file,
                debounce=self._debounce_ms,
                step=max(1, min(50, self._debounce_ms)),
                stop_event=self._watch_stop,
                recursive=False,
            ):
                _logger.debug("Watcher reported %d record change(s)", len(changes))
                dirty.set()
        except Exception as exc:
            raise DetectorUnavailableError(f"watching {path} failed: {exc}") from exc

    async def _wait_for_watch(self, watcher: asyncio.Task[None], dirty: asyncio.Event) -> None:
        dirty_wait = asyncio.ensure_future(dirty.wait())
        stop_wait = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({watcher, dirty_wait, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in (dirty_wait, stop_wait):
                waiter.cancel()

    async def signals(self) -> AsyncIterator[ChangeSignal]:
        """Yield change signals until :meth:`stop` is called.

        The first signal is emitted immediately so that consumers can
        publish an initial snapshot without waiting for a mutation.
        """
        dirty = asyncio.Event()
        watcher: asyncio.Task[None] | None = None
        if self._mode is DetectorMode.WATCH and self._watch_path is not None:
            # Armed before the startup signal so no write slips between the two.
            watcher = asyncio.create_task(self._pump(self._watch_path, dirty), name="geomonitor-watch")
            _logger.info("Watching %s for record changes", self._watch_path)
        else:
            _logger.info("Polling records every %.3fs", self._poll_interval)

        try:
            baseline: dict[str, int] = {}
            if watcher is None:
                baseline = await self._scan()
            yield self._signal("startup")

            if watcher is not None:
                while True:
                    await self._wait_for_watch(watcher, dirty)
                    if self._stop.is_set():
                        return
                    if dirty.is_set():
                        dirty.clear()
                        yield self._signal("watch")
                        continue
                    if watcher.done():
                        break

                cause = "watcher stopped"
                if not watcher.cancelled() and watcher.exception() is not None:
                    cause = str(watcher.exception())
                _logger.warning("%s; polling every %.3fs instead", cause, self._poll_interval)
                self._mode = DetectorMode.POLL
                # Changes may have been missed while the watcher was failing.
                baseline = await self._scan()
                yield self._signal("degraded")

            while not self._stop.is_set():
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self._poll_interval)
                except TimeoutError:
                    pass
                else:
                    return
                current = await self._scan()
                if current != baseline:
                    baseline = current
                    yield self._signal("poll")
        finally:
            if watcher is not None and not watcher.done():
                self._watch_stop.set()
                watcher.cancel()
                with contextlib.suppress(asyncio.CancelledError, DetectorUnavailableError):
                    await watcher
