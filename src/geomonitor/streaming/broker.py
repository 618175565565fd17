"""Fan-out of snapshots to live subscribers.

Owns:
- the background task consuming change signals
- computing exactly one snapshot (and one encoded payload) per signal
- per-subscriber latest-only mailboxes
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any

from geomonitor.models.snapshot import DeviceView
from geomonitor.state.aggregate import Aggregator
from geomonitor.streaming.detector import ChangeDetector
from geomonitor.streaming.sse import encode_snapshot

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotFrame:
    """A snapshot shared by every subscriber for one change signal."""

    sequence: int
    devices: list[DeviceView] = field(repr=False)
    data: str = field(repr=False)


class Subscription:
    """One subscriber's view of the stream.

    The mailbox holds at most one frame: a subscriber that falls behind
    skips straight to the newest snapshot, but frames are never
    reordered. Use as an async context manager so the broker forgets the
    subscription on exit::

        async with broker.subscribe() as subscription:
            async for frame in subscription:
                ...
    """

    def __init__(self, broker: StreamBroker) -> None:
        self._broker = broker
        self._mailbox: asyncio.Queue[SnapshotFrame | None] = asyncio.Queue(maxsize=1)
        self._closed = False
        self.skipped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, frame: SnapshotFrame) -> None:
        """Deliver *frame*, replacing an unread older one. Never blocks."""
        if self._closed:
            return
        if self._mailbox.full():
            self._mailbox.get_nowait()
            self.skipped += 1
        self._mailbox.put_nowait(frame)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        while not self._mailbox.empty():
            self._mailbox.get_nowait()
        self._mailbox.put_nowait(None)

    async def get(self) -> SnapshotFrame | None:
        """Wait for the next frame; ``None`` once the subscription is closed."""
        if self._closed and self._mailbox.empty():
            return None
        return await self._mailbox.get()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> SnapshotFrame:
        frame = await self.get()
        if frame is None:
            raise StopAsyncIteration
        return frame

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._broker.unsubscribe(self)


class StreamBroker:
    """Recomputes the snapshot once per change signal and offers it to all subscribers.

    Usage::

        broker = StreamBroker(aggregator, detector)
        await broker.start()
        ...
        await broker.stop()
    """

    def __init__(self, aggregator: Aggregator, detector: ChangeDetector) -> None:
        self._aggregator = aggregator
        self._detector = detector
        self._subscribers: set[Subscription] = set()
        self._latest: SnapshotFrame | None = None
        self._sequence = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def detector(self) -> ChangeDetector:
        return self._detector

    @property
    def latest(self) -> SnapshotFrame | None:
        return self._latest

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self) -> Subscription:
        """Register a subscriber; it starts with the most recent frame, if any."""
        subscription = Subscription(self)
        self._subscribers.add(subscription)
        if self._latest is not None:
            subscription.offer(self._latest)
        _logger.debug("Subscriber added (%d live)", len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
        if subscription in self._subscribers:
            self._subscribers.discard(subscription)
            _logger.debug("Subscriber removed (%d live)", len(self._subscribers))

    async def publish(self) -> SnapshotFrame | None:
        """Compute one snapshot and offer it to every live subscriber.

        A failed snapshot is logged and skipped; the next signal retries.
        """
        try:
            devices = await self._aggregator.snapshot()
        except Exception:
            _logger.exception("Snapshot computation failed")
            return None

        self._sequence += 1
        frame = SnapshotFrame(sequence=self._sequence, devices=devices, data=encode_snapshot(devices))
        self._latest = frame
        for subscription in list(self._subscribers):
            subscription.offer(frame)
        return frame

    async def _run(self) -> None:
        try:
            async for signal in self._detector.signals():
                _logger.debug("Change signal %d (%s, %s)", signal.sequence, signal.mode, signal.reason)
                await self.publish()
        except Exception:
            _logger.exception("Change detector failed; closing all streams")
        finally:
            self._close_all()

    def _close_all(self) -> None:
        for subscription in list(self._subscribers):
            subscription.close()
        self._subscribers.clear()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="geomonitor-broker")

    async def stop(self) -> None:
        self._detector.stop()
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._close_all()
