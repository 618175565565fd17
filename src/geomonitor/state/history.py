"""Time-range filtering of one device's history."""

from __future__ import annotations

from datetime import UTC, datetime, tzinfo

from geomonitor.ingestion.timestamps import parse_canonical, widen_timestamp
from geomonitor.models.location import HistoryPoint
from geomonitor.models.snapshot import HistoryResult
from geomonitor.state.store import LocationStore


def filter_history(
    history: list[HistoryPoint],
    start: datetime | None,
    end: datetime | None,
    tz: tzinfo = UTC,
) -> list[HistoryPoint]:
    """Keep points within ``[start, end]``.

    Points whose ``ts`` is missing or unparseable are always kept so
    they never silently vanish from results.
    """
    selected: list[HistoryPoint] = []
    for point in history:
        ts = parse_canonical(point.ts, tz)
        if ts is not None:
            if start is not None and ts < start:
                continue
            if end is not None and ts > end:
                continue
        selected.append(point)
    return selected


class HistoryQuery:
    def __init__(self, store: LocationStore, *, tz: tzinfo = UTC) -> None:
        self._store = store
        self._tz = tz

    async def query(self, device_id: str, from_: str | None = None, to: str | None = None) -> HistoryResult:
        """Return the history of *device_id* between two loose date-time strings.

        Bounds accept ``YYYY-MM-DD``, ``YYYY-MM-DDTHH:MM`` and the
        canonical form; a bound that still does not parse is ignored.

        Raises :class:`DeviceNotFoundError` when the device has no record.
        """
        record = await self._store.get(device_id)
        start_text = widen_timestamp(from_)
        end_text = widen_timestamp(to)
        history = filter_history(
            record.history,
            parse_canonical(start_text, self._tz),
            parse_canonical(end_text, self._tz),
            self._tz,
        )
        return HistoryResult(device_id=device_id, from_=start_text, to=end_text, history=history)
