"""Directory-wide snapshot of every device."""

from __future__ import annotations

from geomonitor.models.location import LocationRecord
from geomonitor.models.snapshot import DeviceView
from geomonitor.state.store import LocationStore


def device_view(record: LocationRecord) -> DeviceView:
    """Summarize one record, filling absent summary fields from its last point."""
    last = record.last_point
    accuracy = record.accuracy
    steps_total = record.steps_total
    device_name = record.device_name
    if last is not None:
        if accuracy is None:
            accuracy = last.accuracy
        if steps_total is None:
            steps_total = last.steps_total
        if device_name is None:
            device_name = last.device_name

    return DeviceView(
        device_id=record.device_id,
        latitude=record.latitude,
        longitude=record.longitude,
        last_update=record.last_update,
        accuracy=accuracy,
        steps_total=steps_total,
        device_name=device_name,
        history=record.history,
    )


class Aggregator:
    """Builds the snapshot served by the polling endpoint and the stream.

    Records the store cannot parse never reach this layer, so one damaged
    record only removes that device from the view.
    """

    def __init__(self, store: LocationStore) -> None:
        self._store = store

    async def snapshot(self) -> list[DeviceView]:
        records = await self._store.list_all()
        return sorted((device_view(record) for record in records), key=lambda view: view.device_id)
