"""Device submission parsing.

Turns the loosely typed fields posted by a device into a validated
:class:`LocationUpdate`. Nothing is stored here; rejection happens before
the store is touched.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from typing import Any

from geomonitor.exceptions import InvalidInputError
from geomonitor.ingestion.normalize import finite_coordinate, sanitize_device_id, sanitize_label
from geomonitor.ingestion.timestamps import format_timestamp, normalize_timestamp
from geomonitor.models.location import HistoryPoint, RecordSummary

#: Fields a device may submit.
PAYLOAD_FIELDS: tuple[str, ...] = (
    "user_id",
    "lat",
    "lon",
    "ts",
    "accuracy",
    "provider",
    "steps",
    "steps_total",
    "accel",
    "device_name",
)


@dataclass(frozen=True)
class LocationUpdate:
    """A validated submission ready for :meth:`LocationStore.upsert`."""

    device_id: str
    point: HistoryPoint
    summary: RecordSummary


def parse_location_payload(
    payload: Mapping[str, Any] | None,
    *,
    tz: tzinfo = UTC,
    received_at: datetime | None = None,
) -> LocationUpdate:
    """Validate a raw submission.

    Parameters
    ----------
    payload
        Form fields or a decoded JSON object. Anything that is not a
        mapping is treated as a malformed body.
    tz
        Zone used to render timestamps.
    received_at
        Server receive time, used as the point timestamp when the
        device sent none (or one that does not parse).

    Raises
    ------
    InvalidInputError
        Latitude or longitude is missing or not a finite number.
    """
    if not isinstance(payload, Mapping):
        raise InvalidInputError("invalid lat/lon")

    lat = finite_coordinate(payload.get("lat"))
    lon = finite_coordinate(payload.get("lon"))
    if lat is None or lon is None:
        raise InvalidInputError("invalid lat/lon")

    ts = normalize_timestamp(payload.get("ts"), tz)
    if ts is None:
        ts = format_timestamp(received_at or datetime.now(UTC), tz)

    point = HistoryPoint(
        lat=lat,
        lon=lon,
        ts=ts,
        accuracy=payload.get("accuracy"),
        provider=sanitize_label(payload.get("provider")),
        steps=payload.get("steps"),
        steps_total=payload.get("steps_total"),
        accel=payload.get("accel"),
        device_name=sanitize_label(payload.get("device_name")),
    )
    return LocationUpdate(
        device_id=sanitize_device_id(payload.get("user_id")),
        point=point,
        summary=RecordSummary.from_point(point),
    )
