"""Location record and history point models."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from geomonitor.ingestion.normalize import finite_coordinate, safe_float, safe_int, safe_str


class HistoryPoint(BaseModel):
    """One accepted position report of a device.

    Parameters
    ----------
    lat, lon : float
        Position in degrees. Must be finite.
    ts : str or None
        Canonical timestamp supplied by the device (or the server time
        at ingestion when the device sent none). Records written by
        older versions may hold anything here, so it is not validated.
    accuracy : float or None
        Reported horizontal accuracy in meters.
    provider : str or None
        Location provider label (``gps``, ``network``, ...).
    steps : int
        Steps since the previous report.
    steps_total : int or None
        Cumulative step counter of the device.
    accel : float or None
        Acceleration magnitude.
    device_name : str or None
        Human readable device label.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    lat: float
    lon: float
    ts: str | None = None
    accuracy: float | None = None
    provider: str | None = None
    steps: int = 0
    steps_total: int | None = None
    accel: float | None = None
    device_name: str | None = None

    @field_validator("lat", "lon", mode="before")
    @classmethod
    def _coerce_coordinate(cls, value: Any) -> float:
        parsed = finite_coordinate(value)
        if parsed is None:
            raise ValueError("coordinate must be a finite number")
        return parsed

    @field_validator("accuracy", "accel", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("steps", mode="before")
    @classmethod
    def _coerce_steps(cls, value: Any) -> int:
        return safe_int(value) or 0

    @field_validator("steps_total", mode="before")
    @classmethod
    def _coerce_steps_total(cls, value: Any) -> int | None:
        return safe_int(value)

    @field_validator("ts", "provider", "device_name", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> str | None:
        return safe_str(value)


def parse_history(value: Any) -> list[HistoryPoint]:
    """Validate stored history entries, skipping those without usable coordinates."""
    if not isinstance(value, list):
        return []
    points: list[HistoryPoint] = []
    for item in value:
        if isinstance(item, HistoryPoint):
            points.append(item)
            continue
        if not isinstance(item, dict):
            continue
        try:
            points.append(HistoryPoint.model_validate(item))
        except ValidationError:
            continue
    return points


class RecordSummary(BaseModel):
    """Top-level fields of a record that mirror the most recent write."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    accuracy: float | None = None
    provider: str | None = None
    steps: int | None = None
    steps_total: int | None = None
    accel: float | None = None
    device_name: str | None = None

    @classmethod
    def from_point(cls, point: HistoryPoint) -> RecordSummary:
        return cls(
            accuracy=point.accuracy,
            provider=point.provider,
            steps=point.steps,
            steps_total=point.steps_total,
            accel=point.accel,
            device_name=point.device_name,
        )


class LocationRecord(BaseModel):
    """The durable state of one device: current position plus history.

    Stored records written by the legacy tracker use ``user_id``,
    ``latitud``, ``longitud`` and ``fecha``; those keys are accepted when
    reading. Malformed history entries are dropped rather than failing
    the whole record.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    device_id: str = Field(validation_alias=AliasChoices("device_id", "user_id"))
    latitude: float = Field(validation_alias=AliasChoices("latitude", "latitud"))
    longitude: float = Field(validation_alias=AliasChoices("longitude", "longitud"))
    last_update: str | None = Field(default=None, validation_alias=AliasChoices("last_update", "fecha"))
    accuracy: float | None = None
    provider: str | None = None
    steps: int | None = None
    steps_total: int | None = None
    accel: float | None = None
    device_name: str | None = None
    history: list[HistoryPoint] = Field(default_factory=list)

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _coerce_coordinate(cls, value: Any) -> float:
        parsed = finite_coordinate(value)
        if parsed is None:
            raise ValueError("coordinate must be a finite number")
        return parsed

    @field_validator("accuracy", "accel", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("steps", "steps_total", mode="before")
    @classmethod
    def _coerce_ints(cls, value: Any) -> int | None:
        return safe_int(value)

    @field_validator("last_update", "provider", "device_name", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> str | None:
        return safe_str(value)

    @field_validator("history", mode="before")
    @classmethod
    def _drop_malformed_points(cls, value: Any) -> list[HistoryPoint]:
        return parse_history(value)

    @property
    def last_point(self) -> HistoryPoint | None:
        return self.history[-1] if self.history else None

    @classmethod
    def from_stored(cls, data: dict[str, Any], device_id: str) -> LocationRecord:
        """Validate a stored dict, defaulting the id to the storage key.

        Raises :class:`pydantic.ValidationError` when latitude or
        longitude is missing or not numeric.
        """
        payload = dict(data)
        if safe_str(payload.get("device_id")) is None and safe_str(payload.get("user_id")) is None:
            payload["device_id"] = device_id
        return cls.model_validate(payload)

    def to_stored(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
