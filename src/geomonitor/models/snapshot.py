"""Aggregate view models served to viewers."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from geomonitor.models.location import HistoryPoint


class DeviceView(BaseModel):
    """One device's entry in a snapshot."""

    model_config = ConfigDict(frozen=True)

    device_id: str
    latitude: float
    longitude: float
    last_update: str | None = None
    accuracy: float | None = None
    steps_total: int | None = None
    device_name: str | None = None
    history: list[HistoryPoint] = Field(default_factory=list)


class HistoryResult(BaseModel):
    """A device's history filtered by an optional time range.

    ``from_`` and ``to`` echo the widened bounds that were applied.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    device_id: str
    from_: str | None = Field(default=None, alias="from")
    to: str | None = None
    history: list[HistoryPoint] = Field(default_factory=list)
