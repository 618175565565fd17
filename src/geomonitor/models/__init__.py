"""Domain models."""

from geomonitor.models.location import HistoryPoint, LocationRecord, RecordSummary
from geomonitor.models.snapshot import DeviceView, HistoryResult

__all__ = [
    "DeviceView",
    "HistoryPoint",
    "HistoryResult",
    "LocationRecord",
    "RecordSummary",
]
