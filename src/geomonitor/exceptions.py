"""Custom exception hierarchy for geomonitor."""

from __future__ import annotations


class GeoMonitorError(Exception):
    """Base exception for all geomonitor errors."""


class GeoMonitorConfigError(GeoMonitorError):
    """Invalid or missing configuration."""


class InvalidInputError(GeoMonitorError):
    """Ingestion payload rejected before any mutation (bad lat/lon, malformed body)."""


class StorageWriteError(GeoMonitorError):
    """A record could not be durably written."""

    def __init__(self, message: str, *, device_id: str = "") -> None:
        self.device_id = device_id
        super().__init__(message)


class DeviceNotFoundError(GeoMonitorError):
    """No record exists for the requested device id."""

    def __init__(self, message: str, *, device_id: str = "") -> None:
        self.device_id = device_id
        super().__init__(message)


class MalformedRecordError(GeoMonitorError):
    """A stored record is unreadable or structurally invalid.

    Read paths catch this and exclude the record instead of failing the
    whole aggregate.
    """

    def __init__(self, message: str, *, device_id: str = "") -> None:
        self.device_id = device_id
        super().__init__(message)


class DetectorUnavailableError(GeoMonitorError):
    """The native filesystem watch mechanism cannot be used.

    Raised internally by the change detector; it degrades to polling and
    never lets this escape to API callers.
    """
