"""geomonitor - Multi-device location store with real-time snapshot streaming."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("geomonitor")
except PackageNotFoundError:
    __version__ = "0+local"
from geomonitor.config import GeoMonitorConfig
from geomonitor.exceptions import (
    DetectorUnavailableError,
    DeviceNotFoundError,
    GeoMonitorConfigError,
    GeoMonitorError,
    InvalidInputError,
    MalformedRecordError,
    StorageWriteError,
)
from geomonitor.ingestion.timestamps import normalize_timestamp
from geomonitor.models import DeviceView, HistoryPoint, HistoryResult, LocationRecord, RecordSummary
from geomonitor.server import create_app
from geomonitor.state.aggregate import Aggregator
from geomonitor.state.backends import FileBackend, MemoryBackend, RecordBackend
from geomonitor.state.history import HistoryQuery
from geomonitor.state.store import LocationStore
from geomonitor.streaming.broker import SnapshotFrame, StreamBroker, Subscription
from geomonitor.streaming.detector import ChangeDetector, ChangeSignal, DetectorMode

__all__ = [
    "__version__",
    "Aggregator",
    "ChangeDetector",
    "ChangeSignal",
    "DetectorMode",
    "DetectorUnavailableError",
    "DeviceNotFoundError",
    "DeviceView",
    "FileBackend",
    "GeoMonitorConfig",
    "GeoMonitorConfigError",
    "GeoMonitorError",
    "HistoryPoint",
    "HistoryQuery",
    "HistoryResult",
    "InvalidInputError",
    "LocationRecord",
    "LocationStore",
    "MalformedRecordError",
    "MemoryBackend",
    "RecordBackend",
    "RecordSummary",
    "SnapshotFrame",
    "StorageWriteError",
    "StreamBroker",
    "Subscription",
    "create_app",
    "normalize_timestamp",
]
