"""Internal constants shared across the library."""

#: Maximum number of history points retained per device (sliding window).
MAX_POINTS = 5000

#: Absolute per-axis tolerance for considering two coordinates identical.
COORD_TOLERANCE = 1e-7

#: Canonical timestamp format for stored and range-compared timestamps.
CANONICAL_FORMAT = "%Y-%m-%d %H:%M:%S"

#: Epoch values above this magnitude are treated as milliseconds.
MS_THRESHOLD = 100_000_000_000

#: Default poll interval (seconds) of the change detector fallback.
POLL_INTERVAL = 0.2

#: SSE reconnect hint sent at stream start (milliseconds).
STREAM_RETRY_MS = 3000

RECORD_SUFFIX = ".json"
ANON_PREFIX = "anon_"
