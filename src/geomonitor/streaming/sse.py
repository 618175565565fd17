"""Server-sent event framing."""

from __future__ import annotations

import json
from collections.abc import Sequence

from geomonitor.models.snapshot import DeviceView

UPDATE_EVENT = "update"
HEARTBEAT = b": ping\n\n"


def encode_snapshot(devices: Sequence[DeviceView]) -> str:
    """JSON-encode a snapshot as one line suitable for a ``data:`` field."""
    payload = json.dumps([device.model_dump(mode="json") for device in devices], ensure_ascii=False)
    return payload.replace("\n", "\\n")


def format_event(data: str, event: str = UPDATE_EVENT) -> bytes:
    return f"event: {event}\ndata: {data}\n\n".encode()


def format_retry(retry_ms: int) -> bytes:
    return f"retry: {retry_ms}\n\n".encode()
