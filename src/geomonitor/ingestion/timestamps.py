"""Timestamp normalization.

Devices report time as epoch seconds, epoch milliseconds or loosely
formatted date strings. Everything stored is converted to the canonical
``YYYY-MM-DD HH:MM:SS`` form rendered in one process-wide zone.

The wire format carries no zone, and epoch magnitudes above
``MS_THRESHOLD`` are assumed to be milliseconds. Both are known
limitations of the input, kept as-is.
"""

from __future__ import annotations

import math
import re
from datetime import UTC, datetime, tzinfo
from typing import Any

from geomonitor._constants import CANONICAL_FORMAT, MS_THRESHOLD

_NUMERIC = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_MINUTES_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}$")
_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CANONICAL = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")


def format_timestamp(value: datetime, tz: tzinfo = UTC) -> str:
    """Render an aware datetime in the canonical format within *tz*."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(tz).strftime(CANONICAL_FORMAT)


def _epoch_seconds(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _NUMERIC.match(value.strip()):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            value = float(text)
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    return None


def widen_timestamp(raw: Any) -> str | None:
    """Apply the loose string coercion without validating the result.

    ``"2024-01-02T03:04"`` becomes ``"2024-01-02 03:04:00"`` and a bare
    date gets ``" 00:00:00"`` appended. Empty input yields ``None``.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    text = text.replace("T", " ")
    if _MINUTES_ONLY.match(text):
        text += ":00"
    if _DATE_ONLY.match(text):
        text += " 00:00:00"
    return text


def parse_canonical(value: Any, tz: tzinfo = UTC) -> datetime | None:
    """Strictly parse a canonical timestamp string, ``None`` on failure."""
    if not isinstance(value, str) or not _CANONICAL.match(value):
        return None
    try:
        return datetime.strptime(value, CANONICAL_FORMAT).replace(tzinfo=tz)
    except ValueError:
        return None


def normalize_timestamp(raw: Any, tz: tzinfo = UTC) -> str | None:
    """Convert a device-supplied timestamp to the canonical string.

    Returns ``None`` for empty or unparseable input.
    """
    if raw is None or raw == "":
        return None

    seconds = _epoch_seconds(raw)
    if seconds is not None:
        if seconds > MS_THRESHOLD:
            seconds = seconds // 1000
        try:
            return format_timestamp(datetime.fromtimestamp(seconds, tz=UTC), tz)
        except (OverflowError, OSError, ValueError):
            return None

    text = widen_timestamp(raw)
    if text is None:
        return None
    if parse_canonical(text, tz) is None:
        return None
    return text
