"""Normalization helpers.

Centralizes lenient parsing of loosely typed device input.
"""

from __future__ import annotations

import math
import re
import secrets
from typing import Any

from geomonitor._constants import ANON_PREFIX

_DEVICE_ID_INVALID = re.compile(r"[^A-Za-z0-9_\-]")
_LABEL_INVALID = re.compile(r"[^\w\-\s.]")


def safe_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    if parsed is None or math.isinf(parsed):
        return None
    return int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def finite_coordinate(value: Any) -> float | None:
    """Parse a latitude/longitude value, ``None`` unless it is a finite number."""
    parsed = safe_float(value)
    if parsed is None or not math.isfinite(parsed):
        return None
    return parsed


def sanitize_device_id(value: Any) -> str:
    """Coerce *value* into a device id, generating an anonymous one when absent."""
    text = safe_str(value)
    if text is None:
        return f"{ANON_PREFIX}{secrets.token_hex(4)}"
    return _DEVICE_ID_INVALID.sub("_", text)


def sanitize_label(value: Any) -> str | None:
    """Strip characters outside word chars, hyphen, whitespace and dot."""
    if value is None:
        return None
    return _LABEL_INVALID.sub("", str(value))


def is_valid_device_id(value: Any) -> bool:
    return isinstance(value, str) and bool(value) and _DEVICE_ID_INVALID.search(value) is None
