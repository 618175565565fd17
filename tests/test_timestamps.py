from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from geomonitor.ingestion.timestamps import (
    format_timestamp,
    normalize_timestamp,
    parse_canonical,
    widen_timestamp,
)


def test_milliseconds_and_seconds_normalize_to_same_string() -> None:
    assert normalize_timestamp(1_700_000_000_000) == normalize_timestamp(1_700_000_000)
    assert normalize_timestamp(1_700_000_000) == "2023-11-14 22:13:20"


def test_numeric_strings_take_the_epoch_branch() -> None:
    assert normalize_timestamp("1700000000000") == "2023-11-14 22:13:20"
    assert normalize_timestamp(" 1700000000 ") == "2023-11-14 22:13:20"
    assert normalize_timestamp(1_700_000_000.9) == "2023-11-14 22:13:20"


def test_epoch_rendered_in_configured_zone() -> None:
    # Lima is UTC-5 without daylight saving time.
    assert normalize_timestamp(1_700_000_000, ZoneInfo("America/Lima")) == "2023-11-14 17:13:20"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2024-01-02", "2024-01-02 00:00:00"),
        ("2024-01-02T03:04", "2024-01-02 03:04:00"),
        ("2024-01-02 03:04", "2024-01-02 03:04:00"),
        ("  2024-01-02T03:04:05  ", "2024-01-02 03:04:05"),
        ("2024-01-02 03:04:05", "2024-01-02 03:04:05"),
    ],
)
def test_loose_strings_are_widened(raw: str, expected: str) -> None:
    assert normalize_timestamp(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "yesterday", "2024-02-30 00:00:00", "2024-1-2 03:04:05", True])
def test_unparseable_input_yields_none(raw: object) -> None:
    assert normalize_timestamp(raw) is None


def test_out_of_range_epoch_yields_none() -> None:
    assert normalize_timestamp(10**30) is None


def test_widen_does_not_validate() -> None:
    assert widen_timestamp("2024-13-99") == "2024-13-99 00:00:00"
    assert widen_timestamp("   ") is None
    assert widen_timestamp(None) is None


def test_parse_canonical_is_strict() -> None:
    assert parse_canonical("2024-01-02 03:04:05") == datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert parse_canonical("2024-01-02 03:04") is None
    assert parse_canonical(None) is None


def test_format_timestamp_treats_naive_as_utc() -> None:
    assert format_timestamp(datetime(2024, 5, 6, 7, 8, 9)) == "2024-05-06 07:08:09"
