from __future__ import annotations

import pytest

from chat_bridge.core.time_utils import iso_from_ms, parse_iso_ms


def test_parse_iso_ms_handles_nanoseconds() -> None:
    assert parse_iso_ms("2024-01-02T03:04:05.123456789Z") == 1704164645123


def test_parse_iso_ms_handles_offsets() -> None:
    assert parse_iso_ms("2024-01-02T05:04:05+02:00") == 1704164645000


@pytest.mark.parametrize("value", [None, "", "not a time", 123])
def test_parse_iso_ms_returns_none_for_invalid(value: object) -> None:
    assert parse_iso_ms(value) is None


def test_iso_from_ms_round_trips_milliseconds() -> None:
    assert iso_from_ms(1704164645123) == "2024-01-02T03:04:05.123Z"
    assert parse_iso_ms(iso_from_ms(1704164645123)) == 1704164645123
