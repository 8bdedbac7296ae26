from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta, timezone

import pytest

from lessonhub.core.datetime_utils import (
    combine_utc,
    ensure_utc,
    format_time_of_day,
    is_monday,
    parse_iso_date,
    parse_time_of_day,
)


def test_ensure_utc_on_naive_datetime() -> None:
    naive = datetime(2026, 1, 1, 12, 0)

    utc_dt = ensure_utc(naive)

    assert utc_dt.tzinfo == UTC
    assert utc_dt.hour == 12


def test_ensure_utc_converts_offset() -> None:
    moscow = datetime(2026, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=3)))

    assert ensure_utc(moscow) == datetime(2026, 1, 1, 9, 0, tzinfo=UTC)


def test_parse_iso_date_accepts_strings_and_dates() -> None:
    assert parse_iso_date("2026-03-02") == date(2026, 3, 2)
    assert parse_iso_date(date(2026, 3, 2)) == date(2026, 3, 2)


def test_parse_iso_date_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        parse_iso_date("next monday")


def test_week_helpers() -> None:
    assert is_monday(date(2026, 3, 2))
    assert not is_monday(date(2026, 3, 3))


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("09:00", time(9, 0)), ("18:30:15", time(18, 30, 15)), (" 7:05 ", time(7, 5))],
)
def test_parse_time_of_day(raw: str, expected: time) -> None:
    assert parse_time_of_day(raw) == expected


@pytest.mark.parametrize("raw", ["24:00", "9", "ab:cd", "10:60", ""])
def test_parse_time_of_day_rejects_invalid(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_time_of_day(raw)


def test_format_and_combine() -> None:
    assert format_time_of_day(time(9, 5)) == "09:05:00"
    assert combine_utc(date(2026, 3, 2), time(10, 0)) == datetime(2026, 3, 2, 10, 0, tzinfo=UTC)

