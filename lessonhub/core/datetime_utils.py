from __future__ import annotations

from datetime import UTC, date, datetime, time

from dateutil import parser as dateutil_parser


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_iso_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    if isinstance(value, date):
        return value
    try:
        return dateutil_parser.isoparse(value.strip()).date()
    except (ValueError, TypeError) as exc:
        msg = f"Invalid date: {value!r}"
        raise ValueError(msg) from exc


def is_monday(day: date) -> bool:
    return day.weekday() == 0


def parse_time_of_day(value: str) -> time:
    parts = value.strip().split(":")
    if len(parts) not in (2, 3) or not all(part.isdigit() for part in parts):
        msg = f"Invalid time of day: {value!r}"
        raise ValueError(msg)
    hour, minute = int(parts[0]), int(parts[1])
    second = int(parts[2]) if len(parts) == 3 else 0
    if not (0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59):
        msg = f"Invalid time of day: {value!r}"
        raise ValueError(msg)
    return time(hour, minute, second)


def format_time_of_day(value: time) -> str:
    return value.strftime("%H:%M:%S")


def combine_utc(day: date, time_of_day: time) -> datetime:
    return datetime.combine(day, time_of_day, tzinfo=UTC)
