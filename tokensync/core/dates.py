from datetime import datetime, timedelta, timezone

from tokensync.core.errors import InvalidDateRangeError

ONE_DAY = timedelta(days=1)
# Event-source time filters are inclusive; subtracting this turns an exclusive bound into an inclusive one.
BOUNDARY_EPSILON = timedelta(milliseconds=1)


def parse_day(value: str) -> datetime:
    """Parses a `YYYY-MM-DD` string as 00:00 UTC of that day."""
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except (TypeError, ValueError) as e:
        raise InvalidDateRangeError(f"Invalid date {value!r}, expected YYYY-MM-DD") from e
    return parsed.replace(tzinfo=timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def truncate_day(value: datetime) -> datetime:
    return as_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)


def to_iso8601(value: datetime) -> str:
    value = as_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_iso8601(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def iter_days(start: datetime, end: datetime):
    """Yields every day boundary from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current = current + ONE_DAY
