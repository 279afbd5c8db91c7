from datetime import date, datetime, timedelta, timezone
from typing import Optional

# Seconds between the Unix epoch (1970-01-01) and the Apple Core Data
# epoch (2001-01-01) used by .hae file timestamps.
APPLE_EPOCH_OFFSET = 978307200

HAE_TIME_FORMAT = "%Y-%m-%d %H:%M:%S %z"
HAE_DATE_FORMAT = "%Y-%m-%d"

_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def apple_to_datetime(apple_ts: float) -> datetime:
    """Convert seconds since 2001-01-01 UTC to an aware UTC datetime."""
    return _UNIX_EPOCH + timedelta(seconds=apple_ts + APPLE_EPOCH_OFFSET)


def parse_hae_time(value) -> datetime:
    """Parse a push-API time ("2024-02-06 07:12:00 +0100" or "2024-02-06") to UTC."""
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str):
        raise ValueError(f"cannot parse HAE time {value!r}")
    s = value.strip()
    try:
        return datetime.strptime(s, HAE_TIME_FORMAT).astimezone(timezone.utc)
    except ValueError:
        pass
    try:
        return datetime.strptime(s, HAE_DATE_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        raise ValueError(f"cannot parse HAE time {value!r}")


def format_hae_time(dt: datetime) -> str:
    return as_utc(dt).strftime(HAE_TIME_FORMAT)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops the offset) and convert aware ones."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_day(value: str) -> date:
    return datetime.strptime(value, HAE_DATE_FORMAT).date()
