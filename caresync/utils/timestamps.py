"""UTC timestamp helpers shared by models and repositories."""

from datetime import datetime, timezone
from typing import Callable

ISO8601_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_storage_timestamp(value: datetime) -> str:
    """Fixed-width UTC string; lexicographic order equals chronological order."""
    return ensure_utc(value).strftime(ISO8601_FORMAT)


def parse_storage_timestamp(value: str) -> datetime:
    return datetime.strptime(value, ISO8601_FORMAT).replace(tzinfo=timezone.utc)


Clock = Callable[[], datetime]
