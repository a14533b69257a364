import re
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from caresync.models.glucose import TrendDirection
from caresync.utils.timestamps import ensure_utc

_DOTNET_DATE = re.compile(r"Date\((-?\d+)")

# Keyed on the vendor direction with case and punctuation stripped, so the
# Share ("FortyFiveUp"), OAuth ("fortyFiveUp") and Nightscout ("NOT COMPUTABLE")
# vocabularies all resolve through one table.
DIRECTIONS = {
    'doubleup': (TrendDirection.RISING_FAST, '↑↑'),
    'singleup': (TrendDirection.RISING, '↑'),
    'fortyfiveup': (TrendDirection.RISING, '↗'),
    'flat': (TrendDirection.STABLE, '→'),
    'fortyfivedown': (TrendDirection.FALLING, '↘'),
    'singledown': (TrendDirection.FALLING, '↓'),
    'doubledown': (TrendDirection.FALLING_FAST, '↓↓'),
}
DEFAULT_DIRECTION = (TrendDirection.STABLE, '→')


def parse_iso_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 string (zone optional, UTC assumed). Returns None when unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return ensure_utc(datetime.fromisoformat(str(value).strip().replace('Z', '+00:00')))
    except ValueError:
        return None


def parse_epoch_millis(value: Any) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def parse_dotnet_date(value: Any) -> Optional[datetime]:
    """
    Extract the instant from a vendor date string such as "/Date(1717243200000-0700)/".
    Only the epoch milliseconds are used; the offset suffix is display-only.
    """
    if not isinstance(value, str):
        return None
    match = _DOTNET_DATE.search(value)
    if not match:
        return None
    return parse_epoch_millis(match.group(1))


def map_direction(value: Any) -> Tuple[TrendDirection, str]:
    """Map a vendor direction string to (canonical trend, arrow glyph)."""
    if value is None:
        return DEFAULT_DIRECTION
    key = re.sub(r"[^a-z]", "", str(value).lower())
    return DIRECTIONS.get(key, DEFAULT_DIRECTION)


def normalize_glucose_value(value: Any) -> Optional[int]:
    """Round a raw mg/dL value to an int. Returns None for missing or non-numeric input."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return None
