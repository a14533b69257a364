"""
Pure alert decision logic: classify a reading, confirm sustained highs,
detect rapid changes and re-run the decision per care recipient.

Nothing here touches storage. Callers pass in the recent reading history
(the newest reading included) and the current time.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, NamedTuple, Optional

from caresync.models.alerts import AlertType, LOW_SIDE_TYPES, RAPID_TYPES, URGENT_TYPES
from caresync.models.care import (
    FALLBACK_HIGH_THRESHOLD,
    FALLBACK_LOW_THRESHOLD,
    AlertThresholdSettings,
    CarePermissions,
)
from caresync.models.glucose import GlucoseReading

URGENT_LOW_THRESHOLD = 54
URGENT_HIGH_THRESHOLD = 300
RAPID_CHANGE_THRESHOLD = 50
RAPID_CHANGE_WINDOW = timedelta(minutes=20)


class Thresholds(NamedTuple):
    low: int
    high: int
    high_delay_minutes: int


def resolve_thresholds(settings: Optional[AlertThresholdSettings]) -> Thresholds:
    """Personal thresholds where set, fallback constants otherwise."""
    if settings is None:
        return Thresholds(FALLBACK_LOW_THRESHOLD, FALLBACK_HIGH_THRESHOLD, 0)
    return Thresholds(
        settings.low_threshold if settings.low_threshold is not None else FALLBACK_LOW_THRESHOLD,
        settings.high_threshold if settings.high_threshold is not None else FALLBACK_HIGH_THRESHOLD,
        settings.high_alert_delay_minutes or 0,
    )


def classify(value: int, low: int, high: int) -> Optional[AlertType]:
    """Threshold classification; the first matching rule wins."""
    if value <= URGENT_LOW_THRESHOLD:
        return AlertType.URGENT_LOW
    if value < low:
        return AlertType.LOW
    if value >= URGENT_HIGH_THRESHOLD:
        return AlertType.URGENT_HIGH
    if value > high:
        return AlertType.HIGH
    return None


def _within(history: Iterable[GlucoseReading], since: datetime, now: datetime) -> List[GlucoseReading]:
    return sorted((r for r in history if since <= r.timestamp <= now), key=lambda r: r.timestamp)


def is_sustained_high(
    history: Iterable[GlucoseReading],
    threshold: int,
    delay_minutes: int,
    now: datetime
) -> bool:
    """
    True when at least two readings fall in the trailing delay window and every
    one of them is above the threshold. A zero delay needs no confirmation.
    """
    if delay_minutes <= 0:
        return True
    window = _within(history, now - timedelta(minutes=delay_minutes), now)
    return len(window) >= 2 and all(r.value > threshold for r in window)


def detect_rapid_change(value: int, history: Iterable[GlucoseReading], now: datetime) -> Optional[AlertType]:
    """Compare against the reading before the newest one in the trailing 20 minutes."""
    window = _within(history, now - RAPID_CHANGE_WINDOW, now)
    if len(window) < 2:
        return None
    diff = value - window[-2].value
    if diff <= -RAPID_CHANGE_THRESHOLD:
        return AlertType.RAPID_DROP
    if diff >= RAPID_CHANGE_THRESHOLD:
        return AlertType.RAPID_RISE
    return None


def evaluate(
    value: int,
    settings: Optional[AlertThresholdSettings],
    history: Iterable[GlucoseReading],
    now: datetime
) -> Optional[AlertType]:
    history = list(history)
    thresholds = resolve_thresholds(settings)
    alert_type = classify(value, thresholds.low, thresholds.high)
    if alert_type == AlertType.HIGH and not is_sustained_high(
        history, thresholds.high, thresholds.high_delay_minutes, now
    ):
        alert_type = None
    if alert_type is None:
        alert_type = detect_rapid_change(value, history, now)
    return alert_type


def recipient_qualifies(
    alert_type: AlertType,
    value: int,
    permissions: CarePermissions,
    recipient_settings: Optional[AlertThresholdSettings],
    history: Iterable[GlucoseReading],
    now: datetime
) -> bool:
    """
    Re-run the decision for one recipient using their own thresholds and
    delay. Urgent alerts reach anyone who takes low alerts; rapid changes
    reach anyone with the matching permission.
    """
    if alert_type in URGENT_TYPES:
        return permissions.receive_low_alerts

    wants = permissions.receive_low_alerts if alert_type in LOW_SIDE_TYPES else permissions.receive_high_alerts
    if not wants:
        return False
    if alert_type in RAPID_TYPES:
        return True

    thresholds = resolve_thresholds(recipient_settings)
    if alert_type == AlertType.LOW:
        return value < thresholds.low
    if alert_type == AlertType.HIGH:
        return value > thresholds.high and is_sustained_high(
            history, thresholds.high, thresholds.high_delay_minutes, now
        )
    return False
