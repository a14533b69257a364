"""Daily recap pushed to each owner and their active care network."""

import logging
from collections import defaultdict
from datetime import timedelta
from typing import Dict, Iterable, List, NamedTuple, Optional

from caresync.data.care_repository import CareRepository, ProfileRepository
from caresync.data.glucose_repository import GlucoseReadingRepository
from caresync.models.care import NEW_USER_DEFAULT_HIGH_THRESHOLD, NEW_USER_DEFAULT_LOW_THRESHOLD, UserProfile
from caresync.models.glucose import GlucoseReading
from caresync.notifications.base import Notifier
from caresync.utils.timestamps import Clock, utc_now

logger = logging.getLogger(__name__)

SUMMARY_WINDOW = timedelta(hours=24)


class DailySummary(NamedTuple):
    count: int
    average: int
    time_in_range: int
    lows: int
    highs: int


def summarize_readings(readings: Iterable[GlucoseReading], low: int, high: int) -> Optional[DailySummary]:
    values = [r.value for r in readings]
    if not values:
        return None
    in_range = sum(1 for v in values if low <= v <= high)
    return DailySummary(
        count=len(values),
        average=round(sum(values) / len(values)),
        time_in_range=round(in_range / len(values) * 100),
        lows=sum(1 for v in values if v < low),
        highs=sum(1 for v in values if v > high),
    )


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count > 1 else ''}"


def format_summary(name: str, summary: DailySummary) -> str:
    text = f"📊 {name}'s Daily Recap: {summary.time_in_range}% in range, avg {summary.average} mg/dL"
    if summary.lows:
        text += f", {_plural(summary.lows, 'low')}"
    if summary.highs:
        text += f", {_plural(summary.highs, 'high')}"
    return text + f" ({summary.count} readings)"


def _thresholds(profile: UserProfile):
    settings = profile.settings
    low = settings.low_threshold if settings and settings.low_threshold else NEW_USER_DEFAULT_LOW_THRESHOLD
    high = settings.high_threshold if settings and settings.high_threshold else NEW_USER_DEFAULT_HIGH_THRESHOLD
    return low, high


class DailySummaryJob:
    def __init__(
        self,
        readings: GlucoseReadingRepository,
        profiles: ProfileRepository,
        care: CareRepository,
        notifier: Notifier,
        clock: Optional[Clock] = None
    ):
        self.readings = readings
        self.profiles = profiles
        self.care = care
        self.notifier = notifier
        self.clock = clock or utc_now

    async def run(self, now=None) -> int:
        """Send recaps; returns how many owners got one."""
        now = now or self.clock()
        networks: Dict[str, List[str]] = defaultdict(list)
        for relationship in self.care.list_active_relationships():
            members = networks[relationship.owner_id]
            if relationship.recipient_id:
                members.append(relationship.recipient_id)

        sent = 0
        for owner_id, members in networks.items():
            try:
                if await self._send_recap(owner_id, members, now):
                    sent += 1
            except Exception:
                logger.exception("Daily recap failed", extra={"log_type": "daily_summary_error", "user_id": owner_id})
        logger.info(f"Sent daily recaps for {sent} owner(s)", extra={"log_type": "daily_summary", "owners": sent})
        return sent

    async def _send_recap(self, owner_id: str, members: List[str], now) -> bool:
        profile = self.profiles.get_profile(owner_id)
        if profile is None:
            return False
        low, high = _thresholds(profile)
        summary = summarize_readings(self.readings.find_readings(owner_id, now - SUMMARY_WINDOW, now), low, high)
        if summary is None:
            return False
        await self.notifier.send_filtered_push(
            [owner_id, *members],
            f"📊 Daily Recap — {profile.name}",
            format_summary(profile.name, summary),
            {"type": "daily_summary"},
        )
        return True
