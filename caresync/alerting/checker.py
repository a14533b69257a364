"""Entry point every ingestion path calls after persisting a reading."""

import asyncio
import logging
from datetime import timedelta
from typing import List, Optional

from caresync.alerting.alert_copy import build_alert_copy
from caresync.alerting.evaluator import RAPID_CHANGE_WINDOW, evaluate, recipient_qualifies, resolve_thresholds
from caresync.alerting.fanout import NotificationFanout
from caresync.data.alert_repository import AlertRepository
from caresync.data.care_repository import CareRepository, ProfileRepository
from caresync.data.glucose_repository import GlucoseReadingRepository
from caresync.metrics import alerts_fired_total
from caresync.models.alerts import OPEN_STATUSES, Alert, NotifiedRecipient
from caresync.models.care import CareRelationship, RelationshipStatus, UserProfile
from caresync.utils.timestamps import Clock, utc_now

logger = logging.getLogger(__name__)

ANTI_SPAM_WINDOW = timedelta(minutes=30)


class AlertChecker:
    def __init__(
        self,
        readings: GlucoseReadingRepository,
        alerts: AlertRepository,
        profiles: ProfileRepository,
        care: CareRepository,
        fanout: NotificationFanout,
        clock: Optional[Clock] = None
    ):
        self.readings = readings
        self.alerts = alerts
        self.profiles = profiles
        self.care = care
        self.fanout = fanout
        self.clock = clock or utc_now

    async def _history(self, user_id: str, lookback: timedelta, now):
        return await asyncio.to_thread(self.readings.find_readings, user_id, now - lookback, now)

    async def check_glucose_alert(self, user_id: str, value: int, now=None) -> Optional[Alert]:
        """
        Evaluate the owner's newest value and fire an alert when warranted.

        An open alert of the same type created within the last 30 minutes is
        returned as-is instead of firing again.
        """
        now = now or self.clock()
        owner = await asyncio.to_thread(self.profiles.get_profile, user_id) or UserProfile(user_id=user_id)
        owner_delay = resolve_thresholds(owner.settings).high_delay_minutes
        lookback = max(RAPID_CHANGE_WINDOW, timedelta(minutes=owner_delay))
        history = await self._history(user_id, lookback, now)

        alert_type = evaluate(value, owner.settings, history, now)
        if alert_type is None:
            return None

        existing = await asyncio.to_thread(
            self.alerts.find_alert, user_id, alert_type, now - ANTI_SPAM_WINDOW, OPEN_STATUSES
        )
        if existing is not None:
            logger.info(
                f"Suppressed duplicate {alert_type.value} alert",
                extra={"log_type": "alert_suppressed", "user_id": user_id, "alert_id": existing.alert_id},
            )
            return existing

        active = await asyncio.to_thread(self.care.list_relationships, user_id, RelationshipStatus.ACTIVE)
        relationships = [r for r in active if r.is_reachable]
        recipients = await asyncio.to_thread(self.profiles.get_profiles, [r.recipient_id for r in relationships])
        longest_delay = max(
            (resolve_thresholds(p.settings).high_delay_minutes for p in recipients.values()), default=0
        )
        if timedelta(minutes=longest_delay) > lookback:
            history = await self._history(user_id, timedelta(minutes=longest_delay), now)

        qualifying: List[CareRelationship] = []
        for relationship in relationships:
            profile = recipients.get(relationship.recipient_id)
            if recipient_qualifies(
                alert_type, value, relationship.permissions, profile.settings if profile else None, history, now
            ):
                qualifying.append(relationship)

        copy = build_alert_copy(alert_type, value, owner.name)
        alert = Alert(
            user_id=user_id,
            owner_name=owner.name,
            type=alert_type,
            severity=copy.severity,
            title=copy.title,
            message=copy.message,
            glucose_value=value,
            notified_recipients=[NotifiedRecipient(recipient_id=r.recipient_id, notified_at=now) for r in qualifying],
            created_at=now,
        )
        alerts_fired_total.labels(type=alert_type.value).inc()
        return await self.fanout.fire_alert(alert, qualifying)
