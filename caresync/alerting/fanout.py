"""
Alert fan-out: persisting alerts, posting chat entries and dispatching pushes
for the fire, acknowledge and resolve transitions.

The steps are not atomic. A failure part-way leaves the earlier steps in
place. Push dispatch never fails the caller; chat and storage errors do.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from caresync.data.alert_repository import AlertRepository
from caresync.data.care_repository import CareRepository, ProfileRepository
from caresync.metrics import push_dispatch_failures_total
from caresync.models.alerts import (
    DEFAULT_ACK_MESSAGE,
    MAX_ACK_MESSAGE_LENGTH,
    Acknowledgment,
    Alert,
    AlertStatus,
)
from caresync.models.care import CareRelationship, PushCategory, RelationshipStatus
from caresync.models.chat import MessageKind
from caresync.notifications.base import Notifier
from caresync.utils.error_handling import AlertNotFoundError, AlertPermissionError, AlertStateError
from caresync.utils.timestamps import Clock, utc_now

logger = logging.getLogger(__name__)


class NotificationFanout:
    def __init__(
        self,
        alerts: AlertRepository,
        care: CareRepository,
        profiles: ProfileRepository,
        notifier: Notifier,
        clock: Optional[Clock] = None
    ):
        self.alerts = alerts
        self.care = care
        self.profiles = profiles
        self.notifier = notifier
        self.clock = clock or utc_now

    async def _push(
        self,
        recipient_ids: Iterable[str],
        title: str,
        body: str,
        data: Dict[str, Any],
        category: PushCategory
    ) -> None:
        try:
            await self.notifier.send_filtered_push(recipient_ids, title, body, data, category)
        except Exception:
            push_dispatch_failures_total.labels(category=category.value).inc()
            logger.exception(
                "Push dispatch failed",
                extra={"log_type": "push_error", "category": category.value, "alert_id": data.get("alertId")},
            )

    def _display_name(self, user_id: str, default: str) -> str:
        profile = self.profiles.get_profile(user_id)
        return profile.name if profile and profile.name else default

    def _active_relationships(self, owner_id: str) -> List[CareRelationship]:
        return [r for r in self.care.list_relationships(owner_id, RelationshipStatus.ACTIVE) if r.is_reachable]

    async def fire_alert(self, alert: Alert, relationships: Iterable[CareRelationship]) -> Alert:
        """
        Persist a new alert, drop an alert entry into each qualifying recipient's
        conversation and push to the owner plus those recipients.
        """
        relationships = list(relationships)
        self.alerts.save_alert(alert)
        for relationship in relationships:
            await self.notifier.post_chat_message(
                relationship.relationship_id,
                alert.message,
                MessageKind.ALERT,
                alert_id=alert.alert_id,
                sender_id=alert.user_id,
            )
        recipients = [alert.user_id] + [r.recipient_id for r in alert.notified_recipients]
        await self._push(
            recipients,
            alert.title,
            alert.message,
            {"alertId": alert.alert_id, "type": "alert", "severity": alert.severity.value},
            PushCategory.GLUCOSE_ALERTS,
        )
        logger.info(
            f"Created {alert.type.value} alert",
            extra={
                "log_type": "alert_fired",
                "alert_id": alert.alert_id,
                "user_id": alert.user_id,
                "glucose_value": alert.glucose_value,
                "notified": len(alert.notified_recipients),
            },
        )
        return alert

    def get_alert(self, alert_id: str, viewer_id: Optional[str] = None) -> Alert:
        """Load an alert with expiry applied. A viewer must be the owner or a notified recipient."""
        alert = self.alerts.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(f"Alert {alert_id} not found")
        if viewer_id is not None and viewer_id != alert.user_id and not alert.is_notified(viewer_id):
            raise AlertPermissionError("You are not involved in this alert")
        alert.apply_lazy_expiry(self.clock())
        return alert

    def _visible_alerts(
        self,
        viewer_id: str,
        limit: Optional[int],
        status: Optional[AlertStatus]
    ) -> List[Alert]:
        # An alert past its expiry can still be stored as active
        stored = None
        if status == AlertStatus.EXPIRED:
            stored = [AlertStatus.ACTIVE, AlertStatus.EXPIRED]
        elif status is not None:
            stored = [status]

        merged = {}
        for alert in self.alerts.list_alerts_for_owner(viewer_id, limit, stored):
            merged[alert.alert_id] = alert
        for alert in self.alerts.list_alerts_for_recipient(viewer_id, limit, stored):
            merged.setdefault(alert.alert_id, alert)

        now = self.clock()
        alerts = sorted(merged.values(), key=lambda a: a.created_at, reverse=True)
        for alert in alerts:
            alert.apply_lazy_expiry(now)
        if status is not None:
            alerts = [a for a in alerts if a.status == status]
        return alerts[:limit]

    def list_alerts(self, viewer_id: str, limit: int = 20, status: Optional[AlertStatus] = None) -> List[Alert]:
        """Newest-first alerts the viewer owns or was notified about, with expiry applied."""
        return self._visible_alerts(viewer_id, limit, status)

    def count_active(self, viewer_id: str) -> int:
        """Active, unexpired alerts the viewer owns or was notified about."""
        return len(self._visible_alerts(viewer_id, None, AlertStatus.ACTIVE))

    async def acknowledge(self, alert_id: str, actor_id: str, note: Optional[str] = None) -> Alert:
        """
        Record that `actor_id` is handling the alert. Repeat acknowledgments by
        the same actor change nothing.

        Raises:
            AlertNotFoundError: Unknown alert
            AlertPermissionError: Actor is neither the owner nor a notified recipient
        """
        alert = self.get_alert(alert_id, viewer_id=actor_id)
        if alert.has_acknowledged(actor_id):
            return alert

        now = self.clock()
        note = (note or "").strip()[:MAX_ACK_MESSAGE_LENGTH] or DEFAULT_ACK_MESSAGE
        alert.acknowledgments.append(Acknowledgment(recipient_id=actor_id, message=note, acknowledged_at=now))
        if alert.status == AlertStatus.ACTIVE:
            alert.status = AlertStatus.ACKNOWLEDGED
        self.alerts.save_alert(alert)

        actor_name = self._display_name(actor_id, "Someone")
        relationships = self._active_relationships(alert.user_id)
        for relationship in relationships:
            if actor_id in (alert.user_id, relationship.recipient_id):
                await self.notifier.post_chat_message(
                    relationship.relationship_id,
                    f'✅ {actor_name} acknowledged: "{note[:100]}"',
                    MessageKind.SYSTEM,
                    alert_id=alert.alert_id,
                    sender_id=actor_id,
                )

        everyone = [alert.user_id] + [r.recipient_id for r in relationships]
        await self._push(
            [uid for uid in dict.fromkeys(everyone) if uid != actor_id],
            "✅ Alert Acknowledged",
            f'{actor_name}: "{note[:80]}"',
            {"alertId": alert.alert_id, "type": "acknowledgment"},
            PushCategory.ACKNOWLEDGMENTS,
        )
        return alert

    async def resolve(self, alert_id: str, actor_id: str) -> Alert:
        """
        Close an alert. Only its owner may do so.

        Raises:
            AlertNotFoundError: Unknown alert
            AlertPermissionError: Actor is not the owner
            AlertStateError: The alert already expired
        """
        alert = self.get_alert(alert_id)
        if actor_id != alert.user_id:
            raise AlertPermissionError("Only the alert owner can resolve it")
        if alert.status == AlertStatus.RESOLVED:
            return alert
        if alert.status == AlertStatus.EXPIRED:
            raise AlertStateError("An expired alert cannot be resolved")

        alert.status = AlertStatus.RESOLVED
        alert.resolved_at = self.clock()
        self.alerts.save_alert(alert)

        owner_name = self._display_name(actor_id, "User")
        relationships = self._active_relationships(alert.user_id)
        for relationship in relationships:
            await self.notifier.post_chat_message(
                relationship.relationship_id,
                f'Alert resolved by {owner_name}: "{alert.title}"',
                MessageKind.SYSTEM,
                alert_id=alert.alert_id,
                sender_id=actor_id,
            )
        if relationships:
            await self._push(
                [r.recipient_id for r in relationships],
                "✅ Alert Resolved",
                f'{owner_name} resolved: "{alert.title[:80]}"',
                {"alertId": alert.alert_id, "type": "resolved"},
                PushCategory.ALERT_RESOLVED,
            )
        return alert
