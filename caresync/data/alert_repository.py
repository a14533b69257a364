"""Repository for glucose alerts."""

import logging
from datetime import datetime
from itertools import islice
from typing import Iterable, List, Optional

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from caresync.data.dynamodb import get_dynamodb_client
from caresync.models.alerts import NOTIFIED_IDS_ATTR, Alert, AlertStatus, AlertType
from caresync.utils.config import get_settings
from caresync.utils.timestamps import to_storage_timestamp

logger = logging.getLogger(__name__)
settings = get_settings()

USER_CREATED_INDEX = "UserCreatedIndex"


def _status_filter(statuses: Optional[Iterable[AlertStatus]]):
    if statuses is None:
        return None
    return Attr("status").is_in([s.value for s in statuses])


class AlertRepository:
    """Repository for alerts in DynamoDB."""

    def __init__(self):
        self.dynamodb = get_dynamodb_client()
        self.table_name = settings.dynamodb_alerts_table

    def save_alert(self, alert: Alert) -> Alert:
        """Create or overwrite an alert."""
        try:
            self.dynamodb.put_item(self.table_name, alert.to_dynamodb_item())
            return alert
        except ClientError as e:
            logger.error(f"Error saving alert {alert.alert_id}: {e}")
            raise

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        try:
            item = self.dynamodb.get_item(self.table_name, {"alert_id": alert_id})
            return Alert.from_dynamodb_item(item) if item else None
        except ClientError as e:
            logger.error(f"Error getting alert {alert_id}: {e}")
            raise

    def find_alert(
        self,
        user_id: str,
        alert_type: AlertType,
        since: datetime,
        statuses: Iterable[AlertStatus]
    ) -> Optional[Alert]:
        """
        Find the newest alert of a type for an owner created at or after `since`.

        Args:
            user_id: The owner
            alert_type: The alert type to match
            since: Earliest creation time (inclusive)
            statuses: Stored statuses that count as a match

        Returns:
            Optional[Alert]: The newest matching alert, or None
        """
        key_condition = Key("user_id").eq(user_id) & Key("created_at").gte(to_storage_timestamp(since))
        filter_expression = Attr("type").eq(alert_type.value) & Attr("status").is_in([s.value for s in statuses])
        try:
            items = self.dynamodb.query_items(
                self.table_name,
                key_condition,
                index_name=USER_CREATED_INDEX,
                filter_expression=filter_expression,
                scan_index_forward=False,
            )
            for item in items:
                return Alert.from_dynamodb_item(item)
            return None
        except ClientError as e:
            logger.error(f"Error finding alert for user {user_id}: {e}")
            raise

    def list_alerts_for_owner(
        self,
        user_id: str,
        limit: Optional[int] = 50,
        statuses: Optional[Iterable[AlertStatus]] = None
    ) -> List[Alert]:
        """
        Newest-first alerts about an owner.

        Args:
            user_id: The owner
            limit: Maximum number of alerts, or None for all
            statuses: Only alerts stored in one of these statuses
        """
        try:
            items = self.dynamodb.query_items(
                self.table_name,
                Key("user_id").eq(user_id),
                index_name=USER_CREATED_INDEX,
                filter_expression=_status_filter(statuses),
                scan_index_forward=False,
            )
            return [Alert.from_dynamodb_item(item) for item in islice(items, limit)]
        except ClientError as e:
            logger.error(f"Error listing alerts for user {user_id}: {e}")
            raise

    def list_alerts_for_recipient(
        self,
        recipient_id: str,
        limit: Optional[int] = 50,
        statuses: Optional[Iterable[AlertStatus]] = None
    ) -> List[Alert]:
        """Newest-first alerts that notified `recipient_id`."""
        filter_expression = Attr(NOTIFIED_IDS_ATTR).contains(recipient_id)
        status_filter = _status_filter(statuses)
        if status_filter is not None:
            filter_expression = filter_expression & status_filter
        try:
            alerts = [Alert.from_dynamodb_item(item) for item in self.dynamodb.scan_items(self.table_name, filter_expression)]
        except ClientError as e:
            logger.error(f"Error listing alerts for recipient {recipient_id}: {e}")
            raise
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        return alerts[:limit]


_alert_repository: Optional[AlertRepository] = None


def get_alert_repository() -> AlertRepository:
    global _alert_repository
    if _alert_repository is None:
        _alert_repository = AlertRepository()
    return _alert_repository
