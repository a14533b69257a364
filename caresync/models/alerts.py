"""Models for glucose alerts and their acknowledgment lifecycle."""

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from caresync.utils.timestamps import ensure_utc, parse_storage_timestamp, to_storage_timestamp, utc_now

ALERT_LIFETIME = timedelta(hours=2)
DEFAULT_ACK_MESSAGE = "Got it, handling it!"
# Flat list of notified recipient ids, stored so recipients can be matched by a filter
NOTIFIED_IDS_ATTR = "notified_recipient_ids"
MAX_ACK_MESSAGE_LENGTH = 200


class AlertType(str, Enum):
    LOW = "low"
    URGENT_LOW = "urgent_low"
    HIGH = "high"
    URGENT_HIGH = "urgent_high"
    RAPID_DROP = "rapid_drop"
    RAPID_RISE = "rapid_rise"


LOW_SIDE_TYPES = frozenset({AlertType.LOW, AlertType.URGENT_LOW, AlertType.RAPID_DROP})
URGENT_TYPES = frozenset({AlertType.URGENT_LOW, AlertType.URGENT_HIGH})
RAPID_TYPES = frozenset({AlertType.RAPID_DROP, AlertType.RAPID_RISE})


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    URGENT = "urgent"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    EXPIRED = "expired"


OPEN_STATUSES = frozenset({AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED})


class NotifiedRecipient(BaseModel):
    recipient_id: str
    notified_at: datetime


class Acknowledgment(BaseModel):
    recipient_id: str
    message: str = DEFAULT_ACK_MESSAGE
    acknowledged_at: datetime


class Alert(BaseModel):
    """A threshold breach for one owner, fanned out to their care network."""

    alert_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str = Field(..., description="Owner the alert is about")
    owner_name: str = "User"
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    glucose_value: int
    glucose_unit: str = "mg/dL"
    notified_recipients: List[NotifiedRecipient] = Field(default_factory=list)
    acknowledgments: List[Acknowledgment] = Field(default_factory=list)
    status: AlertStatus = AlertStatus.ACTIVE
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @field_validator("created_at", "expires_at", "resolved_at")
    @classmethod
    def validate_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def default_expiry(self) -> "Alert":
        if self.expires_at is None:
            self.expires_at = self.created_at + ALERT_LIFETIME
        return self

    def is_notified(self, user_id: str) -> bool:
        return any(r.recipient_id == user_id for r in self.notified_recipients)

    def has_acknowledged(self, user_id: str) -> bool:
        return any(a.recipient_id == user_id for a in self.acknowledgments)

    def apply_lazy_expiry(self, now: Optional[datetime] = None) -> bool:
        """
        Reclassify an active alert whose expiry has passed as expired.
        Read-time correction only; returns True when the status changed.
        """
        now = now or utc_now()
        if self.status == AlertStatus.ACTIVE and self.expires_at < now:
            self.status = AlertStatus.EXPIRED
            return True
        return False

    def to_dynamodb_item(self) -> Dict[str, Any]:
        """Convert the model to a DynamoDB item."""
        item = self.model_dump(mode="json")
        item["created_at"] = to_storage_timestamp(self.created_at)
        item["expires_at"] = to_storage_timestamp(self.expires_at)
        item["resolved_at"] = to_storage_timestamp(self.resolved_at) if self.resolved_at else None
        item[NOTIFIED_IDS_ATTR] = [r.recipient_id for r in self.notified_recipients]
        return item

    @classmethod
    def from_dynamodb_item(cls, item: Dict[str, Any]) -> "Alert":
        """Create an Alert from a DynamoDB item."""
        data = dict(item)
        data.pop(NOTIFIED_IDS_ATTR, None)
        data["glucose_value"] = int(data["glucose_value"])
        data["created_at"] = parse_storage_timestamp(data["created_at"])
        data["expires_at"] = parse_storage_timestamp(data["expires_at"])
        if data.get("resolved_at"):
            data["resolved_at"] = parse_storage_timestamp(data["resolved_at"])
        return cls.model_validate(data)
