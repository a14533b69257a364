"""Models for alert thresholds, user profiles and care relationships."""

import uuid
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field

# Thresholds the alert evaluator falls back to when a user has no personal
# settings. They differ from NEW_USER_DEFAULT_* below (high 250 vs 180); both
# are kept as-is pending product clarification.
FALLBACK_LOW_THRESHOLD = 70
FALLBACK_HIGH_THRESHOLD = 250

# Settings a newly created profile starts with; also used by the daily recap.
NEW_USER_DEFAULT_LOW_THRESHOLD = 70
NEW_USER_DEFAULT_HIGH_THRESHOLD = 180


class AlertThresholdSettings(BaseModel):
    """Per-user alert thresholds. Owned by the profile-settings collaborator."""

    low_threshold: Optional[int] = Field(None, description="Low alert threshold in mg/dL")
    high_threshold: Optional[int] = Field(None, description="High alert threshold in mg/dL")
    high_alert_delay_minutes: int = Field(0, ge=0, description="Minutes a high must be sustained before alerting")


class PushCategory(str, Enum):
    """Notification-category preference keys."""

    GLUCOSE_ALERTS = "glucoseAlerts"
    ACKNOWLEDGMENTS = "acknowledgments"
    ALERT_RESOLVED = "alertResolved"


class UserProfile(BaseModel):
    """The slice of a user profile the core reads."""

    user_id: str
    name: str = "User"
    settings: Optional[AlertThresholdSettings] = None
    push_token: Optional[str] = None
    push_preferences: Dict[str, bool] = Field(default_factory=dict)

    def wants_push(self, category: Optional[PushCategory]) -> bool:
        """Categories default to enabled; only an explicit False opts out."""
        if category is None:
            return True
        return self.push_preferences.get(category.value, True) is not False

    @classmethod
    def from_dynamodb_item(cls, item: dict) -> "UserProfile":
        settings = item.get("settings")
        if settings is not None:
            settings = {k: int(v) if v is not None else None for k, v in settings.items()}
        return cls(
            user_id=item["user_id"],
            name=item.get("name") or "User",
            settings=settings,
            push_token=item.get("push_token"),
            push_preferences=item.get("push_preferences") or {},
        )


class RelationshipStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"


class CarePermissions(BaseModel):
    receive_low_alerts: bool = True
    receive_high_alerts: bool = False


class CareRelationship(BaseModel):
    """An owner -> recipient link. Read-only to the core."""

    relationship_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    recipient_id: Optional[str] = Field(None, description="Null until the invite is accepted")
    status: RelationshipStatus = RelationshipStatus.PENDING
    permissions: CarePermissions = Field(default_factory=CarePermissions)

    @property
    def is_reachable(self) -> bool:
        return self.status == RelationshipStatus.ACTIVE and self.recipient_id is not None

    @classmethod
    def from_dynamodb_item(cls, item: dict) -> "CareRelationship":
        return cls.model_validate(item)
