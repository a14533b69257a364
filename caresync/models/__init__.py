"""Pydantic models and schemas."""

from caresync.models.glucose import (
    GlucoseReading,
    ReadingSource,
    TrendDirection,
    TREND_ARROWS,
)
from caresync.models.sessions import (
    NightscoutSession,
    OAuthSession,
    ProviderKind,
    ProviderSession,
    ShareRegion,
    ShareSession,
)
from caresync.models.alerts import (
    Acknowledgment,
    Alert,
    AlertSeverity,
    AlertStatus,
    AlertType,
    NotifiedRecipient,
)
from caresync.models.care import (
    AlertThresholdSettings,
    CarePermissions,
    CareRelationship,
    PushCategory,
    RelationshipStatus,
    UserProfile,
)
from caresync.models.chat import ChatMessage, MessageKind

__all__ = [
    # Readings
    "GlucoseReading",
    "ReadingSource",
    "TrendDirection",
    "TREND_ARROWS",

    # Provider sessions
    "NightscoutSession",
    "OAuthSession",
    "ProviderKind",
    "ProviderSession",
    "ShareRegion",
    "ShareSession",

    # Alerts
    "Acknowledgment",
    "Alert",
    "AlertSeverity",
    "AlertStatus",
    "AlertType",
    "NotifiedRecipient",

    # Care network
    "AlertThresholdSettings",
    "CarePermissions",
    "CareRelationship",
    "PushCategory",
    "RelationshipStatus",
    "UserProfile",

    # Chat
    "ChatMessage",
    "MessageKind",
]
