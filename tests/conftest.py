"""Global test fixtures and configuration."""

import base64
import json
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import pytest

# Make sure the package is importable without installing it
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Set up environment variables for testing (before any caresync import reads settings)
os.environ["SERVICE_ENV"] = "test"
os.environ["AWS_REGION"] = "us-east-1"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["DEXCOM_CLIENT_ID"] = "test-client"
os.environ["DEXCOM_CLIENT_SECRET"] = "test-secret"
os.environ["DEXCOM_REDIRECT_URI"] = "https://app.example.com/callback"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ENCRYPTION_KEYS"] = json.dumps({"v1": base64.urlsafe_b64encode(bytes(range(32))).decode()})
os.environ["CURRENT_KEY_VERSION"] = "v1"

from caresync.models.alerts import Alert, AlertStatus, AlertType
from caresync.models.care import (
    AlertThresholdSettings,
    CarePermissions,
    CareRelationship,
    PushCategory,
    RelationshipStatus,
    UserProfile,
)
from caresync.models.chat import ChatMessage, MessageKind
from caresync.models.glucose import GlucoseReading, ReadingSource
from caresync.models.sessions import SESSION_MODELS, ProviderKind, ProviderSession, serialize_session_value
from caresync.notifications.base import Notifier

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock passed wherever a component accepts `clock=`."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeReadingRepository:
    def __init__(self):
        self.readings: List[GlucoseReading] = []

    def insert_readings(self, readings: List[GlucoseReading]) -> List[GlucoseReading]:
        keys = {(r.user_id, r.timestamp): i for i, r in enumerate(self.readings)}
        for reading in readings:
            key = (reading.user_id, reading.timestamp)
            if key in keys:
                self.readings[keys[key]] = reading
            else:
                keys[key] = len(self.readings)
                self.readings.append(reading)
        return list(readings)

    def find_readings(self, user_id, start_time, end_time, source: Optional[ReadingSource] = None):
        found = [
            r for r in self.readings
            if r.user_id == user_id and start_time <= r.timestamp <= end_time and (source is None or r.source == source)
        ]
        return sorted(found, key=lambda r: r.timestamp)

    def latest_reading(self, user_id, source: Optional[ReadingSource] = None):
        found = [r for r in self.readings if r.user_id == user_id and (source is None or r.source == source)]
        return max(found, key=lambda r: r.timestamp) if found else None

    def for_user(self, user_id: str) -> List[GlucoseReading]:
        return sorted((r for r in self.readings if r.user_id == user_id), key=lambda r: r.timestamp)


class FakeSessionRepository:
    """Stores flattened items, the way the DynamoDB table does."""

    def __init__(self):
        self.items: Dict[tuple, Dict[str, Any]] = {}
        self.updates: List[Dict[str, Any]] = []

    def get_session(self, user_id, kind: ProviderKind) -> Optional[ProviderSession]:
        item = self.items.get((user_id, kind))
        return SESSION_MODELS[kind].from_dynamodb_item(item) if item else None

    def save_session(self, user_id, kind: ProviderKind, session: ProviderSession) -> ProviderSession:
        self.items[(user_id, kind)] = session.to_dynamodb_item()
        return session

    def update_session_state(self, user_id, kind: ProviderKind, patch: Dict[str, Any]) -> None:
        self.updates.append(dict(patch))
        item = self.items.setdefault((user_id, kind), {})
        item.update({k: serialize_session_value(v) for k, v in patch.items()})

    def iter_sessions(self, kind: ProviderKind):
        for (user_id, k), item in list(self.items.items()):
            if k == kind:
                yield user_id, SESSION_MODELS[kind].from_dynamodb_item(item)

    def list_connected_users(self, kind: ProviderKind) -> List[str]:
        return [user_id for (user_id, k), item in self.items.items() if k == kind and item.get("connected")]


class FakeAlertRepository:
    def __init__(self):
        self.alerts: Dict[str, Alert] = {}
        self.saves = 0

    def save_alert(self, alert: Alert) -> Alert:
        self.saves += 1
        self.alerts[alert.alert_id] = alert.model_copy(deep=True)
        return alert

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        alert = self.alerts.get(alert_id)
        return alert.model_copy(deep=True) if alert else None

    def find_alert(self, user_id, alert_type: AlertType, since, statuses: Iterable[AlertStatus]):
        statuses = set(statuses)
        matches = [
            a for a in self.alerts.values()
            if a.user_id == user_id and a.type == alert_type and a.created_at >= since and a.status in statuses
        ]
        if not matches:
            return None
        return max(matches, key=lambda a: a.created_at).model_copy(deep=True)

    def _newest_first(self, match, limit, statuses) -> List[Alert]:
        statuses = set(statuses) if statuses is not None else None
        found = [a for a in self.alerts.values() if match(a) and (statuses is None or a.status in statuses)]
        found.sort(key=lambda a: a.created_at, reverse=True)
        return [a.model_copy(deep=True) for a in found[:limit]]

    def list_alerts_for_owner(self, user_id, limit: Optional[int] = 50, statuses=None) -> List[Alert]:
        return self._newest_first(lambda a: a.user_id == user_id, limit, statuses)

    def list_alerts_for_recipient(self, recipient_id, limit: Optional[int] = 50, statuses=None) -> List[Alert]:
        return self._newest_first(lambda a: a.is_notified(recipient_id), limit, statuses)


class FakeProfileRepository:
    def __init__(self, profiles: Iterable[UserProfile] = ()):
        self.profiles = {p.user_id: p for p in profiles}

    def add(self, profile: UserProfile) -> UserProfile:
        self.profiles[profile.user_id] = profile
        return profile

    def get_profile(self, user_id):
        return self.profiles.get(user_id)

    def get_profiles(self, user_ids):
        return {uid: self.profiles[uid] for uid in dict.fromkeys(user_ids) if uid in self.profiles}


class FakeCareRepository:
    def __init__(self, relationships: Iterable[CareRelationship] = ()):
        self.relationships = list(relationships)

    def add(self, relationship: CareRelationship) -> CareRelationship:
        self.relationships.append(relationship)
        return relationship

    def list_relationships(self, owner_id, status: Optional[RelationshipStatus] = None):
        return [r for r in self.relationships if r.owner_id == owner_id and (status is None or r.status == status)]

    def list_active_relationships(self):
        return [r for r in self.relationships if r.status == RelationshipStatus.ACTIVE]


class RecordingNotifier(Notifier):
    """Records chat entries and pushes instead of delivering them."""

    def __init__(self, profiles: Optional[FakeProfileRepository] = None, fail_push: bool = False):
        self.profiles = profiles
        self.fail_push = fail_push
        self.messages: List[ChatMessage] = []
        self.pushes: List[Dict[str, Any]] = []

    async def post_chat_message(self, conversation_id, text, kind: MessageKind, alert_id=None, sender_id=None):
        message = ChatMessage(conversation_id=conversation_id, text=text, kind=kind, alert_id=alert_id, sender_id=sender_id)
        self.messages.append(message)
        return message

    async def send_filtered_push(self, recipient_ids, title, body, data, category: Optional[PushCategory] = None):
        if self.fail_push:
            raise RuntimeError("push service down")
        recipient_ids = list(recipient_ids)
        self.pushes.append(
            {"recipients": recipient_ids, "title": title, "body": body, "data": data, "category": category}
        )
        return len(recipient_ids)


def make_reading(
    value: int,
    minutes_ago: float = 0,
    user_id: str = "owner1",
    source: ReadingSource = ReadingSource.MANUAL,
    now: datetime = NOW
) -> GlucoseReading:
    return GlucoseReading(user_id=user_id, value=value, source=source, timestamp=now - timedelta(minutes=minutes_ago))


def make_relationship(
    recipient_id: str,
    owner_id: str = "owner1",
    low: bool = True,
    high: bool = False,
    status: RelationshipStatus = RelationshipStatus.ACTIVE
) -> CareRelationship:
    return CareRelationship(
        relationship_id=f"rel-{owner_id}-{recipient_id}",
        owner_id=owner_id,
        recipient_id=recipient_id,
        status=status,
        permissions=CarePermissions(receive_low_alerts=low, receive_high_alerts=high),
    )


def make_profile(user_id: str, name: str, low=None, high=None, delay: int = 0, **kwargs) -> UserProfile:
    return UserProfile(
        user_id=user_id,
        name=name,
        settings=AlertThresholdSettings(low_threshold=low, high_threshold=high, high_alert_delay_minutes=delay),
        **kwargs,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def readings():
    return FakeReadingRepository()


@pytest.fixture
def sessions():
    return FakeSessionRepository()


@pytest.fixture
def alerts():
    return FakeAlertRepository()


@pytest.fixture
def profiles():
    return FakeProfileRepository([make_profile("owner1", "Alex")])


@pytest.fixture
def care():
    return FakeCareRepository()


@pytest.fixture
def notifier(profiles):
    return RecordingNotifier(profiles)
