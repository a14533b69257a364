"""Repository tests against moto's in-memory DynamoDB."""

from datetime import timedelta

import pytest
from moto import mock_aws
from pydantic import SecretStr

import caresync.data.dynamodb as dynamodb_module
from caresync.data.alert_repository import AlertRepository
from caresync.data.care_repository import CareRepository, ProfileRepository
from caresync.data.chat_repository import ChatMessageRepository
from caresync.data.dynamodb import DynamoDBClient
from caresync.data.glucose_repository import GlucoseReadingRepository
from caresync.data.session_repository import SessionRepository
from caresync.models.alerts import Acknowledgment, Alert, AlertSeverity, AlertStatus, AlertType, NotifiedRecipient
from caresync.models.care import PushCategory, RelationshipStatus
from caresync.models.chat import ChatMessage, MessageKind
from caresync.models.glucose import ReadingSource
from caresync.models.sessions import OAuthSession, ProviderKind, ShareSession
from caresync.utils.config import get_settings
from conftest import NOW, make_reading

settings = get_settings()


@pytest.fixture
def dynamodb(monkeypatch):
    with mock_aws():
        client = DynamoDBClient()
        client.create_all_tables(wait=False)
        monkeypatch.setattr(dynamodb_module, "_dynamodb_client", client)
        yield client


def make_alert(minutes_ago=0, alert_type=AlertType.LOW, status=AlertStatus.ACTIVE, user_id="owner1"):
    return Alert(
        user_id=user_id,
        owner_name="Alex",
        type=alert_type,
        severity=AlertSeverity.URGENT,
        title="📉 Low Reading — Alex",
        message="Alex's glucose is 62 mg/dL (below their range). You may want to check in.",
        glucose_value=62,
        status=status,
        created_at=NOW - timedelta(minutes=minutes_ago),
    )


def test_create_all_tables_is_idempotent(dynamodb):
    names = set(dynamodb.client.list_tables()["TableNames"])
    assert {
        settings.dynamodb_readings_table,
        settings.dynamodb_alerts_table,
        settings.dynamodb_sessions_table,
        settings.dynamodb_care_table,
        settings.dynamodb_profiles_table,
        settings.dynamodb_chat_table,
    } <= names
    result = dynamodb.create_all_tables(wait=False)
    assert "Table" in result[settings.dynamodb_readings_table]


def test_glucose_readings_round_trip(dynamodb):
    repository = GlucoseReadingRepository()
    batch = [make_reading(100 + i, minutes_ago=5 * i) for i in range(30)]
    batch.append(make_reading(180, minutes_ago=2, source=ReadingSource.NIGHTSCOUT))
    batch.append(make_reading(90, user_id="owner2"))

    assert len(repository.insert_readings(batch)) == 32

    found = repository.find_readings("owner1", NOW - timedelta(minutes=20), NOW)
    assert [r.value for r in found] == [104, 103, 102, 101, 180, 100]
    assert found[0].timestamp == NOW - timedelta(minutes=20)
    only_ns = repository.find_readings("owner1", NOW - timedelta(hours=1), NOW, source=ReadingSource.NIGHTSCOUT)
    assert [r.value for r in only_ns] == [180]

    assert repository.latest_reading("owner1").value == 100
    assert repository.latest_reading("owner1", source=ReadingSource.NIGHTSCOUT).value == 180
    assert repository.latest_reading("nobody") is None


def test_rewriting_a_reading_does_not_duplicate(dynamodb):
    repository = GlucoseReadingRepository()
    repository.insert_readings([make_reading(100)])
    repository.insert_readings([make_reading(100)])
    assert len(repository.find_readings("owner1", NOW - timedelta(minutes=1), NOW)) == 1


def test_alert_round_trip(dynamodb):
    repository = AlertRepository()
    alert = make_alert()
    alert.notified_recipients.append(NotifiedRecipient(recipient_id="sam", notified_at=NOW))
    alert.acknowledgments.append(Acknowledgment(recipient_id="sam", message="On it", acknowledged_at=NOW))
    repository.save_alert(alert)

    loaded = repository.get_alert(alert.alert_id)
    assert loaded == alert
    assert loaded.expires_at == NOW + timedelta(hours=2)
    assert repository.get_alert("missing") is None


def test_find_alert_filters_type_status_and_window(dynamodb):
    repository = AlertRepository()
    old = make_alert(minutes_ago=45)
    recent = make_alert(minutes_ago=10)
    newest = make_alert(minutes_ago=5)
    resolved = make_alert(minutes_ago=1, status=AlertStatus.RESOLVED)
    other_type = make_alert(minutes_ago=2, alert_type=AlertType.HIGH)
    other_owner = make_alert(minutes_ago=1, user_id="owner2")
    for alert in (old, recent, newest, resolved, other_type, other_owner):
        repository.save_alert(alert)

    open_statuses = [AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED]
    found = repository.find_alert("owner1", AlertType.LOW, NOW - timedelta(minutes=30), open_statuses)
    assert found.alert_id == newest.alert_id
    assert repository.find_alert("owner1", AlertType.URGENT_LOW, NOW - timedelta(minutes=30), open_statuses) is None

    listed = repository.list_alerts_for_owner("owner1", limit=3)
    assert [a.alert_id for a in listed] == [resolved.alert_id, other_type.alert_id, newest.alert_id]


def test_list_alerts_for_recipient_and_status_filter(dynamodb):
    repository = AlertRepository()
    notified = make_alert(minutes_ago=10)
    notified.notified_recipients.append(NotifiedRecipient(recipient_id="sam", notified_at=NOW))
    newer = make_alert(minutes_ago=2, user_id="owner2", status=AlertStatus.ACKNOWLEDGED)
    newer.notified_recipients.append(NotifiedRecipient(recipient_id="sam", notified_at=NOW))
    newer.notified_recipients.append(NotifiedRecipient(recipient_id="kim", notified_at=NOW))
    not_notified = make_alert(minutes_ago=1)
    # Substring of a recipient id must not match
    near_miss = make_alert(minutes_ago=1)
    near_miss.notified_recipients.append(NotifiedRecipient(recipient_id="samantha", notified_at=NOW))
    for alert in (notified, newer, not_notified, near_miss):
        repository.save_alert(alert)

    found = repository.list_alerts_for_recipient("sam")
    assert [a.alert_id for a in found] == [newer.alert_id, notified.alert_id]
    assert found[0] == newer

    active = repository.list_alerts_for_recipient("sam", statuses=[AlertStatus.ACTIVE])
    assert [a.alert_id for a in active] == [notified.alert_id]
    assert [a.alert_id for a in repository.list_alerts_for_recipient("sam", limit=1)] == [newer.alert_id]
    assert repository.list_alerts_for_recipient("nobody") == []

    owned = repository.list_alerts_for_owner("owner1", statuses=[AlertStatus.ACTIVE])
    assert {a.alert_id for a in owned} == {notified.alert_id, not_notified.alert_id, near_miss.alert_id}


def test_session_state(dynamodb):
    repository = SessionRepository()
    repository.save_session("owner1", ProviderKind.SHARE, ShareSession(
        connected=True, username="alex", encrypted_credential="v1:abc", account_id="acct", session_id="sess"
    ))
    repository.update_session_state("owner1", ProviderKind.SHARE, {"session_id": None, "last_sync": NOW})

    session = repository.get_session("owner1", ProviderKind.SHARE)
    assert isinstance(session, ShareSession)
    assert session.session_id is None
    assert session.account_id == "acct"
    assert session.last_sync == NOW
    assert repository.get_session("owner1", ProviderKind.OAUTH) is None


def test_oauth_tokens_are_stored_in_clear_for_the_client(dynamodb):
    repository = SessionRepository()
    repository.save_session("owner1", ProviderKind.OAUTH, OAuthSession(
        connected=True, access_token=SecretStr("access"), token_expiry=NOW
    ))
    repository.update_session_state("owner1", ProviderKind.OAUTH, {"refresh_token": SecretStr("refresh")})

    session = repository.get_session("owner1", ProviderKind.OAUTH)
    assert session.access_token.get_secret_value() == "access"
    assert session.refresh_token.get_secret_value() == "refresh"
    assert session.token_expiry == NOW


def test_connected_users_and_session_scan(dynamodb):
    repository = SessionRepository()
    repository.save_session("u1", ProviderKind.SHARE, ShareSession(connected=True))
    repository.save_session("u2", ProviderKind.SHARE, ShareSession(connected=False))
    repository.save_session("u3", ProviderKind.OAUTH, OAuthSession(connected=True))

    assert repository.list_connected_users(ProviderKind.SHARE) == ["u1"]
    assert sorted(user_id for user_id, _ in repository.iter_sessions(ProviderKind.SHARE)) == ["u1", "u2"]


def test_profiles_and_relationships(dynamodb):
    dynamodb.put_item(settings.dynamodb_profiles_table, {
        "user_id": "owner1",
        "name": "Alex",
        "settings": {"low_threshold": 75, "high_threshold": 190, "high_alert_delay_minutes": 15},
        "push_token": "ExpoPushToken[a]",
        "push_preferences": {"acknowledgments": False},
    })
    dynamodb.put_item(settings.dynamodb_profiles_table, {"user_id": "sam"})
    for relationship_id, recipient_id, status in (
        ("r1", "sam", "active"), ("r2", "kim", "paused"), ("r3", None, "pending"),
    ):
        dynamodb.put_item(settings.dynamodb_care_table, {
            "relationship_id": relationship_id,
            "owner_id": "owner1",
            "recipient_id": recipient_id,
            "status": status,
            "permissions": {"receive_low_alerts": True, "receive_high_alerts": False},
        })

    profiles = ProfileRepository()
    owner = profiles.get_profile("owner1")
    assert owner.settings.low_threshold == 75
    assert owner.settings.high_alert_delay_minutes == 15
    assert owner.wants_push(PushCategory.GLUCOSE_ALERTS)
    assert not owner.wants_push(PushCategory.ACKNOWLEDGMENTS)
    assert profiles.get_profile("sam").name == "User"
    assert set(profiles.get_profiles(["owner1", "sam", "ghost"])) == {"owner1", "sam"}

    care = CareRepository()
    assert len(care.list_relationships("owner1")) == 3
    active = care.list_relationships("owner1", RelationshipStatus.ACTIVE)
    assert [r.recipient_id for r in active] == ["sam"]
    assert active[0].is_reachable
    assert [r.relationship_id for r in care.list_active_relationships()] == ["r1"]


def test_chat_messages(dynamodb):
    repository = ChatMessageRepository()
    message = ChatMessage(conversation_id="r1", text="hello", kind=MessageKind.SYSTEM, created_at=NOW)
    repository.add_message(message)
    items = list(dynamodb.scan_items(settings.dynamodb_chat_table))
    assert len(items) == 1
    assert items[0]["sort_key"].startswith("2024-06-01T12:00:00.000000Z#")
    assert items[0]["kind"] == "system"
