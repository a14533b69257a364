import threading
from unittest.mock import AsyncMock

import pytest

from caresync.alerting.checker import AlertChecker
from caresync.alerting.fanout import NotificationFanout
from caresync.ingestion import IngestionService
from caresync.models.alerts import AlertType
from caresync.models.glucose import ReadingSource
from caresync.models.sessions import NightscoutSession, ProviderKind, ShareSession
from caresync.providers.base import SyncResult
from caresync.utils.error_handling import AuthError, ErrorSeverity, NetworkError
from conftest import NOW, FakeReadingRepository, make_reading


class FakeProviderClient:
    """Per-user scripted sync outcomes; readings are stored before returning."""

    def __init__(self, kind, readings, outcomes):
        self.kind = kind
        self.readings = readings
        self.outcomes = outcomes
        self.synced_users = []

    async def sync(self, user_id):
        self.synced_users.append(user_id)
        outcome = self.outcomes[user_id]
        if isinstance(outcome, Exception):
            raise outcome
        self.readings.insert_readings(outcome)
        return SyncResult(provider=self.kind, synced=len(outcome))


@pytest.fixture
def checker(readings, alerts, profiles, care, notifier, clock):
    fanout = NotificationFanout(alerts, care, profiles, notifier, clock=clock)
    return AlertChecker(readings, alerts, profiles, care, fanout, clock=clock)


def build_service(sessions, readings, checker, clock, share_outcomes=None, nightscout_outcomes=None):
    clients = {
        ProviderKind.SHARE: FakeProviderClient(ProviderKind.SHARE, readings, share_outcomes or {}),
        ProviderKind.NIGHTSCOUT: FakeProviderClient(ProviderKind.NIGHTSCOUT, readings, nightscout_outcomes or {}),
    }
    for user_id in share_outcomes or {}:
        sessions.save_session(user_id, ProviderKind.SHARE, ShareSession(connected=True))
    for user_id in nightscout_outcomes or {}:
        sessions.save_session(user_id, ProviderKind.NIGHTSCOUT, NightscoutSession(connected=True))
    return IngestionService(clients, sessions, readings, checker, clock=clock)


@pytest.mark.asyncio
async def test_tick_isolates_failing_users(sessions, readings, checker, clock):
    service = build_service(
        sessions,
        readings,
        checker,
        clock,
        share_outcomes={
            "u1": [make_reading(120, user_id="u1", source=ReadingSource.SHARE)],
            "u2": NetworkError("unreachable", "share"),
            "u3": AuthError("bad credentials", "share"),
        },
        nightscout_outcomes={"u2": [make_reading(110, user_id="u2", source=ReadingSource.NIGHTSCOUT)]},
    )

    collector = await service.run_tick()

    assert sorted(service.clients[ProviderKind.SHARE].synced_users) == ["u1", "u2", "u3"]
    assert service.clients[ProviderKind.NIGHTSCOUT].synced_users == ["u2"]
    errors = {e["field"]: e for e in collector.get_errors()}
    assert set(errors) == {"share:u2", "share:u3"}
    assert errors["share:u2"]["severity"] == ErrorSeverity.MEDIUM.value
    assert errors["share:u3"]["severity"] == ErrorSeverity.HIGH.value
    assert len(readings.for_user("u1")) == 1
    assert len(readings.for_user("u2")) == 1


@pytest.mark.asyncio
async def test_disconnected_users_are_not_polled(sessions, readings, checker, clock):
    service = build_service(sessions, readings, checker, clock, share_outcomes={"u1": []})
    sessions.save_session("u1", ProviderKind.SHARE, ShareSession(connected=False))
    collector = await service.run_tick()
    assert service.clients[ProviderKind.SHARE].synced_users == []
    assert not collector.has_errors()


@pytest.mark.asyncio
async def test_listing_failure_is_collected(sessions, readings, checker, clock, monkeypatch):
    service = build_service(sessions, readings, checker, clock, nightscout_outcomes={"u1": []})
    original = sessions.list_connected_users

    def list_connected_users(kind):
        if kind == ProviderKind.SHARE:
            raise RuntimeError("table unavailable")
        return original(kind)

    monkeypatch.setattr(sessions, "list_connected_users", list_connected_users)
    collector = await service.run_tick()
    assert service.clients[ProviderKind.NIGHTSCOUT].synced_users == ["u1"]
    assert collector.get_errors()[0]["severity"] == ErrorSeverity.CRITICAL.value


@pytest.mark.asyncio
async def test_sync_with_new_readings_runs_alert_check(sessions, readings, checker, clock, alerts):
    service = build_service(
        sessions, readings, checker, clock,
        share_outcomes={"owner1": [make_reading(50, source=ReadingSource.SHARE)]},
    )

    result = await service.sync_user("owner1", ProviderKind.SHARE)

    assert result.synced == 1
    assert [a.type for a in alerts.alerts.values()] == [AlertType.URGENT_LOW]


@pytest.mark.asyncio
async def test_sync_without_new_readings_skips_alert_check(sessions, readings, clock):
    checker = AsyncMock()
    service = build_service(sessions, readings, checker, clock, share_outcomes={"owner1": []})
    await service.sync_user("owner1", ProviderKind.SHARE)
    checker.check_glucose_alert.assert_not_called()


@pytest.mark.asyncio
async def test_alert_check_failure_does_not_fail_sync(sessions, readings, clock):
    checker = AsyncMock()
    checker.check_glucose_alert.side_effect = RuntimeError("alerts table down")
    service = build_service(
        sessions, readings, checker, clock,
        share_outcomes={"owner1": [make_reading(50, source=ReadingSource.SHARE)]},
    )
    result = await service.sync_user("owner1", ProviderKind.SHARE)
    assert result.synced == 1


@pytest.mark.asyncio
async def test_on_demand_sync_surfaces_reason(sessions, readings, checker, clock):
    service = build_service(
        sessions, readings, checker, clock, share_outcomes={"owner1": NetworkError("unreachable", "share")}
    )
    with pytest.raises(NetworkError, match="unreachable"):
        await service.sync_user("owner1", ProviderKind.SHARE)


@pytest.mark.asyncio
async def test_manual_reading_runs_alert_check(sessions, readings, checker, clock):
    service = build_service(sessions, readings, checker, clock)

    reading, alert = await service.submit_manual_reading("owner1", 54)

    assert reading.source == ReadingSource.MANUAL
    assert reading.timestamp == NOW
    assert readings.for_user("owner1") == [reading]
    assert alert.type == AlertType.URGENT_LOW
    assert alert.glucose_value == 54


@pytest.mark.asyncio
async def test_manual_in_range_reading(sessions, readings, checker, clock):
    service = build_service(sessions, readings, checker, clock)
    _, alert = await service.submit_manual_reading("owner1", 110)
    assert alert is None


class ThreadRecordingReadings(FakeReadingRepository):
    """Records which thread each storage call ran on."""

    def __init__(self):
        super().__init__()
        self.threads = {}

    def _record(self, name):
        self.threads.setdefault(name, set()).add(threading.get_ident())

    def insert_readings(self, readings):
        self._record("insert_readings")
        return super().insert_readings(readings)

    def find_readings(self, *args, **kwargs):
        self._record("find_readings")
        return super().find_readings(*args, **kwargs)

    def latest_reading(self, *args, **kwargs):
        self._record("latest_reading")
        return super().latest_reading(*args, **kwargs)


@pytest.mark.asyncio
async def test_storage_calls_run_off_the_event_loop(sessions, alerts, profiles, care, notifier, clock):
    readings = ThreadRecordingReadings()
    fanout = NotificationFanout(alerts, care, profiles, notifier, clock=clock)
    checker = AlertChecker(readings, alerts, profiles, care, fanout, clock=clock)
    service = build_service(sessions, readings, checker, clock)
    loop_thread = threading.get_ident()

    _, alert = await service.submit_manual_reading("owner1", 54)
    assert alert.type == AlertType.URGENT_LOW
    await service._check_latest("owner1")

    assert set(readings.threads) == {"insert_readings", "find_readings", "latest_reading"}
    for name, threads in readings.threads.items():
        assert loop_thread not in threads, name
