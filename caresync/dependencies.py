"""Process-wide service wiring, exposed as FastAPI dependencies."""

from functools import lru_cache

from fastapi import HTTPException, Request

from caresync.alerting.checker import AlertChecker
from caresync.alerting.fanout import NotificationFanout
from caresync.data import (
    get_alert_repository,
    get_care_repository,
    get_chat_repository,
    get_glucose_repository,
    get_profile_repository,
    get_session_repository,
)
from caresync.jobs.daily_summary import DailySummaryJob
from caresync.models.sessions import ProviderKind
from caresync.notifications import DefaultNotifier, ExpoPushClient, Notifier
from caresync.providers import DexcomOAuthClient, DexcomShareClient, NightscoutClient
from caresync.ingestion import IngestionService
from caresync.utils.credentials import CredentialCipher


def get_current_user_id(request: Request) -> str:
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id


@lru_cache()
def get_cipher() -> CredentialCipher:
    return CredentialCipher()


@lru_cache()
def get_notifier() -> Notifier:
    return DefaultNotifier(get_chat_repository(), get_profile_repository(), ExpoPushClient())


@lru_cache()
def get_fanout() -> NotificationFanout:
    return NotificationFanout(get_alert_repository(), get_care_repository(), get_profile_repository(), get_notifier())


@lru_cache()
def get_alert_checker() -> AlertChecker:
    return AlertChecker(
        get_glucose_repository(),
        get_alert_repository(),
        get_profile_repository(),
        get_care_repository(),
        get_fanout(),
    )


@lru_cache()
def get_share_client() -> DexcomShareClient:
    return DexcomShareClient(get_session_repository(), get_glucose_repository(), get_cipher())


@lru_cache()
def get_oauth_client() -> DexcomOAuthClient:
    return DexcomOAuthClient(get_session_repository(), get_glucose_repository())


@lru_cache()
def get_nightscout_client() -> NightscoutClient:
    return NightscoutClient(get_session_repository(), get_glucose_repository())


@lru_cache()
def get_ingestion_service() -> IngestionService:
    clients = {
        ProviderKind.SHARE: get_share_client(),
        ProviderKind.OAUTH: get_oauth_client(),
        ProviderKind.NIGHTSCOUT: get_nightscout_client(),
    }
    return IngestionService(clients, get_session_repository(), get_glucose_repository(), get_alert_checker())


@lru_cache()
def get_daily_summary_job() -> DailySummaryJob:
    return DailySummaryJob(get_glucose_repository(), get_profile_repository(), get_care_repository(), get_notifier())
