"""
Dexcom Share client: the real-time follower feed.

Flow: username + password -> account id -> session id -> latest glucose values.
Account and session ids are cached on the owner's session record; the
password is kept AEAD-encrypted so the client can re-authenticate whenever
the provider drops the session.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx

from caresync.data.glucose_repository import GlucoseReadingRepository
from caresync.data.session_repository import SessionRepository
from caresync.dedup import Deduplicator
from caresync.metrics import provider_reauthentications_total, readings_ingested_total
from caresync.models.glucose import GlucoseReading, ReadingSource
from caresync.models.sessions import ProviderKind, ShareRegion, ShareSession
from caresync.providers.base import ProviderHttpClient, SyncResult
from caresync.providers.retry import SHARE_EMPTY_RESULT_POLICY, SHARE_SESSION_EXPIRY_POLICY, RetryPolicy
from caresync.utils.config import get_settings
from caresync.utils.credentials import CredentialCipher
from caresync.utils.error_handling import (
    AuthError,
    NetworkError,
    ProviderNotConnectedError,
    SessionExpiredError,
    ValidationError,
)
from caresync.utils.normalization import map_direction, normalize_glucose_value, parse_dotnet_date
from caresync.utils.pipeline import ReadingPipeline
from caresync.utils.timestamps import Clock

logger = logging.getLogger(__name__)

SHARE_SERVERS = {
    ShareRegion.US: "https://share2.dexcom.com/ShareWebServices/Services",
    ShareRegion.OUS: "https://shareous1.dexcom.com/ShareWebServices/Services",
}

ACCOUNT_PATH = "/General/AuthenticatePublisherAccount"
SESSION_PATH = "/General/LoginPublisherAccountById"
READINGS_PATH = "/Publisher/ReadPublisherLatestGlucoseValues"

# The provider intermittently answers short windows with nothing, so every
# sync asks for the whole trailing day (288 = 24h of 5-minute readings).
SYNC_WINDOW_MINUTES = 1440
SYNC_MAX_COUNT = 288

SESSION_INVALID_CODES = {"SessionIdNotFound", "SessionNotValid"}
CREDENTIAL_INVALID_CODES = {
    "AccountPasswordInvalid",
    "SSO_AuthenticateAccountNotFound",
    "SSO_AuthenticatePasswordInvalid",
    "SSO_AuthenticateMaxAttemptsExceeed",
}
NULL_ID = "00000000-0000-0000-0000-000000000000"
MIN_ID_LENGTH = 10

JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


def parse_share_record(record: Dict[str, Any], user_id: str) -> GlucoseReading:
    """Normalize one raw Share record. Raises ValidationError for unusable records."""
    value = normalize_glucose_value(record.get("Value"))
    if value is None:
        raise ValidationError("missing or non-numeric value", field="Value")
    timestamp = parse_dotnet_date(record.get("WT"))
    if timestamp is None:
        raise ValidationError("unparseable timestamp", field="WT")
    trend, arrow = map_direction(record.get("Trend"))
    return GlucoseReading(
        user_id=user_id,
        value=value,
        trend=trend,
        trend_arrow=arrow,
        source=ReadingSource.SHARE,
        timestamp=timestamp,
    )


def _parse_identifier(body: Any, what: str) -> str:
    identifier = str(body or "").replace('"', "").strip()
    if len(identifier) < MIN_ID_LENGTH or identifier == NULL_ID:
        raise AuthError(f"Invalid {what} returned from Dexcom Share", ProviderKind.SHARE.value)
    return identifier


class DexcomShareClient(ProviderHttpClient):
    kind = ProviderKind.SHARE

    def __init__(
        self,
        sessions: SessionRepository,
        readings: GlucoseReadingRepository,
        cipher: CredentialCipher,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None,
        expiry_policy: RetryPolicy = SHARE_SESSION_EXPIRY_POLICY,
        empty_result_policy: RetryPolicy = SHARE_EMPTY_RESULT_POLICY
    ):
        super().__init__(http_client, clock)
        self.sessions = sessions
        self.readings = readings
        self.cipher = cipher
        self.expiry_policy = expiry_policy
        self.empty_result_policy = empty_result_policy
        self.deduplicator = Deduplicator(round_to_second=True)
        self.application_id = get_settings().dexcom_share_application_id

    async def _post(self, region: ShareRegion, path: str, payload: Dict[str, Any], operation: str) -> Any:
        response = await self._request(
            "POST", f"{SHARE_SERVERS[region]}{path}", operation, json=payload, headers=JSON_HEADERS
        )
        if response.status_code >= 400:
            code = self.json_body(response).get("Code")
            if code in SESSION_INVALID_CODES:
                raise SessionExpiredError(f"Session rejected ({code})", self.kind.value)
            if code in CREDENTIAL_INVALID_CODES:
                raise AuthError(f"Credentials rejected ({code})", self.kind.value)
            raise self._unexpected_status(response, operation)
        try:
            return response.json()
        except ValueError:
            return response.text

    async def obtain_account_id(self, username: str, password: str, region: ShareRegion = ShareRegion.US) -> str:
        body = await self._post(
            region,
            ACCOUNT_PATH,
            {"accountName": username, "password": password, "applicationId": self.application_id},
            "authenticate_account",
        )
        return _parse_identifier(body, "account id")

    async def obtain_session_id(self, account_id: str, password: str, region: ShareRegion = ShareRegion.US) -> str:
        body = await self._post(
            region,
            SESSION_PATH,
            {"accountId": account_id, "password": password, "applicationId": self.application_id},
            "login_session",
        )
        return _parse_identifier(body, "session id")

    async def fetch_readings(
        self,
        session_id: str,
        region: ShareRegion = ShareRegion.US,
        window_minutes: int = SYNC_WINDOW_MINUTES,
        max_count: int = SYNC_MAX_COUNT
    ) -> List[Dict[str, Any]]:
        body = await self._post(
            region,
            READINGS_PATH,
            {"sessionId": session_id, "minutes": window_minutes, "maxCount": max_count},
            "read_glucose",
        )
        if body in (None, ""):
            return []
        if not isinstance(body, list):
            raise NetworkError("Unexpected glucose payload from Dexcom Share", self.kind.value)
        return body

    async def connect(self, user_id: str, username: str, password: str, region: ShareRegion = ShareRegion.US) -> ShareSession:
        """
        Verify credentials end to end, then persist an encrypted session.

        Raises:
            AuthError: The provider rejected the credentials
            NetworkError: The provider could not be reached
        """
        account_id = await self.obtain_account_id(username, password, region)
        session_id = await self.obtain_session_id(account_id, password, region)
        session = ShareSession(
            connected=True,
            username=username,
            encrypted_credential=self.cipher.encrypt(password, user_id),
            account_id=account_id,
            session_id=session_id,
            region=region,
        )
        self.sessions.save_session(user_id, self.kind, session)
        logger.info("Dexcom Share connected", extra={"log_type": "provider_connected", "provider": self.kind.value, "user_id": user_id})
        return session

    def disconnect(self, user_id: str) -> None:
        self.sessions.save_session(user_id, self.kind, ShareSession())
        logger.info("Dexcom Share disconnected", extra={"log_type": "provider_disconnected", "provider": self.kind.value, "user_id": user_id})

    async def _new_session_id(self, user_id: str, account_id: str, password: str, region: ShareRegion) -> str:
        session_id = await self.obtain_session_id(account_id, password, region)
        # Persist right away so a later failure does not repeat the login
        self.sessions.update_session_state(user_id, self.kind, {"session_id": session_id})
        return session_id

    async def sync(self, user_id: str) -> SyncResult:
        session = await asyncio.to_thread(self.sessions.get_session, user_id, self.kind)
        if not session or not session.connected or not session.username or not session.encrypted_credential:
            raise ProviderNotConnectedError("Dexcom Share is not connected", self.kind.value)

        password = self.cipher.decrypt(session.encrypted_credential, user_id)
        region = session.region

        account_id = session.account_id
        if not account_id:
            account_id = await self.obtain_account_id(session.username, password, region)
            self.sessions.update_session_state(user_id, self.kind, {"account_id": account_id})

        current = {"session_id": session.session_id}
        if not current["session_id"]:
            current["session_id"] = await self._new_session_id(user_id, account_id, password, region)

        async def fetch() -> List[Dict[str, Any]]:
            return await self.fetch_readings(current["session_id"], region)

        async def reauthenticate(attempt: int, error: Optional[BaseException]) -> None:
            reason = "session_expired" if error is not None else "empty_result"
            provider_reauthentications_total.labels(provider=self.kind.value, reason=reason).inc()
            logger.info(
                "Re-authenticating Dexcom Share session",
                extra={"log_type": "reauthentication", "provider": self.kind.value, "user_id": user_id, "reason": reason},
            )
            self.sessions.update_session_state(user_id, self.kind, {"session_id": None})
            current["session_id"] = await self._new_session_id(user_id, account_id, password, region)

        # Only the first fetch recovers from a rejected session; the refetch
        # forced by an empty result is a plain fetch.
        first_fetch = [lambda: self.expiry_policy.execute(fetch, on_retry=reauthenticate)]

        async def fetch_checked() -> List[Dict[str, Any]]:
            operation = first_fetch.pop() if first_fetch else fetch
            return await operation()

        raw_records = await self.empty_result_policy.execute(fetch_checked, on_retry=reauthenticate)

        now = self.clock()
        candidates, errors = ReadingPipeline(
            lambda r: parse_share_record(r, user_id), self.kind.value
        ).process(raw_records)
        inserted: List[GlucoseReading] = []
        if candidates:
            existing = await asyncio.to_thread(
                self.readings.find_readings, user_id, now - timedelta(hours=24), now, source=ReadingSource.SHARE
            )
            inserted = await asyncio.to_thread(self.readings.insert_readings, self.deduplicator.filter_new(candidates, existing))
            readings_ingested_total.labels(source=ReadingSource.SHARE.value).inc(len(inserted))

        await asyncio.to_thread(self.sessions.update_session_state, user_id, self.kind, {"last_sync": now})
        return SyncResult(provider=self.kind, synced=len(inserted), skipped=len(errors.get_errors()))
