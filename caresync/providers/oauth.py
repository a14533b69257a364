"""
Dexcom OAuth client (Individual Access API).

Authorization-code connect, refresh-token renewal and EGV polling. EGVs are
published with a lag behind the real-time feed, so each sync re-reads the
three hours before the previous watermark.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
from pydantic import SecretStr

from caresync.data.glucose_repository import GlucoseReadingRepository
from caresync.data.session_repository import SessionRepository
from caresync.dedup import Deduplicator
from caresync.metrics import provider_reauthentications_total, readings_ingested_total
from caresync.models.glucose import GlucoseReading, ReadingSource
from caresync.models.sessions import OAuthSession, ProviderKind
from caresync.providers.base import ProviderHttpClient, SyncResult
from caresync.utils.config import get_settings
from caresync.utils.error_handling import AuthError, NetworkError, ProviderError, ProviderNotConnectedError, ValidationError
from caresync.utils.normalization import map_direction, normalize_glucose_value, parse_iso_timestamp
from caresync.utils.pipeline import ReadingPipeline
from caresync.utils.timestamps import Clock

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v3/oauth2/token"
LOGIN_PATH = "/v3/oauth2/login"
EGVS_PATH = "/v3/users/self/egvs"

REFRESH_BUFFER = timedelta(minutes=5)
PUBLICATION_LAG = timedelta(hours=3)
MAX_LOOKBACK = timedelta(hours=24)

# The EGV endpoint rejects zone suffixes and fractional seconds
EGV_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"

FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


def format_egv_time(value: datetime) -> str:
    return value.strftime(EGV_TIME_FORMAT)


def compute_sync_window(last_sync: Optional[datetime], now: datetime) -> Tuple[datetime, datetime]:
    """
    EGV query window for one sync.

    With a watermark: start = max(last_sync - 3h, now - 24h). Without one the
    first sync looks back 3 hours. The window always ends at `now`.
    """
    if last_sync is None:
        return now - PUBLICATION_LAG, now
    return max(last_sync - PUBLICATION_LAG, now - MAX_LOOKBACK), now


def parse_egv_record(record: Dict[str, Any], user_id: str) -> GlucoseReading:
    value = normalize_glucose_value(record.get("value"))
    if value is None:
        raise ValidationError("missing or non-numeric value", field="value")
    timestamp = parse_iso_timestamp(record.get("systemTime"))
    if timestamp is None:
        raise ValidationError("unparseable timestamp", field="systemTime")
    trend, arrow = map_direction(record.get("trend"))
    return GlucoseReading(
        user_id=user_id,
        value=value,
        trend=trend,
        trend_arrow=arrow,
        source=ReadingSource.OAUTH,
        timestamp=timestamp,
    )


class DexcomOAuthClient(ProviderHttpClient):
    kind = ProviderKind.OAUTH

    def __init__(
        self,
        sessions: SessionRepository,
        readings: GlucoseReadingRepository,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None
    ):
        super().__init__(http_client, clock)
        self.sessions = sessions
        self.readings = readings
        self.deduplicator = Deduplicator(round_to_second=False)
        settings = get_settings()
        self.base_url = settings.dexcom_api_base_url.rstrip("/")
        self.client_id = settings.dexcom_client_id
        self.client_secret = (
            settings.dexcom_client_secret.get_secret_value() if settings.dexcom_client_secret else None
        )
        self.redirect_uri = settings.dexcom_redirect_uri

    def authorization_url(self, state: Optional[str] = None) -> str:
        """URL the owner is sent to for login and consent."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "offline_access",
        }
        if state:
            params["state"] = state
        return f"{self.base_url}{LOGIN_PATH}?{urlencode(params)}"

    async def _token_request(self, form: Dict[str, Any], operation: str) -> Dict[str, Any]:
        payload = {"client_id": self.client_id, "client_secret": self.client_secret, **form}
        response = await self._request(
            "POST", f"{self.base_url}{TOKEN_PATH}", operation, data=payload, headers=FORM_HEADERS
        )
        if response.status_code in (400, 401):
            raise AuthError(f"Token request rejected (HTTP {response.status_code})", self.kind.value)
        if response.status_code >= 400:
            raise self._unexpected_status(response, operation)
        token_data = self.json_body(response)
        if not token_data.get("access_token"):
            raise AuthError("Token response carried no access token", self.kind.value)
        return token_data

    def _token_patch(self, token_data: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        expires_in = token_data.get("expires_in")
        return {
            "access_token": SecretStr(token_data["access_token"]),
            "refresh_token": SecretStr(token_data["refresh_token"]) if token_data.get("refresh_token") else None,
            "token_expiry": now + timedelta(seconds=int(expires_in)) if expires_in else None,
        }

    async def exchange_code(self, user_id: str, code: str) -> OAuthSession:
        """Trade an authorization code for tokens and mark the owner connected."""
        token_data = await self._token_request(
            {"code": code, "grant_type": "authorization_code", "redirect_uri": self.redirect_uri},
            "exchange_code",
        )
        session = OAuthSession(connected=True, **self._token_patch(token_data, self.clock()))
        self.sessions.save_session(user_id, self.kind, session)
        logger.info("Dexcom OAuth connected", extra={"log_type": "provider_connected", "provider": self.kind.value, "user_id": user_id})
        return session

    def disconnect(self, user_id: str) -> None:
        self.sessions.save_session(user_id, self.kind, OAuthSession())
        logger.info("Dexcom OAuth disconnected", extra={"log_type": "provider_disconnected", "provider": self.kind.value, "user_id": user_id})

    def _deauthorize(self, user_id: str) -> None:
        self.sessions.update_session_state(
            user_id,
            self.kind,
            {"access_token": None, "refresh_token": None, "token_expiry": None, "connected": False},
        )

    async def _ensure_token(self, user_id: str, session: OAuthSession) -> Optional[OAuthSession]:
        """
        Return a session holding a usable access token, refreshing it when it is
        within the buffer of expiry. A failed refresh deauthorizes the owner and
        returns None; the owner has to reconnect.
        """
        now = self.clock()
        if session.token_expiry is None or now < session.token_expiry - REFRESH_BUFFER:
            return session
        if session.refresh_token is None:
            self._deauthorize(user_id)
            return None

        provider_reauthentications_total.labels(provider=self.kind.value, reason="token_refresh").inc()
        try:
            token_data = await self._token_request(
                {"refresh_token": session.refresh_token.get_secret_value(), "grant_type": "refresh_token"},
                "refresh_token",
            )
        except ProviderError as e:
            logger.warning(
                "Dexcom token refresh failed; deauthorizing",
                extra={"log_type": "token_refresh_error", "provider": self.kind.value, "user_id": user_id, "error": str(e)},
            )
            self._deauthorize(user_id)
            return None

        patch = self._token_patch(token_data, now)
        if patch["refresh_token"] is None:
            patch["refresh_token"] = session.refresh_token
        self.sessions.update_session_state(user_id, self.kind, patch)
        return session.model_copy(update=patch)

    async def refresh_if_needed(self, user_id: str) -> bool:
        """True when the owner holds a usable access token afterwards."""
        session = self.sessions.get_session(user_id, self.kind)
        if not session or not session.connected:
            return False
        return await self._ensure_token(user_id, session) is not None

    async def sync(self, user_id: str) -> SyncResult:
        session = await asyncio.to_thread(self.sessions.get_session, user_id, self.kind)
        if not session or not session.connected or session.access_token is None:
            raise ProviderNotConnectedError("Dexcom OAuth is not connected", self.kind.value)

        session = await self._ensure_token(user_id, session)
        if session is None:
            raise AuthError("Dexcom authorization expired; reconnect required", self.kind.value)

        start, end = compute_sync_window(session.last_sync, self.clock())
        response = await self._request(
            "GET",
            f"{self.base_url}{EGVS_PATH}",
            "read_egvs",
            params={"startDate": format_egv_time(start), "endDate": format_egv_time(end)},
            headers={"Authorization": f"Bearer {session.access_token.get_secret_value()}"},
        )
        if response.status_code == 401:
            raise AuthError("Access token rejected", self.kind.value)
        if response.status_code >= 400:
            raise self._unexpected_status(response, "read_egvs")
        records = self.json_body(response).get("records")
        if records is None:
            raise NetworkError("EGV response carried no records", self.kind.value)

        candidates, errors = ReadingPipeline(lambda r: parse_egv_record(r, user_id), self.kind.value).process(records)
        inserted = []
        if candidates:
            existing = await asyncio.to_thread(self.readings.find_readings, user_id, start, end, source=ReadingSource.OAUTH)
            inserted = await asyncio.to_thread(self.readings.insert_readings, self.deduplicator.filter_new(candidates, existing))
            readings_ingested_total.labels(source=ReadingSource.OAUTH.value).inc(len(inserted))

        # Watermark advances even when the window was empty
        await asyncio.to_thread(self.sessions.update_session_state, user_id, self.kind, {"last_sync": end})
        return SyncResult(provider=self.kind, synced=len(inserted), skipped=len(errors.get_errors()))
