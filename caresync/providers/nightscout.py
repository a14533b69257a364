"""Nightscout client: a self-hosted REST endpoint guarded by an API secret."""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from pydantic import SecretStr

from caresync.data.glucose_repository import GlucoseReadingRepository
from caresync.data.session_repository import SessionRepository
from caresync.dedup import Deduplicator
from caresync.metrics import readings_ingested_total
from caresync.models.glucose import GlucoseReading, ReadingSource
from caresync.models.sessions import NightscoutSession, ProviderKind
from caresync.providers.base import ProviderHttpClient, SyncResult
from caresync.utils.error_handling import AuthError, NetworkError, ProviderNotConnectedError, ValidationError
from caresync.utils.normalization import map_direction, normalize_glucose_value, parse_epoch_millis, parse_iso_timestamp
from caresync.utils.pipeline import ReadingPipeline
from caresync.utils.timestamps import Clock

logger = logging.getLogger(__name__)

STATUS_PATH = "/api/v1/status.json"
ENTRIES_PATH = "/api/v1/entries/sgv.json"
DEFAULT_ENTRY_COUNT = 36


def normalize_url(url: str) -> str:
    """Force https and strip trailing slashes."""
    url = url.strip()
    if re.match(r"^http://", url, re.IGNORECASE):
        url = "https://" + url[len("http://"):]
    elif not re.match(r"^https://", url, re.IGNORECASE):
        url = "https://" + url
    return url.rstrip("/")


def parse_entry(entry: Dict[str, Any], user_id: str) -> GlucoseReading:
    value = normalize_glucose_value(entry.get("sgv"))
    if value is None:
        raise ValidationError("missing or non-numeric value", field="sgv")
    timestamp = parse_iso_timestamp(entry.get("dateString")) or parse_epoch_millis(entry.get("date"))
    if timestamp is None:
        raise ValidationError("unparseable timestamp", field="dateString")
    trend, arrow = map_direction(entry.get("direction"))
    return GlucoseReading(
        user_id=user_id,
        value=value,
        trend=trend,
        trend_arrow=arrow,
        source=ReadingSource.NIGHTSCOUT,
        timestamp=timestamp,
    )


def _secret_headers(secret: Optional[str]) -> Dict[str, str]:
    headers = {"Accept": "application/json"}
    if secret:
        headers["api-secret"] = secret
    return headers


class NightscoutClient(ProviderHttpClient):
    kind = ProviderKind.NIGHTSCOUT

    def __init__(
        self,
        sessions: SessionRepository,
        readings: GlucoseReadingRepository,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None,
        entry_count: int = DEFAULT_ENTRY_COUNT
    ):
        super().__init__(http_client, clock)
        self.sessions = sessions
        self.readings = readings
        self.entry_count = entry_count

    async def connect(self, user_id: str, url: str, secret: Optional[str] = None) -> NightscoutSession:
        """
        Check the site is reachable before saving it.

        Raises:
            AuthError: The site answered 401 to the supplied secret
            NetworkError: The site is unreachable or does not look like Nightscout
        """
        endpoint_url = normalize_url(url)
        response = await self._request(
            "GET", f"{endpoint_url}{STATUS_PATH}", "check_status", headers=_secret_headers(secret)
        )
        if response.status_code == 401:
            raise AuthError("Nightscout returned 401; check the API secret", self.kind.value)
        if response.status_code >= 400:
            raise self._unexpected_status(response, "check_status")
        if "status" not in self.json_body(response):
            raise NetworkError("Endpoint did not answer like a Nightscout site", self.kind.value)

        session = NightscoutSession(
            connected=True,
            endpoint_url=endpoint_url,
            secret=SecretStr(secret) if secret else None,
        )
        self.sessions.save_session(user_id, self.kind, session)
        logger.info("Nightscout connected", extra={"log_type": "provider_connected", "provider": self.kind.value, "user_id": user_id})
        return session

    def disconnect(self, user_id: str) -> None:
        self.sessions.save_session(user_id, self.kind, NightscoutSession())
        logger.info("Nightscout disconnected", extra={"log_type": "provider_disconnected", "provider": self.kind.value, "user_id": user_id})

    async def fetch_entries(self, session: NightscoutSession) -> List[Dict[str, Any]]:
        secret = session.secret.get_secret_value() if session.secret else None
        response = await self._request(
            "GET",
            f"{session.endpoint_url}{ENTRIES_PATH}",
            "read_entries",
            params={"count": self.entry_count},
            headers=_secret_headers(secret),
        )
        if response.status_code == 401:
            raise AuthError("Nightscout returned 401; the API secret may have changed", self.kind.value)
        if response.status_code >= 400:
            raise self._unexpected_status(response, "read_entries")
        try:
            body = response.json()
        except ValueError as e:
            raise NetworkError("Nightscout returned a non-JSON body", self.kind.value) from e
        if not isinstance(body, list):
            raise NetworkError("Nightscout entries were not a list", self.kind.value)
        return body

    async def sync(self, user_id: str) -> SyncResult:
        session = await asyncio.to_thread(self.sessions.get_session, user_id, self.kind)
        if not session or not session.connected or not session.endpoint_url:
            raise ProviderNotConnectedError("Nightscout is not connected", self.kind.value)

        entries = await self.fetch_entries(session)
        candidates, errors = ReadingPipeline(lambda e: parse_entry(e, user_id), self.kind.value).process(entries)

        latest = await asyncio.to_thread(self.readings.latest_reading, user_id, source=ReadingSource.NIGHTSCOUT)
        fresh = Deduplicator.filter_newer_than(candidates, latest.timestamp if latest else None)
        inserted = await asyncio.to_thread(self.readings.insert_readings, fresh) if fresh else []
        readings_ingested_total.labels(source=ReadingSource.NIGHTSCOUT.value).inc(len(inserted))

        await asyncio.to_thread(self.sessions.update_session_state, user_id, self.kind, {"last_sync": self.clock()})
        return SyncResult(provider=self.kind, synced=len(inserted), skipped=len(errors.get_errors()))
