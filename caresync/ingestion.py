"""
Ingestion orchestration: provider syncs, manual readings and the polling tick.

Each (owner, provider) pair runs its own pipeline. One tick runs all of them
concurrently; a failing pair is recorded and logged without affecting others.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from caresync.alerting.checker import AlertChecker
from caresync.data.glucose_repository import GlucoseReadingRepository
from caresync.data.session_repository import SessionRepository
from caresync.metrics import readings_ingested_total, sync_job_completed_total, sync_job_duration_seconds
from caresync.models.alerts import Alert
from caresync.models.glucose import GlucoseReading, ReadingSource, TrendDirection
from caresync.models.sessions import ProviderKind
from caresync.providers.base import SyncResult
from caresync.utils.error_handling import (
    AuthError,
    ErrorCollector,
    ErrorSeverity,
    ProviderError,
    SessionExpiredError,
)
from caresync.utils.timestamps import Clock, utc_now

logger = logging.getLogger(__name__)


def _severity_for(error: Exception) -> ErrorSeverity:
    if isinstance(error, (AuthError, SessionExpiredError)):
        return ErrorSeverity.HIGH
    if isinstance(error, ProviderError):
        return ErrorSeverity.MEDIUM
    return ErrorSeverity.CRITICAL


class IngestionService:
    def __init__(
        self,
        clients: Dict[ProviderKind, object],
        sessions: SessionRepository,
        readings: GlucoseReadingRepository,
        checker: AlertChecker,
        clock: Optional[Clock] = None
    ):
        self.clients = clients
        self.sessions = sessions
        self.readings = readings
        self.checker = checker
        self.clock = clock or utc_now

    async def _check_latest(self, user_id: str) -> Optional[Alert]:
        latest = await asyncio.to_thread(self.readings.latest_reading, user_id)
        if latest is None:
            return None
        try:
            return await self.checker.check_glucose_alert(user_id, latest.value)
        except Exception:
            # Readings are already stored; the next sync re-evaluates
            logger.exception("Alert check failed after sync", extra={"log_type": "alert_check_error", "user_id": user_id})
            return None

    async def sync_user(self, user_id: str, kind: ProviderKind) -> SyncResult:
        """
        Run one provider sync for one owner, then evaluate the newest reading
        when anything new was stored. Provider errors propagate to the caller.
        """
        client = self.clients[kind]
        start = time.monotonic()
        try:
            result = await client.sync(user_id)
        except Exception:
            sync_job_completed_total.labels(provider=kind.value, status="failed").inc()
            raise
        finally:
            sync_job_duration_seconds.labels(provider=kind.value).observe(time.monotonic() - start)
        sync_job_completed_total.labels(provider=kind.value, status="success").inc()

        logger.info(
            f"Synced {result.synced} new {kind.value} reading(s)",
            extra={"log_type": "sync_complete", "provider": kind.value, "user_id": user_id, "synced": result.synced, "skipped": result.skipped},
        )
        if result.synced:
            await self._check_latest(user_id)
        return result

    async def submit_manual_reading(
        self,
        user_id: str,
        value: int,
        timestamp: Optional[datetime] = None,
        trend: TrendDirection = TrendDirection.STABLE
    ) -> Tuple[GlucoseReading, Optional[Alert]]:
        reading = GlucoseReading(
            user_id=user_id,
            value=value,
            trend=trend,
            source=ReadingSource.MANUAL,
            timestamp=timestamp or self.clock(),
        )
        await asyncio.to_thread(self.readings.insert_readings, [reading])
        readings_ingested_total.labels(source=ReadingSource.MANUAL.value).inc()
        alert = await self.checker.check_glucose_alert(user_id, reading.value)
        return reading, alert

    def _connected_pairs(self, collector: ErrorCollector) -> List[Tuple[str, ProviderKind]]:
        pairs = []
        for kind in self.clients:
            try:
                pairs.extend((user_id, kind) for user_id in self.sessions.list_connected_users(kind))
            except Exception as e:
                logger.exception(f"Could not list connected {kind.value} users", extra={"log_type": "tick_error", "provider": kind.value})
                collector.add_error(type(e).__name__, kind.value, str(e), ErrorSeverity.CRITICAL)
        return pairs

    async def run_tick(self) -> ErrorCollector:
        """Sync every connected (owner, provider) pair concurrently and collect failures."""
        collector = ErrorCollector()
        pairs = self._connected_pairs(collector)
        results = await asyncio.gather(*(self.sync_user(u, k) for u, k in pairs), return_exceptions=True)

        synced = 0
        for (user_id, kind), result in zip(pairs, results):
            if isinstance(result, SyncResult):
                synced += result.synced
                continue
            if not isinstance(result, Exception):
                raise result
            collector.add_error(type(result).__name__, f"{kind.value}:{user_id}", str(result), _severity_for(result))
            logger.warning(
                f"{kind.value} sync failed",
                extra={"log_type": "sync_error", "provider": kind.value, "user_id": user_id, "error": str(result)},
            )

        logger.info(
            f"Polling tick finished: {len(pairs)} sync(s), {synced} new reading(s), {len(collector.get_errors())} failure(s)",
            extra={"log_type": "tick_complete", "syncs": len(pairs), "synced": synced, "failures": len(collector.get_errors())},
        )
        return collector
