"""
Cooperative background scheduler: a fixed-interval polling loop plus
cron-driven daily jobs, all on the service's event loop.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from croniter import croniter

from caresync.utils.timestamps import Clock, utc_now

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


def next_cron_run(cron: str, now: datetime) -> datetime:
    """Next fire time (UTC) strictly after `now`."""
    return croniter(cron, now).get_next(datetime)


class Scheduler:
    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now
        self._jobs: List[Callable[[], Awaitable[None]]] = []
        self.job_names: List[str] = []
        self._tasks: List[asyncio.Task] = []
        self._stopping = asyncio.Event()

    def every(self, name: str, interval_seconds: float, job: Job) -> None:
        async def loop() -> None:
            while not self._stopping.is_set():
                await self._run(name, job)
                await self._sleep(interval_seconds)
        self._jobs.append(loop)
        self.job_names.append(name)

    def cron(self, name: str, expression: str, job: Job) -> None:
        if not croniter.is_valid(expression):
            raise ValueError(f"Invalid cron expression for {name}: {expression!r}")

        async def loop() -> None:
            while not self._stopping.is_set():
                now = self.clock()
                delay = (next_cron_run(expression, now) - now).total_seconds()
                if await self._sleep(delay):
                    await self._run(name, job)
        self._jobs.append(loop)
        self.job_names.append(name)

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first. True when the full delay elapsed."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=max(seconds, 0))
            return False
        except asyncio.TimeoutError:
            return True

    async def _run(self, name: str, job: Job) -> None:
        try:
            await job()
        except Exception:
            logger.exception(f"Scheduled job {name} failed", extra={"log_type": "job_error", "job": name})

    def start(self) -> None:
        self._stopping.clear()
        self._tasks = [asyncio.create_task(job()) for job in self._jobs]
        logger.info(f"Scheduler started with {len(self._tasks)} job(s)", extra={"log_type": "scheduler_started", "jobs": self.job_names})

    async def stop(self) -> None:
        self._stopping.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Scheduler stopped", extra={"log_type": "scheduler_stopped"})
