"""APScheduler timer that flushes the digest queue on a fixed interval."""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger("scheduler")

DIGEST_JOB_ID = "digest-flush"


def create_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,  # Combine multiple pending executions into one
            "max_instances": 1,  # Only one flush at a time
            "misfire_grace_time": 60,
        },
    )


class DigestScheduler:
    """
    Runs `flush` every `interval_minutes` on the running asyncio loop.

    start() must be called from inside the loop (e.g. the API lifespan).
    Each start() builds a fresh APScheduler instance from `scheduler_factory`,
    since a shut down AsyncIOScheduler cannot be restarted reliably.
    """

    def __init__(
        self,
        flush: Callable[[], Awaitable[object]],
        interval_minutes: int = 15,
        scheduler_factory: Callable[[], AsyncIOScheduler] = create_scheduler,
    ):
        self._flush = flush
        self.interval_minutes = interval_minutes
        self._scheduler_factory = scheduler_factory
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        if self.running:
            return
        scheduler = self._scheduler_factory()
        scheduler.add_job(
            self._run,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=DIGEST_JOB_ID,
            name=f"Flush notification digests (every {self.interval_minutes} min)",
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(f"Digest scheduler started, interval {self.interval_minutes} min")

    def shutdown(self) -> None:
        if not self.running:
            return
        scheduler, self._scheduler = self._scheduler, None
        scheduler.shutdown(wait=False)
        logger.info("Digest scheduler stopped")

    def next_run_time(self) -> Optional[datetime]:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(DIGEST_JOB_ID)
        return job.next_run_time if job else None

    async def _run(self) -> None:
        logger.info("Running scheduled digest flush")
        try:
            await self._flush()
        except Exception:
            logger.exception("Scheduled digest flush failed")
