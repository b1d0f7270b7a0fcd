"""Background cache sweep using APScheduler.

Expired cache entries are dropped lazily on lookup; entries nobody asks for
again would otherwise sit in memory until evicted for space. The sweeper
purges them on a fixed interval.

Usage:
    # In app startup
    sweeper = CacheSweeper(cache, interval_seconds=300)
    await sweeper.start()

    # In app shutdown
    await sweeper.stop()
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from biowell_service.core.cache import CacheService

if TYPE_CHECKING:
    from apscheduler.job import Job

logger = structlog.get_logger()


class CacheSweeper:
    """Periodically purges expired cache entries.

    Attributes:
        cache: Cache to sweep
        interval_seconds: Seconds between sweeps (0 disables the sweeper)
        scheduler: APScheduler instance
        is_running: Whether the scheduler is running
        last_run_at: Time of the last sweep
        last_purged: Entries removed by the last sweep
    """

    def __init__(self, cache: CacheService, interval_seconds: int = 300) -> None:
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.scheduler = AsyncIOScheduler()
        self.is_running = False
        self.last_run_at: datetime | None = None
        self.last_purged = 0
        self._job: Job | None = None
        self.logger = logger.bind(component="cache_sweeper")

    async def start(self) -> None:
        """Start the background scheduler."""
        if self.interval_seconds <= 0:
            self.logger.info("Cache sweeper disabled by configuration")
            return

        if self.is_running:
            self.logger.warning("Cache sweeper already running")
            return

        self._job = self.scheduler.add_job(
            self.sweep,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id="cache_sweep",
            name="Purge expired cache entries",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping runs
        )
        self.scheduler.start()
        self.is_running = True
        self.logger.info("Cache sweeper started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the background scheduler."""
        if not self.is_running:
            return

        self.scheduler.shutdown(wait=False)
        self.is_running = False
        self.logger.info("Cache sweeper stopped")

    async def sweep(self) -> int:
        """Purge expired entries once.

        Returns:
            Number of entries removed
        """
        purged = self.cache.purge_expired()
        self.last_run_at = datetime.now(UTC)
        self.last_purged = purged
        if purged:
            self.logger.info("Purged expired cache entries", purged=purged, size=len(self.cache))
        return purged

    def get_status(self) -> dict[str, object]:
        """Scheduler status for the health endpoint."""
        next_run = self._job.next_run_time if self._job and self.is_running else None
        return {
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "next_run_at": next_run.isoformat() if next_run else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_purged": self.last_purged,
        }
