import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from farewatch.config import Settings
from farewatch.errors import PersistenceError
from farewatch.services.job_store import JobStore
from farewatch.services.trip_store import TripStore
from farewatch.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


class MaintenanceJobs:
    """Daily cleanup. Each step is best-effort and independent of the others."""

    def __init__(
        self,
        trips: TripStore,
        jobs: JobStore,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.trips = trips
        self.jobs = jobs
        self.settings = settings
        self.clock = clock

    def cleanup_old_jobs(self) -> int:
        cutoff = self.clock() - timedelta(days=self.settings.job_retention_days)
        deleted = self.jobs.delete_terminal_before(cutoff)
        if deleted:
            logger.info(f"Cleaned up {deleted} old jobs")
        return deleted

    def clear_stale_failures(self) -> int:
        cutoff = self.clock() - timedelta(days=self.settings.failure_reset_days)
        cleared = self.trips.clear_stale_failures(cutoff)
        if cleared:
            logger.info(f"Reset failure metadata on {cleared} trips")
        return cleared

    def cleanup_old_alerts(self) -> int:
        cutoff = self.clock() - timedelta(days=self.settings.alert_retention_days)
        deleted = self.trips.delete_alerts_before(cutoff)
        if deleted:
            logger.info(f"Cleaned up {deleted} old alert records")
        return deleted

    async def run(self) -> Dict[str, Optional[int]]:
        summary: Dict[str, Optional[int]] = {}
        for name, step in (
            ("jobs_deleted", self.cleanup_old_jobs),
            ("failures_cleared", self.clear_stale_failures),
            ("alerts_deleted", self.cleanup_old_alerts),
        ):
            try:
                summary[name] = step()
            except PersistenceError as e:
                logger.warning(f"Maintenance step {name} failed: {e}")
                summary[name] = None
        logger.info(f"Maintenance completed: {summary}")
        return summary
