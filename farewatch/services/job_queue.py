"""
Manual Job Queue Processor.

Runs before the automatic dispatch in every tick. Jobs are claimed one at a
time, executed, and left completed or failed; nothing is re-queued.
"""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable

from farewatch.config import Settings
from farewatch.errors import JobExecutionFailure, LeaseHeld, PersistenceError, TripNotFound
from farewatch.models.check_job import CheckJob, JobPayload, ManualCheck, UserTrigger
from farewatch.services.job_store import JobStore
from farewatch.services.trip_checker import TripCheckExecutor
from farewatch.services.trip_store import TripStore
from farewatch.utils.timeutil import today_in, utcnow

logger = logging.getLogger(__name__)


class ManualJobProcessor:

    def __init__(
        self,
        jobs: JobStore,
        trips: TripStore,
        executor: TripCheckExecutor,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.jobs = jobs
        self.trips = trips
        self.executor = executor
        self.settings = settings
        self.clock = clock
        self.sleep = sleep

    async def process_pending_jobs(self) -> int:
        """Process one batch of pending jobs. Returns how many were executed."""
        pending = self.jobs.fetch_pending(self.settings.manual_job_batch_size)
        processed = 0

        for job in pending:
            try:
                if not self.jobs.claim(job.id, self.clock()):
                    logger.debug(f"Job {job.id} already claimed")
                    continue
            except PersistenceError as e:
                logger.error(f"Could not claim job {job.id}, leaving it pending: {e}")
                continue

            await self._process(job)
            processed += 1

        return processed

    async def _process(self, job: CheckJob) -> None:
        try:
            result = await self.execute_job(job.payload)
        except Exception as e:
            logger.error(f"Manual job {job.id} failed: {e}")
            try:
                self.jobs.fail(job.id, self.clock(), str(e) or type(e).__name__)
            except PersistenceError as pe:
                logger.error(f"Could not mark job {job.id} failed: {pe}")
            return

        try:
            self.jobs.complete(job.id, self.clock(), result)
        except PersistenceError as e:
            logger.error(f"Could not mark job {job.id} completed: {e}")
            return

        logger.info(f"Manual job {job.id} completed ({job.job_type.value})")

    async def execute_job(self, payload: JobPayload) -> dict:
        if isinstance(payload, ManualCheck):
            return await self._run_manual_check(payload.trip_id)
        if isinstance(payload, UserTrigger):
            return await self._run_user_trigger(payload.user_email)
        raise JobExecutionFailure(f"Unknown job payload: {payload!r}")

    async def _run_manual_check(self, trip_id: int) -> dict:
        try:
            result = await self.executor.execute_check(trip_id)
        except TripNotFound as e:
            raise JobExecutionFailure(str(e)) from e
        except LeaseHeld as e:
            return {"trip_id": trip_id, "skipped": True, "reason": str(e)}
        return result.to_dict()

    async def _run_user_trigger(self, user_email: str) -> dict:
        """Check all of a user's trips one after another, pausing between them."""
        trips = self.trips.find_user_trips(user_email, today_in(self.settings.timezone, self.clock()))
        delay = self.settings.rate_limit_delay_ms / 1000

        results = []
        for index, trip in enumerate(trips):
            if index and delay > 0:
                await self.sleep(delay)
            try:
                result = await self.executor.execute_check(trip.id)
                results.append({"trip_id": trip.id, "success": True, "result": result.to_dict()})
            except LeaseHeld as e:
                results.append({"trip_id": trip.id, "success": False, "skipped": True, "error": str(e)})
            except Exception as e:
                results.append({"trip_id": trip.id, "success": False, "error": str(e)})

        succeeded = sum(1 for r in results if r["success"])
        logger.info(f"User trigger for {user_email}: {succeeded}/{len(trips)} trips checked")
        return {
            "total": len(trips),
            "succeeded": succeeded,
            "failed": len(trips) - succeeded,
            "results": results,
        }
