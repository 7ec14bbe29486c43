"""
RecheckMonitor wires the stores, the executor, the dispatch loop, the manual
job processor, the trigger gateway and maintenance into one object that the
scheduler drives and the API inspects.
"""
import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from farewatch.config import Settings
from farewatch.models.check_job import JobPayload
from farewatch.models.trip import Trip
from farewatch.services.alert_dispatcher import AlertDispatcher
from farewatch.services.dispatcher import DispatchLoop
from farewatch.services.job_queue import ManualJobProcessor
from farewatch.services.job_store import JobStore
from farewatch.services.maintenance import MaintenanceJobs
from farewatch.services.price_checker import PriceChecker
from farewatch.services.trigger_gateway import TriggerGateway
from farewatch.services.trip_checker import TripCheckExecutor
from farewatch.services.trip_store import TripStore
from farewatch.utils.timeutil import today_in, utcnow

logger = logging.getLogger(__name__)

STALE_CHECK_HOURS = 48


class RecheckMonitor:

    def __init__(
        self,
        settings: Settings,
        session_factory: Callable[[], Session],
        price_checker: PriceChecker,
        alert_dispatcher: AlertDispatcher,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.clock = clock
        self.price_checker = price_checker

        self.trips = TripStore(session_factory)
        self.jobs = JobStore(session_factory)
        self.executor = TripCheckExecutor(self.trips, price_checker, alert_dispatcher, settings, clock)
        self.dispatcher = DispatchLoop(self.trips, self.executor, settings, clock)
        self.job_processor = ManualJobProcessor(self.jobs, self.trips, self.executor, settings, clock, sleep)
        self.gateway = TriggerGateway(self.jobs, settings, clock)
        self.maintenance = MaintenanceJobs(self.trips, self.jobs, settings, clock)

        self.enabled = True
        self.is_running = False

    async def tick(self) -> None:
        """Manual jobs first, then the automatic dispatch."""
        if not self.enabled:
            logger.debug("Recheck scheduler disabled, skipping tick")
            return

        try:
            await self.job_processor.process_pending_jobs()
        except Exception as e:
            logger.error(f"Manual job processing failed: {e}")

        try:
            await self.dispatcher.run_due_trips()
        except Exception as e:
            logger.error(f"Dispatch tick failed: {e}")

    def start(self) -> None:
        """Accept dispatches again, also after an earlier shutdown."""
        self.dispatcher.accepting = True
        self.is_running = True

    async def run_maintenance(self) -> dict:
        return await self.maintenance.run()

    def queue_manual_job(self, payload: JobPayload) -> int:
        return self.gateway.queue_manual_job(payload)

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        logger.info(f"Recheck scheduler {'enabled' if enabled else 'disabled'}")

    def set_manual_triggers_enabled(self, enabled: bool) -> None:
        self.gateway.enabled = enabled
        logger.info(f"Manual triggers {'enabled' if enabled else 'disabled'}")

    def get_status(self) -> dict:
        return {
            "is_running": self.is_running and self.enabled,
            "enabled": self.enabled,
            "manual_triggers_enabled": self.gateway.enabled,
            "active_job_count": self.dispatcher.in_flight_count,
            "in_flight": [h.to_dict() for h in self.dispatcher.in_flight()],
            "per_user_last_trigger": self.gateway.ledger.snapshot(),
            "queue": self.jobs.counts_by_status(),
        }

    async def shutdown(self, timeout: Optional[float] = None) -> int:
        timeout = self.settings.shutdown_timeout_seconds if timeout is None else timeout
        self.is_running = False
        abandoned = await self.dispatcher.drain(timeout)
        await self.price_checker.close()
        return abandoned

    def today(self) -> date:
        return today_in(self.settings.timezone, self.clock())


def trip_monitoring_status(trip: Trip, today: date, now: datetime) -> str:
    if trip.check_enabled is False:
        return "disabled"
    if not trip.segments or trip.departure_date is None:
        return "no_flights"
    if trip.departure_date < today:
        return "expired"
    if trip.last_check_error:
        return "error"
    if not trip.last_checked_at:
        return "pending_first_check"
    if now - trip.last_checked_at > timedelta(hours=STALE_CHECK_HOURS):
        return "stale"
    return "active"
