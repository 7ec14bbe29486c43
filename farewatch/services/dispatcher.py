"""
Dispatch Loop: the automatic recheck tick.

Each tick pulls due trips and launches at most ``concurrent_trips`` check
tasks. When the ceiling is already reached the tick does nothing at all,
not even the due query. Launched tasks run on their own; the tick never
waits for them.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Set

from farewatch.config import Settings
from farewatch.errors import LeaseHeld
from farewatch.services.trip_checker import TripCheckExecutor
from farewatch.services.trip_store import TripStore
from farewatch.utils.timeutil import today_in, utcnow

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class InFlightCheck:
    """Handle for one dispatched trip check."""
    trip_id: int
    dispatched_at: datetime
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    def to_dict(self) -> dict:
        return {"trip_id": self.trip_id, "dispatched_at": self.dispatched_at.isoformat()}


class DispatchLoop:

    def __init__(
        self,
        trips: TripStore,
        executor: TripCheckExecutor,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.trips = trips
        self.executor = executor
        self.settings = settings
        self.clock = clock
        self.accepting = True
        self._in_flight: Set[InFlightCheck] = set()

    @property
    def ceiling(self) -> int:
        return max(1, self.settings.concurrent_trips)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def in_flight(self) -> List[InFlightCheck]:
        return sorted(self._in_flight, key=lambda h: (h.dispatched_at, h.trip_id))

    def is_in_flight(self, trip_id: int) -> bool:
        return any(h.trip_id == trip_id for h in self._in_flight)

    async def run_due_trips(self) -> int:
        """One dispatch tick. Returns the number of checks launched."""
        if not self.accepting:
            logger.debug("Dispatch stopped, skipping tick")
            return 0

        if self.in_flight_count >= self.ceiling:
            logger.debug("Concurrent trip limit reached, skipping dispatch")
            return 0

        now = self.clock()
        due = self.trips.find_due_trips(
            now,
            today_in(self.settings.timezone, now),
            limit=self.ceiling * 2,
        )
        if not due:
            logger.debug("No trips due for checking")
            return 0

        logger.info(f"Found {len(due)} trips due for checking")

        slots = self.ceiling - self.in_flight_count
        launched = 0
        for trip in due:
            if launched >= slots:
                break
            if self.is_in_flight(trip.id):
                continue
            self._launch(trip.id, now)
            launched += 1

        logger.info(f"Dispatched {launched} trip checks")
        return launched

    def _launch(self, trip_id: int, now: datetime) -> InFlightCheck:
        handle = InFlightCheck(trip_id=trip_id, dispatched_at=now)
        self._in_flight.add(handle)
        handle.task = asyncio.create_task(self._run(handle), name=f"trip-check-{trip_id}")
        return handle

    async def _run(self, handle: InFlightCheck) -> None:
        try:
            await self.executor.execute_check(handle.trip_id)
        except LeaseHeld as e:
            logger.warning(f"Skipped trip {handle.trip_id}: {e}")
        except Exception as e:
            logger.error(f"Trip processing failed for trip {handle.trip_id}: {e}")
        finally:
            self._in_flight.discard(handle)

    async def drain(self, timeout: float) -> int:
        """Stop dispatching and wait for in-flight checks.

        Checks still running after ``timeout`` seconds are cancelled; their
        writes may or may not have landed. Returns how many were abandoned.
        """
        self.accepting = False
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while self._in_flight and loop.time() < deadline:
            logger.info(f"Waiting for {self.in_flight_count} active checks to complete...")
            tasks = [h.task for h in self._in_flight if h.task is not None]
            if not tasks:
                break
            await asyncio.wait(tasks, timeout=min(1.0, max(0.0, deadline - loop.time())))

        abandoned = [h for h in self._in_flight if h.task is not None and not h.task.done()]
        if abandoned:
            logger.warning(f"Force shutdown with {len(abandoned)} checks still active")
            for handle in abandoned:
                handle.task.cancel()
            await asyncio.gather(*(h.task for h in abandoned), return_exceptions=True)
        return len(abandoned)
