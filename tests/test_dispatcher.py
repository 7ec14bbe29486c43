"""Tests for the Dispatch Loop: concurrency ceiling, in-flight tracking and drain."""
import asyncio
from unittest.mock import MagicMock

import pytest

from farewatch.errors import PersistenceError

from conftest import make_trip


async def settle():
    """Let launched check tasks run up to their first real suspension."""
    for _ in range(5):
        await asyncio.sleep(0)


async def finish_all(dispatcher):
    await asyncio.gather(*(h.task for h in dispatcher.in_flight()))


class TestConcurrencyCeiling:
    async def test_launches_at_most_ceiling(self, monitor, db_session, price_checker):
        for i in range(10):
            make_trip(db_session, name=f"trip {i}")
        price_checker.gate = asyncio.Event()
        dispatcher = monitor.dispatcher

        launched = await dispatcher.run_due_trips()
        await settle()

        assert launched == 3
        assert dispatcher.in_flight_count == 3
        assert len(price_checker.calls) == 3

        price_checker.gate.set()
        await finish_all(dispatcher)
        assert dispatcher.in_flight_count == 0

    async def test_full_ceiling_skips_due_query(self, monitor, db_session, price_checker):
        for i in range(10):
            make_trip(db_session, name=f"trip {i}")
        price_checker.gate = asyncio.Event()
        dispatcher = monitor.dispatcher
        await dispatcher.run_due_trips()
        await settle()

        spy = MagicMock(wraps=dispatcher.trips.find_due_trips)
        dispatcher.trips.find_due_trips = spy
        assert await dispatcher.run_due_trips() == 0
        spy.assert_not_called()

        price_checker.gate.set()
        await finish_all(dispatcher)

    async def test_fourth_trip_waits_for_a_free_slot(self, monitor, db_session, price_checker):
        trips = [make_trip(db_session, name=f"trip {i}") for i in range(10)]
        price_checker.gate = asyncio.Event()
        dispatcher = monitor.dispatcher

        await dispatcher.run_due_trips()
        await settle()
        first_wave = {h.trip_id for h in dispatcher.in_flight()}
        assert trips[3].id not in first_wave

        price_checker.gate.set()
        await finish_all(dispatcher)
        price_checker.gate = asyncio.Event()

        assert await dispatcher.run_due_trips() == 3
        await settle()
        second_wave = {h.trip_id for h in dispatcher.in_flight()}
        assert trips[3].id in second_wave
        assert not first_wave & second_wave

        price_checker.gate.set()
        await finish_all(dispatcher)

    async def test_partial_slots(self, monitor, db_session, price_checker, settings):
        settings.concurrent_trips = 2
        for i in range(4):
            make_trip(db_session, name=f"trip {i}")
        price_checker.gate = asyncio.Event()

        assert await monitor.dispatcher.run_due_trips() == 2

        price_checker.gate.set()
        await finish_all(monitor.dispatcher)

    async def test_trip_in_flight_is_not_dispatched_twice(self, monitor, db_session, price_checker, settings):
        settings.concurrent_trips = 3
        only = make_trip(db_session)
        price_checker.gate = asyncio.Event()

        assert await monitor.dispatcher.run_due_trips() == 1
        await settle()
        # Still due in storage, but already running here
        assert await monitor.dispatcher.run_due_trips() == 0
        assert [h.trip_id for h in monitor.dispatcher.in_flight()] == [only.id]

        price_checker.gate.set()
        await finish_all(monitor.dispatcher)


class TestTaskCleanup:
    async def test_failed_check_frees_its_slot(self, monitor, db_session, price_checker):
        make_trip(db_session)
        price_checker.error = RuntimeError("connection reset")

        assert await monitor.dispatcher.run_due_trips() == 1
        await finish_all(monitor.dispatcher)

        assert monitor.dispatcher.in_flight_count == 0

    async def test_no_due_trips(self, monitor, session_factory):
        assert await monitor.dispatcher.run_due_trips() == 0

    async def test_due_query_failure_aborts_only_the_tick(self, monitor, db_session):
        make_trip(db_session)
        monitor.dispatcher.trips.find_due_trips = MagicMock(side_effect=PersistenceError("db down"))

        with pytest.raises(PersistenceError):
            await monitor.dispatcher.run_due_trips()
        # The combined tick logs and carries on
        await monitor.tick()


class TestDrain:
    async def test_drain_waits_for_running_checks(self, monitor, db_session, price_checker):
        make_trip(db_session)
        price_checker.gate = asyncio.Event()
        await monitor.dispatcher.run_due_trips()
        await settle()

        async def release_soon():
            await asyncio.sleep(0.05)
            price_checker.gate.set()

        asyncio.create_task(release_soon())
        abandoned = await monitor.dispatcher.drain(timeout=2)

        assert abandoned == 0
        assert monitor.dispatcher.in_flight_count == 0

    async def test_drain_abandons_hung_checks(self, monitor, db_session, price_checker):
        for i in range(3):
            make_trip(db_session, name=f"trip {i}")
        price_checker.gate = asyncio.Event()
        await monitor.dispatcher.run_due_trips()
        await settle()

        abandoned = await monitor.dispatcher.drain(timeout=0.1)

        assert abandoned == 3
        assert monitor.dispatcher.in_flight_count == 0

    async def test_no_dispatch_after_drain(self, monitor, db_session):
        await monitor.dispatcher.drain(timeout=0)
        make_trip(db_session)

        assert await monitor.dispatcher.run_due_trips() == 0

    async def test_dispatches_again_after_restart(self, monitor, db_session):
        await monitor.shutdown(timeout=0)
        monitor.start()
        make_trip(db_session)

        assert await monitor.dispatcher.run_due_trips() == 1
        await finish_all(monitor.dispatcher)

    async def test_monitor_shutdown_closes_price_checker(self, monitor, price_checker):
        assert await monitor.shutdown(timeout=0) == 0
        assert price_checker.closed is True
