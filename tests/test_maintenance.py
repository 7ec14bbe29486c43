"""Tests for daily maintenance."""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from farewatch.errors import PersistenceError
from farewatch.models.alert import AlertRecord
from farewatch.models.check_job import JobStatus, ManualCheck

from conftest import NOW, make_trip


def add_alert(db, trip, created_at):
    db.add(AlertRecord(
        trip_id=trip.id,
        user_email=trip.user_email,
        paid_price=Decimal("500"),
        current_price=Decimal("450"),
        savings=Decimal("50"),
        sent=True,
        created_at=created_at,
    ))
    db.commit()


class TestJobCleanup:
    def test_deletes_only_old_terminal_jobs(self, monitor, db_session):
        trip = make_trip(db_session)
        jobs = monitor.jobs
        old_done = jobs.insert(ManualCheck(trip_id=trip.id), NOW - timedelta(days=10))
        jobs.claim(old_done, NOW - timedelta(days=10))
        jobs.complete(old_done, NOW - timedelta(days=8), {})
        old_failed = jobs.insert(ManualCheck(trip_id=trip.id), NOW - timedelta(days=10))
        jobs.claim(old_failed, NOW - timedelta(days=10))
        jobs.fail(old_failed, NOW - timedelta(days=8), "boom")
        recent_done = jobs.insert(ManualCheck(trip_id=trip.id), NOW - timedelta(days=2))
        jobs.claim(recent_done, NOW - timedelta(days=2))
        jobs.complete(recent_done, NOW - timedelta(days=2), {})
        old_pending = jobs.insert(ManualCheck(trip_id=trip.id), NOW - timedelta(days=30))

        assert monitor.maintenance.cleanup_old_jobs() == 2

        assert jobs.get(old_done) is None
        assert jobs.get(old_failed) is None
        assert jobs.get(recent_done).status == JobStatus.COMPLETED
        assert jobs.get(old_pending).status == JobStatus.PENDING


class TestStaleFailures:
    def test_clears_old_failure_metadata_only(self, monitor, db_session):
        next_check = NOW + timedelta(hours=2)
        stale = make_trip(db_session, name="stale", failure_count=4, last_check_error="old",
                          last_check_error_at=NOW - timedelta(days=31), next_check_at=next_check)
        fresh = make_trip(db_session, name="fresh", failure_count=2, last_check_error="new",
                          last_check_error_at=NOW - timedelta(days=1))

        assert monitor.maintenance.clear_stale_failures() == 1

        cleared = monitor.trips.get(stale.id)
        assert cleared.failure_count == 0
        assert cleared.last_check_error is None
        assert cleared.last_check_error_at is None
        # Clearing failures does not reschedule
        assert cleared.next_check_at == next_check
        assert monitor.trips.get(fresh.id).failure_count == 2


class TestAlertCleanup:
    def test_deletes_alerts_past_retention(self, monitor, db_session):
        trip = make_trip(db_session)
        add_alert(db_session, trip, NOW - timedelta(days=91))
        add_alert(db_session, trip, NOW - timedelta(days=5))

        assert monitor.maintenance.cleanup_old_alerts() == 1
        assert len(monitor.trips.recent_alerts(trip.user_email, NOW - timedelta(days=365))) == 1


class TestMaintenanceRun:
    async def test_summary(self, monitor, session_factory):
        summary = await monitor.run_maintenance()

        assert summary == {"jobs_deleted": 0, "failures_cleared": 0, "alerts_deleted": 0}

    async def test_steps_are_independent(self, monitor, db_session):
        trip = make_trip(db_session)
        add_alert(db_session, trip, NOW - timedelta(days=100))
        monitor.jobs.delete_terminal_before = MagicMock(side_effect=PersistenceError("locked"))

        summary = await monitor.run_maintenance()

        assert summary["jobs_deleted"] is None
        assert summary["alerts_deleted"] == 1
