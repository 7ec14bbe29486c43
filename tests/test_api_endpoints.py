"""Tests for the admin and monitoring API."""
from datetime import timedelta
from decimal import Decimal

from farewatch.models.alert import AlertRecord
from farewatch.models.check_job import JobStatus

from conftest import NOW, make_trip

USER = {"X-User-Email": "traveler@example.com"}
OTHER_USER = {"X-User-Email": "someone@example.com"}


class TestSchedulerAdmin:
    async def test_status(self, client, monitor):
        response = await client.get("/api/admin/scheduler/status")

        assert response.status_code == 200
        data = response.json()
        for key in ("is_running", "enabled", "manual_triggers_enabled", "active_job_count",
                    "in_flight", "per_user_last_trigger", "queue", "jobs"):
            assert key in data
        assert data["active_job_count"] == 0
        assert data["queue"]["total"] == 0

    async def test_disable_and_enable(self, client, monitor):
        response = await client.post("/api/admin/scheduler/disable")
        assert response.status_code == 200
        assert monitor.enabled is False

        response = await client.post("/api/admin/scheduler/enable")
        assert response.json()["enabled"] is True
        assert monitor.enabled is True

    async def test_toggle_manual_triggers(self, client, monitor):
        await client.post("/api/admin/triggers/disable")
        assert monitor.gateway.enabled is False

        await client.post("/api/admin/triggers/enable")
        assert monitor.gateway.enabled is True


class TestAdminTrigger:
    async def test_queue_user_trigger(self, client, monitor):
        response = await client.post(
            "/api/admin/trigger", json={"type": "user_trigger", "user_email": "traveler@example.com"}
        )

        assert response.status_code == 202
        job = monitor.jobs.get(response.json()["job_id"])
        assert job.status == JobStatus.PENDING
        assert job.priority == 10

    async def test_missing_payload_field(self, client):
        response = await client.post("/api/admin/trigger", json={"type": "manual_check"})

        assert response.status_code == 400

    async def test_manual_check_for_missing_trip(self, client, session_factory):
        response = await client.post("/api/admin/trigger", json={"type": "manual_check", "trip_id": 404})

        assert response.status_code == 404

    async def test_unknown_type(self, client):
        response = await client.post("/api/admin/trigger", json={"type": "refresh_all", "trip_id": 1})

        assert response.status_code == 422

    async def test_disabled_is_403(self, client, monitor):
        monitor.set_manual_triggers_enabled(False)

        response = await client.post(
            "/api/admin/trigger", json={"type": "user_trigger", "user_email": "traveler@example.com"}
        )

        assert response.status_code == 403
        assert response.json()["error"] == "feature_disabled"

    async def test_cooldown_is_429(self, client, clock):
        body = {"type": "user_trigger", "user_email": "traveler@example.com"}
        await client.post("/api/admin/trigger", json=body)
        clock.advance(minutes=5)

        response = await client.post("/api/admin/trigger", json=body)

        assert response.status_code == 429
        data = response.json()
        assert data["error"] == "cooldown_active"
        assert data["wait_minutes"] == 25
        assert data["retry_after_seconds"] == 1500
        assert response.headers["retry-after"] == "1500"


class TestJobsAPI:
    async def test_get_job(self, client, monitor, db_session):
        trip = make_trip(db_session)
        queued = await client.post(f"/api/trips/{trip.id}/check", headers=USER)
        job_id = queued.json()["job_id"]

        response = await client.get(f"/api/jobs/{job_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["job_type"] == "manual_check"
        assert data["status"] == "pending"
        assert data["trip_id"] == trip.id

    async def test_job_result_after_tick(self, client, monitor, db_session):
        trip = make_trip(db_session)
        queued = await client.post(f"/api/trips/{trip.id}/check", headers=USER)

        await monitor.tick()

        data = (await client.get(f"/api/jobs/{queued.json()['job_id']}")).json()
        assert data["status"] == "completed"
        assert data["result"]["current_price"] == 400.0

    async def test_missing_job(self, client):
        response = await client.get("/api/jobs/999")

        assert response.status_code == 404


class TestTripCheck:
    async def test_queue_manual_check(self, client, monitor, db_session):
        trip = make_trip(db_session)

        response = await client.post(f"/api/trips/{trip.id}/check", headers=USER)

        assert response.status_code == 202
        assert monitor.jobs.get(response.json()["job_id"]).priority == 5

    async def test_other_users_trip_is_404(self, client, db_session):
        trip = make_trip(db_session)

        response = await client.post(f"/api/trips/{trip.id}/check", headers=OTHER_USER)

        assert response.status_code == 404

    async def test_identity_required(self, client, db_session):
        trip = make_trip(db_session)

        response = await client.post(f"/api/trips/{trip.id}/check")

        assert response.status_code == 422

    async def test_user_trigger_cooldown(self, client):
        first = await client.post("/api/monitoring/trigger", headers=USER)
        second = await client.post("/api/monitoring/trigger", headers=USER)

        assert first.status_code == 202
        assert second.status_code == 429


class TestMonitoringControl:
    async def test_status_pending_first_check(self, client, db_session):
        trip = make_trip(db_session)

        response = await client.get(f"/api/monitoring/trips/{trip.id}", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["monitoring_status"] == "pending_first_check"
        assert data["in_flight"] is False

    async def test_status_after_check(self, client, monitor, db_session):
        trip = make_trip(db_session)
        await monitor.executor.execute_check(trip.id)

        data = (await client.get(f"/api/monitoring/trips/{trip.id}", headers=USER)).json()

        assert data["monitoring_status"] == "active"
        assert Decimal(str(data["last_checked_price"])) == Decimal("400")

    async def test_disable_then_enable(self, client, monitor, db_session, clock):
        trip = make_trip(db_session, failure_count=3, next_check_at=NOW + timedelta(hours=2))

        response = await client.post(f"/api/monitoring/trips/{trip.id}/disable", headers=USER)
        assert response.json()["monitoring_status"] == "disabled"
        stored = monitor.trips.get(trip.id)
        assert stored.check_enabled is False
        assert stored.next_check_at is None

        response = await client.post(f"/api/monitoring/trips/{trip.id}/enable", headers=USER)
        assert response.json()["check_enabled"] is True
        stored = monitor.trips.get(trip.id)
        assert stored.next_check_at == clock.now
        assert stored.failure_count == 0

    async def test_update_interval(self, client, monitor, db_session):
        trip = make_trip(db_session)

        response = await client.put(
            f"/api/monitoring/trips/{trip.id}/interval", json={"interval": 120}, headers=USER
        )

        assert response.status_code == 200
        assert response.json()["check_interval"] == 120
        assert monitor.trips.get(trip.id).check_every_minutes == 120

    async def test_interval_out_of_range(self, client, db_session):
        trip = make_trip(db_session)

        for interval in (30, 2000):
            response = await client.put(
                f"/api/monitoring/trips/{trip.id}/interval", json={"interval": interval}, headers=USER
            )
            assert response.status_code == 400

    async def test_stats(self, client, db_session):
        trip = make_trip(db_session)
        make_trip(db_session, name="paused", check_enabled=False, last_check_error="boom")
        for days_ago, sent in ((1, True), (3, False), (45, True)):
            db_session.add(AlertRecord(
                trip_id=trip.id,
                user_email=trip.user_email,
                paid_price=Decimal("450"),
                current_price=Decimal("400"),
                savings=Decimal("50"),
                sent=sent,
                created_at=NOW - timedelta(days=days_ago),
            ))
        db_session.commit()

        response = await client.get("/api/monitoring/stats", headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert data["total_trips"] == 2
        assert data["monitored_trips"] == 1
        assert data["trips_with_errors"] == 1
        assert data["recent_alerts"] == 2
        assert data["alerts_sent"] == 1
        assert Decimal(str(data["total_savings_found"])) == Decimal("100")
