from datetime import timedelta
from decimal import Decimal

from fastapi import APIRouter, Depends, Header, HTTPException

from farewatch.models.check_job import ManualCheck, UserTrigger
from farewatch.models.trip import Trip
from farewatch.scheduler import get_monitor
from farewatch.schemas import IntervalUpdate, JobQueuedResponse, MonitoringStats, TripMonitoringResponse
from farewatch.services.monitor import RecheckMonitor, trip_monitoring_status

router = APIRouter()

STATS_WINDOW_DAYS = 30


async def current_user_email(x_user_email: str = Header(...)) -> str:
    """Identity comes from the fronting proxy as ``X-User-Email``."""
    email = x_user_email.strip()
    if not email:
        raise HTTPException(status_code=401, detail="Missing user identity")
    return email


def _owned_trip(monitor: RecheckMonitor, trip_id: int, user_email: str) -> Trip:
    trip = monitor.trips.get(trip_id)
    # Someone else's trip looks the same as a missing one
    if not trip or trip.user_email != user_email:
        raise HTTPException(status_code=404, detail="Trip not found")
    return trip


def _monitoring_response(monitor: RecheckMonitor, trip: Trip) -> TripMonitoringResponse:
    now = monitor.clock()
    return TripMonitoringResponse(
        trip_id=trip.id,
        name=trip.name,
        monitoring_status=trip_monitoring_status(trip, monitor.today(), now),
        check_enabled=trip.check_enabled,
        check_interval=trip.check_every_minutes or trip.check_interval,
        next_check_at=trip.next_check_at,
        last_checked_at=trip.last_checked_at,
        last_successful_check=trip.last_successful_check,
        failure_count=trip.failure_count or 0,
        last_check_error=trip.last_check_error,
        paid_price=trip.paid_price,
        last_checked_price=trip.last_checked_price,
        lowest_seen=trip.lowest_seen,
        price_source=trip.price_source,
        in_flight=monitor.dispatcher.is_in_flight(trip.id),
    )


@router.post("/api/trips/{trip_id}/check", response_model=JobQueuedResponse, status_code=202)
async def check_trip_now(
    trip_id: int,
    user_email: str = Depends(current_user_email),
    monitor: RecheckMonitor = Depends(get_monitor),
):
    """Queue a price check for one trip; it runs on the next tick."""
    _owned_trip(monitor, trip_id, user_email)
    job_id = monitor.queue_manual_job(ManualCheck(trip_id=trip_id))
    return JobQueuedResponse(job_id=job_id)


@router.post("/api/monitoring/trigger", response_model=JobQueuedResponse, status_code=202)
async def check_all_my_trips(
    user_email: str = Depends(current_user_email),
    monitor: RecheckMonitor = Depends(get_monitor),
):
    """Queue a check of every active trip of the current user (rate limited)."""
    job_id = monitor.queue_manual_job(UserTrigger(user_email=user_email))
    return JobQueuedResponse(job_id=job_id)


@router.get("/api/monitoring/trips/{trip_id}", response_model=TripMonitoringResponse)
async def get_trip_monitoring(
    trip_id: int,
    user_email: str = Depends(current_user_email),
    monitor: RecheckMonitor = Depends(get_monitor),
):
    trip = _owned_trip(monitor, trip_id, user_email)
    return _monitoring_response(monitor, trip)


@router.post("/api/monitoring/trips/{trip_id}/enable", response_model=TripMonitoringResponse)
async def enable_trip_monitoring(
    trip_id: int,
    user_email: str = Depends(current_user_email),
    monitor: RecheckMonitor = Depends(get_monitor),
):
    """Resume checks; the trip becomes due immediately."""
    _owned_trip(monitor, trip_id, user_email)
    trip = monitor.trips.set_monitoring(trip_id, True, monitor.clock())
    return _monitoring_response(monitor, trip)


@router.post("/api/monitoring/trips/{trip_id}/disable", response_model=TripMonitoringResponse)
async def disable_trip_monitoring(
    trip_id: int,
    user_email: str = Depends(current_user_email),
    monitor: RecheckMonitor = Depends(get_monitor),
):
    _owned_trip(monitor, trip_id, user_email)
    trip = monitor.trips.set_monitoring(trip_id, False, monitor.clock())
    return _monitoring_response(monitor, trip)


@router.put("/api/monitoring/trips/{trip_id}/interval", response_model=TripMonitoringResponse)
async def update_check_interval(
    trip_id: int,
    update: IntervalUpdate,
    user_email: str = Depends(current_user_email),
    monitor: RecheckMonitor = Depends(get_monitor),
):
    settings = monitor.settings
    lower, upper = settings.min_check_interval_minutes, settings.max_check_interval_minutes
    if not lower <= update.interval <= upper:
        raise HTTPException(
            status_code=400,
            detail=f"Interval must be between {lower} and {upper} minutes",
        )

    _owned_trip(monitor, trip_id, user_email)
    trip = monitor.trips.set_check_interval(trip_id, update.interval)
    return _monitoring_response(monitor, trip)


@router.get("/api/monitoring/stats", response_model=MonitoringStats)
async def monitoring_stats(
    user_email: str = Depends(current_user_email),
    monitor: RecheckMonitor = Depends(get_monitor),
):
    """Trip counts and the last 30 days of alerts for the current user."""
    trips = monitor.trips.list_user_trips(user_email)
    since = monitor.clock() - timedelta(days=STATS_WINDOW_DAYS)
    alerts = monitor.trips.recent_alerts(user_email, since, limit=1000)

    return MonitoringStats(
        user_email=user_email,
        total_trips=len(trips),
        monitored_trips=sum(1 for t in trips if t.check_enabled),
        trips_with_errors=sum(1 for t in trips if t.last_check_error),
        recent_alerts=len(alerts),
        alerts_sent=sum(1 for a in alerts if a.sent),
        total_savings_found=sum((a.savings for a in alerts), Decimal("0")),
        days=STATS_WINDOW_DAYS,
    )
