"""
Trip Store: scheduling reads and writes against the ``trips`` table.

Every mutation is a single-row update committed on its own. Sequences of
updates are not atomic with respect to other processes; the check lease is
the only cross-process guard.
"""
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import or_, func

from farewatch.models.alert import AlertRecord
from farewatch.models.trip import Trip, UNSCHEDULABLE_STATUSES
from farewatch.models.user_preferences import UserPreferences
from farewatch.services.scheduling import append_price_history, backoff_minutes, next_check_after
from farewatch.services.store import SessionStore

logger = logging.getLogger(__name__)


class TripStore(SessionStore):

    def find_due_trips(self, now: datetime, today: date, limit: int) -> List[Trip]:
        """Trips eligible for an automatic check, most urgent first.

        Eligible: schedulable status, checking enabled, at least one segment,
        first segment today or later, and ``next_check_at`` unset or past.
        Ordered by priority (high first), then ``next_check_at`` (unset
        first), then ``last_checked_at`` (never checked first).
        """
        with self._session("find_due_trips") as db:
            return (
                db.query(Trip)
                .filter(
                    Trip.status.notin_(UNSCHEDULABLE_STATUSES),
                    Trip.check_enabled == True,
                    Trip.departure_date.isnot(None),
                    Trip.departure_date >= today,
                    or_(Trip.next_check_at.is_(None), Trip.next_check_at <= now),
                )
                .order_by(
                    Trip.priority.desc(),
                    Trip.next_check_at.asc().nullsfirst(),
                    Trip.last_checked_at.asc().nullsfirst(),
                    Trip.id.asc(),
                )
                .limit(limit)
                .all()
            )

    def get(self, trip_id: int) -> Optional[Trip]:
        with self._session("get") as db:
            return db.get(Trip, trip_id)

    def find_user_trips(self, user_email: str, today: date) -> List[Trip]:
        """A user's monitorable trips, for a user-triggered check."""
        with self._session("find_user_trips") as db:
            return (
                db.query(Trip)
                .filter(
                    Trip.user_email == user_email,
                    Trip.status.notin_(UNSCHEDULABLE_STATUSES),
                    Trip.departure_date.isnot(None),
                    Trip.departure_date >= today,
                )
                .order_by(Trip.priority.desc(), Trip.id.asc())
                .all()
            )

    def list_user_trips(self, user_email: str) -> List[Trip]:
        with self._session("list_user_trips") as db:
            return db.query(Trip).filter(Trip.user_email == user_email).order_by(Trip.id.asc()).all()

    def user_preferences(self, user_email: str) -> Optional[UserPreferences]:
        with self._session("user_preferences") as db:
            return UserPreferences.for_user(db, user_email)

    # ------------------------------------------------------------------
    # Check lease
    # ------------------------------------------------------------------

    def acquire_lease(self, trip_id: int, token: str, now: datetime, ttl_seconds: float) -> bool:
        """Compare-and-swap the lease token; False when someone else holds it."""
        with self._session("acquire_lease") as db:
            matched = (
                db.query(Trip)
                .filter(
                    Trip.id == trip_id,
                    or_(
                        Trip.check_lease_token.is_(None),
                        Trip.check_lease_expires_at.is_(None),
                        Trip.check_lease_expires_at <= now,
                    ),
                )
                .update(
                    {
                        Trip.check_lease_token: token,
                        Trip.check_lease_expires_at: now + timedelta(seconds=ttl_seconds),
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            return matched == 1

    def release_lease(self, trip_id: int, token: str) -> None:
        with self._session("release_lease") as db:
            db.query(Trip).filter(Trip.id == trip_id, Trip.check_lease_token == token).update(
                {Trip.check_lease_token: None, Trip.check_lease_expires_at: None},
                synchronize_session=False,
            )
            db.commit()

    # ------------------------------------------------------------------
    # Check outcomes
    # ------------------------------------------------------------------

    def record_success(
        self,
        trip_id: int,
        now: datetime,
        price: Decimal,
        fares: dict,
        source: str,
        interval_minutes: int,
        history_limit: int = 50,
    ) -> Optional[Trip]:
        """Apply a successful check: price facts, reschedule, clear failures."""
        with self._session("record_success") as db:
            trip = db.get(Trip, trip_id)
            if trip is None:
                return None

            trip.last_checked_at = now
            trip.last_successful_check = now
            trip.last_checked_price = price
            trip.last_checked_fares = {k: float(v) for k, v in fares.items()}
            trip.price_source = source
            trip.price_history = append_price_history(
                trip.price_history,
                {"price": float(price), "checked_at": now.isoformat(), "source": source},
                limit=history_limit,
            )

            if trip.lowest_seen is None or price < trip.lowest_seen:
                trip.lowest_seen = price
                trip.lowest_seen_at = now

            lowest_by_class = dict(trip.lowest_seen_by_fare_class or {})
            for fare_class, fare in fares.items():
                if fare_class not in lowest_by_class or float(fare) < lowest_by_class[fare_class]:
                    lowest_by_class[fare_class] = float(fare)
            trip.lowest_seen_by_fare_class = lowest_by_class

            trip.failure_count = 0
            trip.last_check_error = None
            trip.last_check_error_at = None

            trip.check_interval = interval_minutes
            trip.next_check_at = next_check_after(now, interval_minutes)

            db.commit()
            db.refresh(trip)
            return trip

    def record_failure(
        self,
        trip_id: int,
        now: datetime,
        error_message: str,
        backoff_base: int = 30,
        backoff_cap: int = 120,
    ) -> Optional[Trip]:
        """Increment the failure count and push ``next_check_at`` out by the backoff."""
        with self._session("record_failure") as db:
            trip = db.get(Trip, trip_id)
            if trip is None:
                return None

            delay = backoff_minutes(trip.failure_count or 0, base=backoff_base, cap=backoff_cap)
            db.query(Trip).filter(Trip.id == trip_id).update(
                {
                    Trip.failure_count: func.coalesce(Trip.failure_count, 0) + 1,
                    Trip.next_check_at: next_check_after(now, delay),
                    Trip.last_check_error: error_message,
                    Trip.last_check_error_at: now,
                    Trip.last_checked_at: now,
                },
                synchronize_session=False,
            )
            db.commit()
            trip = db.get(Trip, trip_id, populate_existing=True)
            logger.info(f"Trip {trip_id} failed {trip.failure_count}x, retry in {delay} min")
            return trip

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def count_sent_alerts(self, user_email: str, since: datetime) -> int:
        with self._session("count_sent_alerts") as db:
            return (
                db.query(AlertRecord)
                .filter(
                    AlertRecord.user_email == user_email,
                    AlertRecord.sent == True,
                    AlertRecord.created_at >= since,
                )
                .count()
            )

    def open_alert(self, alert: AlertRecord, now: datetime) -> int:
        """Store an unsent alert and start the trip's cooldown. Returns the alert id."""
        with self._session("open_alert") as db:
            alert.sent = False
            db.add(alert)
            db.query(Trip).filter(Trip.id == alert.trip_id).update(
                {Trip.last_alert_at: now, Trip.last_alert_price: alert.current_price},
                synchronize_session=False,
            )
            db.flush()
            alert_id = alert.id
            db.commit()
            return alert_id

    def finish_alert(
        self,
        alert_id: int,
        sent: bool,
        message_id: Optional[str] = None,
        error: Optional[str] = None,
        previous_alert_at: Optional[datetime] = None,
        previous_alert_price: Optional[Decimal] = None,
    ) -> None:
        """Record the send outcome. An unsent alert hands the cooldown back."""
        with self._session("finish_alert") as db:
            alert = db.get(AlertRecord, alert_id)
            if alert is None:
                return
            alert.sent = sent
            alert.message_id = message_id
            alert.error = error
            if not sent:
                db.query(Trip).filter(Trip.id == alert.trip_id).update(
                    {Trip.last_alert_at: previous_alert_at, Trip.last_alert_price: previous_alert_price},
                    synchronize_session=False,
                )
            db.commit()

    def recent_alerts(self, user_email: str, since: datetime, limit: int = 50) -> List[AlertRecord]:
        with self._session("recent_alerts") as db:
            return (
                db.query(AlertRecord)
                .filter(AlertRecord.user_email == user_email, AlertRecord.created_at >= since)
                .order_by(AlertRecord.created_at.desc())
                .limit(limit)
                .all()
            )

    def delete_alerts_before(self, cutoff: datetime) -> int:
        with self._session("delete_alerts_before") as db:
            deleted = db.query(AlertRecord).filter(AlertRecord.created_at < cutoff).delete(
                synchronize_session=False
            )
            db.commit()
            return deleted

    # ------------------------------------------------------------------
    # Monitoring control and maintenance
    # ------------------------------------------------------------------

    def set_monitoring(self, trip_id: int, enabled: bool, now: datetime) -> Optional[Trip]:
        """Enabling makes the trip due now and forgets old failures; disabling unschedules it."""
        with self._session("set_monitoring") as db:
            trip = db.get(Trip, trip_id)
            if trip is None:
                return None
            trip.check_enabled = enabled
            if enabled:
                trip.next_check_at = now
                trip.failure_count = 0
            else:
                trip.next_check_at = None
            db.commit()
            db.refresh(trip)
            return trip

    def set_check_interval(self, trip_id: int, minutes: int) -> Optional[Trip]:
        with self._session("set_check_interval") as db:
            trip = db.get(Trip, trip_id)
            if trip is None:
                return None
            trip.check_every_minutes = minutes
            db.commit()
            db.refresh(trip)
            return trip

    def clear_stale_failures(self, cutoff: datetime) -> int:
        """Forget failure metadata older than ``cutoff``; ``next_check_at`` is left alone."""
        with self._session("clear_stale_failures") as db:
            cleared = (
                db.query(Trip)
                .filter(Trip.last_check_error_at.isnot(None), Trip.last_check_error_at < cutoff)
                .update(
                    {
                        Trip.failure_count: 0,
                        Trip.last_check_error: None,
                        Trip.last_check_error_at: None,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            return cleared
