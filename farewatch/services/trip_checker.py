"""
Trip Check Executor: price one trip, record the outcome, reschedule it.

Success reschedules on the trip's interval and may send a price-drop alert.
Failure increments ``failure_count``, backs ``next_check_at`` off
exponentially and re-raises; the trip stays scheduled and is retried at
the backed-off time. There is no local retry.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional, Tuple

from farewatch.config import Settings
from farewatch.errors import CheckTimeout, LeaseHeld, PersistenceError, TripNotFound, UpstreamUnavailable
from farewatch.models.alert import AlertRecord
from farewatch.models.trip import Trip
from farewatch.models.user_preferences import UserPreferences
from farewatch.services.alert_dispatcher import AlertDispatcher, AlertFacts, SendResult
from farewatch.services.price_checker import PriceChecker, TripQuote, quote_trip
from farewatch.services.scheduling import (
    SavingsDecision,
    alert_cooldown_expired,
    effective_interval_minutes,
    evaluate_savings,
)
from farewatch.services.trip_store import TripStore
from farewatch.utils.timeutil import utcnow, isoformat_or_none

logger = logging.getLogger(__name__)

# Lease outlives the check timeout so only a crashed holder lets it lapse.
LEASE_GRACE_SECONDS = 60


@dataclass
class CheckResult:
    trip_id: int
    current_price: Decimal
    source: str
    fare_class: str
    savings: Decimal
    alert_sent: bool
    alert_skipped_reason: Optional[str]
    next_check_at: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "trip_id": self.trip_id,
            "current_price": float(self.current_price),
            "source": self.source,
            "fare_class": self.fare_class,
            "savings": float(self.savings),
            "alert_sent": self.alert_sent,
            "alert_skipped_reason": self.alert_skipped_reason,
            "next_check_at": isoformat_or_none(self.next_check_at),
        }


class TripCheckExecutor:

    def __init__(
        self,
        trips: TripStore,
        price_checker: PriceChecker,
        alert_dispatcher: AlertDispatcher,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.trips = trips
        self.price_checker = price_checker
        self.alert_dispatcher = alert_dispatcher
        self.settings = settings
        self.clock = clock

    @property
    def lease_ttl_seconds(self) -> float:
        return (
            self.settings.check_timeout_seconds
            + self.settings.alert_timeout_seconds
            + LEASE_GRACE_SECONDS
        )

    async def execute_check(self, trip_id: int) -> CheckResult:
        """Check one trip under its lease.

        Raises ``TripNotFound``, ``LeaseHeld`` when another executor is on the
        trip, or ``UpstreamUnavailable`` after the failure path has run.
        """
        if self.trips.get(trip_id) is None:
            raise TripNotFound(trip_id)

        token = uuid.uuid4().hex
        if not self.trips.acquire_lease(trip_id, token, self.clock(), self.lease_ttl_seconds):
            raise LeaseHeld(trip_id)

        try:
            # Read again under the lease so the previous holder's writes are seen.
            trip = self.trips.get(trip_id)
            if trip is None:
                raise TripNotFound(trip_id)
            return await self._check(trip)
        finally:
            try:
                self.trips.release_lease(trip_id, token)
            except PersistenceError as e:
                logger.warning(f"Could not release lease on trip {trip_id}, it will expire: {e}")

    async def _fetch_quote(self, trip: Trip) -> TripQuote:
        timeout = self.settings.check_timeout_seconds
        try:
            return await asyncio.wait_for(
                quote_trip(
                    self.price_checker,
                    trip.segments or [],
                    trip.fare_class,
                    pax_count=trip.pax_count or 1,
                    segment_delay_seconds=self.settings.segment_delay_ms / 1000,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise CheckTimeout(timeout) from e
        except UpstreamUnavailable:
            raise
        except Exception as e:
            raise UpstreamUnavailable(str(e) or type(e).__name__) from e

    async def _check(self, trip: Trip) -> CheckResult:
        logger.info(f"Checking trip {trip.id} ({trip.name}) for {trip.user_email}")

        try:
            quote = await self._fetch_quote(trip)
        except UpstreamUnavailable as e:
            self._record_failure(trip, e)
            raise

        return await self._record_success(trip, quote)

    def _record_failure(self, trip: Trip, error: Exception) -> None:
        logger.error(f"Trip check failed for trip {trip.id}: {error}")
        try:
            self.trips.record_failure(
                trip.id,
                self.clock(),
                str(error),
                backoff_base=self.settings.backoff_base_minutes,
                backoff_cap=self.settings.backoff_max_minutes,
            )
        except PersistenceError as e:
            logger.error(f"Could not record failure for trip {trip.id}, it stays due: {e}")

    async def _record_success(self, trip: Trip, quote: TripQuote) -> CheckResult:
        now = self.clock()
        prefs = self.trips.user_preferences(trip.user_email)

        interval = effective_interval_minutes(
            trip.check_every_minutes,
            prefs.default_check_interval if prefs else None,
            self.settings.default_check_every_minutes,
            self.settings.min_check_interval_minutes,
            self.settings.max_check_interval_minutes,
        )

        decision = evaluate_savings(
            trip.paid_price,
            quote.price,
            threshold=trip.threshold_usd,
            min_amount=self.settings.min_savings_amount,
            min_percent=self.settings.min_savings_percent,
        )

        updated = self.trips.record_success(
            trip.id,
            now,
            quote.price,
            quote.fares,
            quote.source,
            interval,
            history_limit=self.settings.price_history_limit,
        )

        logger.info(
            f"Trip check completed for trip {trip.id}: {quote.price} via {quote.source}, "
            f"next check in {interval} min"
        )

        alert_sent, skipped_reason = await self._maybe_alert(trip, quote, decision, prefs, now)

        return CheckResult(
            trip_id=trip.id,
            current_price=quote.price,
            source=quote.source,
            fare_class=quote.fare_class,
            savings=decision.savings,
            alert_sent=alert_sent,
            alert_skipped_reason=skipped_reason,
            next_check_at=updated.next_check_at if updated else None,
        )

    async def _maybe_alert(
        self,
        trip: Trip,
        quote: TripQuote,
        decision: SavingsDecision,
        prefs: Optional[UserPreferences],
        now: datetime,
    ) -> Tuple[bool, Optional[str]]:
        """Send an alert when the drop qualifies and no limit applies.

        The alert record is stored and the cooldown started before the email
        goes out, so a lost write afterwards cannot cause a second send.
        Returns whether the alert was sent and, when it was not, the reason.
        """
        if not decision.qualifies:
            return False, "below_threshold"
        if not alert_cooldown_expired(trip.last_alert_at, now, self.settings.alert_cooldown_hours):
            return False, "cooldown"
        if prefs is not None and prefs.price_drop_alerts is False:
            return False, "opted_out"

        sent_today = self.trips.count_sent_alerts(trip.user_email, now - timedelta(days=1))
        if sent_today >= self.settings.max_alerts_per_day:
            logger.info(f"Daily alert cap reached for {trip.user_email}")
            return False, "daily_cap"

        logger.info(
            f"Price drop detected for trip {trip.id}: paid {decision.paid_price}, "
            f"now {decision.current_price}, savings {decision.savings} ({decision.savings_percent}%)"
        )

        record = AlertRecord(
            trip_id=trip.id,
            user_email=trip.user_email,
            alert_type="price_drop",
            fare_class=trip.fare_class,
            paid_price=decision.paid_price,
            current_price=decision.current_price,
            savings=decision.savings,
            savings_percent=decision.savings_percent,
            price_source=quote.source,
            created_at=now,
        )
        try:
            alert_id = self.trips.open_alert(record, now)
        except PersistenceError as e:
            logger.error(f"Could not store alert for trip {trip.id}, not sending: {e}")
            return False, "not_stored"

        result = await self._send_alert(trip, decision)

        try:
            self.trips.finish_alert(
                alert_id,
                result.sent,
                message_id=result.message_id,
                error=result.error,
                previous_alert_at=trip.last_alert_at,
                previous_alert_price=trip.last_alert_price,
            )
        except PersistenceError as e:
            logger.error(f"Could not record send outcome of alert {alert_id}: {e}")

        return result.sent, None if result.sent else "send_failed"

    async def _send_alert(self, trip: Trip, decision: SavingsDecision) -> SendResult:
        facts = AlertFacts(
            paid_price=decision.paid_price,
            current_price=decision.current_price,
            savings=decision.savings,
            savings_percent=decision.savings_percent,
            fare_class=trip.fare_class,
        )
        timeout = self.settings.alert_timeout_seconds
        try:
            return await asyncio.wait_for(self.alert_dispatcher.notify(trip, facts), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Alert for trip {trip.id} timed out after {timeout}s")
            return SendResult(sent=False, error=f"timed out after {timeout}s")
        except Exception as e:
            logger.error(f"Failed to send alert for trip {trip.id}: {e}")
            return SendResult(sent=False, error=str(e))
