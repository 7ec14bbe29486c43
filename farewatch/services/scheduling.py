"""
Scheduling policy: check intervals, failure backoff and alert eligibility.

Pure functions so the executor, the API and the tests share one definition.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


def dispatch_cadence_minutes(configured: int) -> int:
    """The automatic dispatch tick runs every 1 to 30 minutes."""
    return clamp(configured, 1, 30)


def effective_interval_minutes(
    trip_interval: Optional[int],
    user_interval: Optional[int],
    default_interval: int,
    min_interval: int,
    max_interval: int,
) -> int:
    """First configured of trip, user preference, default; then clamped."""
    interval = trip_interval or user_interval or default_interval
    return clamp(interval, min_interval, max_interval)


def backoff_minutes(failure_count: int, base: int = 30, cap: int = 120) -> int:
    """Delay after a failed check, given the failures recorded before it.

    0, 1, 2, 3 prior failures -> 30, 60, 120, 120 minutes.
    """
    failure_count = max(0, failure_count or 0)
    # Past the cap the exponent only grows the intermediate value.
    if failure_count >= 16:
        return cap
    return min(cap, base * (2 ** failure_count))


def next_check_after(now: datetime, minutes: int) -> datetime:
    return now + timedelta(minutes=minutes)


@dataclass
class SavingsDecision:
    paid_price: Decimal
    current_price: Decimal
    savings: Decimal
    savings_percent: Decimal
    threshold: Decimal
    qualifies: bool


def evaluate_savings(
    paid_price,
    current_price,
    threshold=None,
    min_amount=10,
    min_percent=2,
) -> SavingsDecision:
    """Decide whether a price drop is large enough to alert on.

    The drop must reach the trip's own threshold (or ``min_amount`` when the
    trip has none), the global amount floor and the global percent floor.
    """
    paid = Decimal(str(paid_price))
    current = Decimal(str(current_price))
    floor = Decimal(str(min_amount))
    limit = Decimal(str(threshold)) if threshold is not None else floor

    savings = paid - current
    percent = (savings / paid * 100) if paid > 0 else Decimal("0")

    qualifies = (
        savings > 0
        and savings >= limit
        and savings >= floor
        and percent >= Decimal(str(min_percent))
    )
    return SavingsDecision(
        paid_price=paid,
        current_price=current,
        savings=savings,
        savings_percent=percent.quantize(Decimal("0.01")),
        threshold=limit,
        qualifies=qualifies,
    )


def alert_cooldown_expired(last_alert_at: Optional[datetime], now: datetime, cooldown_hours: int) -> bool:
    if last_alert_at is None:
        return True
    return now - last_alert_at > timedelta(hours=cooldown_hours)


def append_price_history(history, entry: dict, limit: int = 50) -> list:
    """Append ``entry`` and keep only the most recent ``limit`` entries."""
    updated = list(history or [])
    updated.append(entry)
    return updated[-limit:]
