import enum
from datetime import date

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Boolean, Numeric, JSON, Text, Enum, Index,
)
from sqlalchemy.orm import validates
from sqlalchemy.sql import func
from farewatch.database import Base


class TripStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    EXPIRED = "expired"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


# Statuses the automatic scheduler never picks up.
UNSCHEDULABLE_STATUSES = (TripStatus.INACTIVE, TripStatus.PAUSED, TripStatus.ARCHIVED)


class FareClass(str, enum.Enum):
    BASIC_ECONOMY = "basic_economy"
    MAIN_CABIN = "main_cabin"
    PREMIUM_ECONOMY = "premium_economy"
    BUSINESS = "business"
    FIRST = "first"


class Trip(Base):
    """
    A booked trip whose fare is re-checked for price drops.

    Segments are stored as a JSON list of
    ``{"origin", "destination", "date" (YYYY-MM-DD), "flight_number"}``.
    ``departure_date`` mirrors the first segment's date so the due query can
    filter on it in SQL.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True)
    user_email = Column(String(255), nullable=False, index=True)
    name = Column(String(200), nullable=False, default="")
    record_locator = Column(String(20), nullable=True)

    status = Column(Enum(TripStatus), nullable=False, default=TripStatus.ACTIVE)
    archived_at = Column(DateTime, nullable=True)

    # Itinerary
    segments = Column(JSON, nullable=False, default=list)
    departure_date = Column(Date, nullable=True)
    fare_class = Column(String(30), nullable=False, default=FareClass.MAIN_CABIN.value)
    pax_count = Column(Integer, nullable=False, default=1)

    # Scheduling
    check_enabled = Column(Boolean, nullable=False, default=True)
    next_check_at = Column(DateTime, nullable=True)
    check_every_minutes = Column(Integer, nullable=True)
    check_interval = Column(Integer, nullable=True)  # effective interval last applied
    priority = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    last_check_error = Column(Text, nullable=True)
    last_check_error_at = Column(DateTime, nullable=True)
    last_checked_at = Column(DateTime, nullable=True)
    last_successful_check = Column(DateTime, nullable=True)

    # Check lease (optimistic lock against concurrent executors)
    check_lease_token = Column(String(64), nullable=True)
    check_lease_expires_at = Column(DateTime, nullable=True)

    # Price facts
    paid_price = Column(Numeric(10, 2), nullable=False)
    threshold_usd = Column(Numeric(10, 2), nullable=True)
    last_checked_price = Column(Numeric(10, 2), nullable=True)
    last_checked_fares = Column(JSON, nullable=True)
    price_source = Column(String(20), nullable=True)
    lowest_seen = Column(Numeric(10, 2), nullable=True)
    lowest_seen_at = Column(DateTime, nullable=True)
    lowest_seen_by_fare_class = Column(JSON, nullable=True)
    price_history = Column(JSON, nullable=False, default=list)

    last_alert_at = Column(DateTime, nullable=True)
    last_alert_price = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_trips_due", "check_enabled", "next_check_at", "departure_date"),
    )

    @validates("segments")
    def _sync_departure_date(self, key, segments):
        self.departure_date = first_segment_date(segments)
        return segments

    def __repr__(self) -> str:
        return f"<Trip {self.id} {self.user_email}: {self.name}>"


def first_segment_date(segments) -> date | None:
    if not segments:
        return None
    raw = segments[0].get("date")
    if not raw:
        return None
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw)[:10])
