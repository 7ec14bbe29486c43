"""
Test fixtures for Farewatch tests.
"""
import asyncio
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Set

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from farewatch.config import Settings
from farewatch.database import Base, get_db
from farewatch.errors import UpstreamUnavailable
from farewatch.main import app
from farewatch.models.trip import Trip
from farewatch.scheduler import get_monitor
from farewatch.services.alert_dispatcher import AlertDispatcher, SendResult
from farewatch.services.monitor import RecheckMonitor
from farewatch.services.price_checker import PriceChecker, SegmentFares


# Create test database engine (SQLite in-memory, one shared connection)
TEST_DATABASE_URL = "sqlite://"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Enable foreign key constraints for SQLite
@event.listens_for(test_engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

NOW = datetime(2026, 3, 10, 12, 0, 0)


class FakeClock:
    """Settable naive-UTC clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakePriceChecker(PriceChecker):
    """Returns configured fares per route, or raises when told to fail."""

    source = "fake"

    def __init__(self, fares: Optional[Dict[str, Decimal]] = None):
        self.fares = fares or {"main_cabin": Decimal("400")}
        self.route_fares: Dict[str, Dict[str, Decimal]] = {}
        self.failing_routes: Set[str] = set()
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []
        self.closed = False

    async def fetch_fares(self, origin, destination, departure_date, pax_count=1) -> SegmentFares:
        self.calls.append((origin, destination, departure_date, pax_count))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        route = f"{origin}-{destination}"
        if route in self.failing_routes:
            raise UpstreamUnavailable(f"No flight offers found for {route}")
        fares = self.route_fares.get(route, self.fares)
        return SegmentFares(fares=dict(fares), source=self.source)

    async def close(self):
        self.closed = True


class FakeAlertDispatcher(AlertDispatcher):

    def __init__(self):
        self.sent: List[tuple] = []
        self.fail = False

    async def notify(self, trip, facts) -> SendResult:
        if self.fail:
            return SendResult(sent=False, error="smtp down")
        self.sent.append((trip.id, facts))
        return SendResult(sent=True, message_id=f"<alert-{len(self.sent)}@test>")


async def no_sleep(seconds: float) -> None:
    return None


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url=TEST_DATABASE_URL,
        timezone="UTC",
        segment_delay_ms=0,
        rate_limit_delay_ms=0,
        check_timeout_seconds=5,
        shutdown_timeout_seconds=1,
    )
    values.update(overrides)
    return Settings(**values)


def make_trip(db, **overrides) -> Trip:
    """Insert a committed, schedulable trip departing in 30 days."""
    values = dict(
        user_email="traveler@example.com",
        name="Spring break",
        segments=[{
            "origin": "JFK",
            "destination": "LAX",
            "date": (NOW.date() + timedelta(days=30)).isoformat(),
            "flight_number": "AA1",
        }],
        fare_class="main_cabin",
        paid_price=Decimal("450.00"),
        check_enabled=True,
        price_history=[],
    )
    values.update(overrides)
    trip = Trip(**values)
    db.add(trip)
    db.commit()
    db.refresh(trip)
    return trip


def segment_on(day: date, origin: str = "JFK", destination: str = "LAX") -> dict:
    return {"origin": origin, "destination": destination, "date": day.isoformat()}


@pytest.fixture(scope="function")
def session_factory():
    """
    Session factory over a fresh in-memory database.
    Creates all tables before the test and drops them after.
    """
    Base.metadata.create_all(bind=test_engine)
    try:
        yield TestSessionLocal
    finally:
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def price_checker():
    return FakePriceChecker()


@pytest.fixture
def alert_dispatcher():
    return FakeAlertDispatcher()


@pytest.fixture
def monitor(settings, session_factory, price_checker, alert_dispatcher, clock):
    return RecheckMonitor(
        settings=settings,
        session_factory=session_factory,
        price_checker=price_checker,
        alert_dispatcher=alert_dispatcher,
        clock=clock,
        sleep=no_sleep,
    )


@pytest.fixture(scope="function")
def override_get_db(db_session):
    """
    Override the get_db dependency to use the test database session.
    """
    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    return _override_get_db


@pytest.fixture(scope="function")
async def client(override_get_db, monitor):
    """
    Create an async test client with the database and monitor dependencies overridden.
    """
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_monitor] = lambda: monitor

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Clear overrides after test
    app.dependency_overrides.clear()
