"""
Fare lookup for booked trips.

A price checker answers one question per flight segment: what are the
cheapest current fares, by normalized fare class, for this origin,
destination, date and passenger count. ``quote_trip`` walks a trip's
segments one at a time (the upstream API is rate limited) and turns the
per-segment fares into a single comparable trip price.
"""
import asyncio
import hashlib
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import httpx

from farewatch.config import Settings, get_settings
from farewatch.errors import UpstreamUnavailable
from farewatch.models.trip import FareClass
from farewatch.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

CABIN_TO_FARE_CLASS = {
    "ECONOMY": FareClass.MAIN_CABIN.value,
    "PREMIUM_ECONOMY": FareClass.PREMIUM_ECONOMY.value,
    "BUSINESS": FareClass.BUSINESS.value,
    "FIRST": FareClass.FIRST.value,
}

# Fare basis letters that mark an economy fare as basic economy.
BASIC_ECONOMY_MARKERS = ("B", "X", "E")


@dataclass
class SegmentFares:
    """Lowest fare per fare class for one segment."""
    fares: Dict[str, Decimal]
    source: str


@dataclass
class TripQuote:
    price: Decimal
    fare_class: str
    source: str
    fares: Dict[str, Decimal] = field(default_factory=dict)
    exact_fare_class: bool = True


class PriceChecker(ABC):
    """Consumed interface: fares for one segment, or ``UpstreamUnavailable``."""

    source = "unknown"

    @abstractmethod
    async def fetch_fares(
        self,
        origin: str,
        destination: str,
        departure_date: date,
        pax_count: int = 1,
    ) -> SegmentFares:
        ...

    async def close(self):
        pass


def map_fare_class(offer: dict) -> str:
    """Normalize an Amadeus flight offer to one of our fare classes."""
    try:
        details = offer["travelerPricings"][0]["fareDetailsBySegment"][0]
    except (KeyError, IndexError, TypeError):
        return FareClass.MAIN_CABIN.value

    cabin = details.get("cabin")
    fare_basis = details.get("fareBasis") or ""

    if cabin == "ECONOMY" and any(marker in fare_basis for marker in BASIC_ECONOMY_MARKERS):
        return FareClass.BASIC_ECONOMY.value
    return CABIN_TO_FARE_CLASS.get(cabin, FareClass.MAIN_CABIN.value)


class AmadeusPriceChecker(PriceChecker):
    """Client for the Amadeus Flight Offers Search API."""

    source = "amadeus"

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        currency_code: str = "USD",
    ):
        settings = get_settings()
        self.client_id = client_id if client_id is not None else settings.amadeus_client_id
        self.client_secret = client_secret if client_secret is not None else settings.amadeus_client_secret
        self.base_url = (base_url or settings.amadeus_base_url).rstrip("/")
        self.currency_code = currency_code
        self._token: Optional[str] = None
        self._token_expires: Optional[datetime] = None
        self._client: Optional[httpx.AsyncClient] = None

    def is_available(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get_token(self) -> str:
        if self._token and self._token_expires and utcnow() < self._token_expires:
            return self._token

        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/v1/security/oauth2/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Amadeus auth failed: {e}") from e

        if "access_token" not in data:
            raise UpstreamUnavailable("Amadeus auth returned no access token")

        self._token = data["access_token"]
        # Refresh a minute early
        self._token_expires = utcnow() + timedelta(seconds=data.get("expires_in", 1799) - 60)
        logger.info("Amadeus token obtained")
        return self._token

    async def fetch_fares(
        self,
        origin: str,
        destination: str,
        departure_date: date,
        pax_count: int = 1,
    ) -> SegmentFares:
        if not self.is_available():
            raise UpstreamUnavailable("Amadeus API credentials not configured")

        token = await self._get_token()
        client = await self._get_client()

        params = {
            "originLocationCode": origin,
            "destinationLocationCode": destination,
            "departureDate": departure_date.isoformat(),
            "adults": str(pax_count),
            "currencyCode": self.currency_code,
            "max": "10",
        }

        try:
            response = await client.get(
                f"{self.base_url}/v2/shopping/flight-offers",
                headers={"Authorization": f"Bearer {token}"},
                params=params,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(f"Amadeus HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Amadeus request failed: {e}") from e

        fares: Dict[str, Decimal] = {}
        for offer in data.get("data", []):
            try:
                price = Decimal(str(offer["price"]["total"]))
            except (KeyError, TypeError, ArithmeticError):
                continue
            fare_class = map_fare_class(offer)
            if fare_class not in fares or price < fares[fare_class]:
                fares[fare_class] = price

        if not fares:
            raise UpstreamUnavailable(f"No flight offers found for {origin}-{destination} on {departure_date}")

        logger.debug(f"Amadeus fares {origin}-{destination} {departure_date}: {fares}")
        return SegmentFares(fares=fares, source=self.source)


class MockPriceChecker(PriceChecker):
    """Plausible random fares for local testing without an API account."""

    source = "mock"

    CLASS_MULTIPLIERS = {
        FareClass.BASIC_ECONOMY.value: Decimal("0.85"),
        FareClass.MAIN_CABIN.value: Decimal("1.00"),
        FareClass.PREMIUM_ECONOMY.value: Decimal("1.60"),
        FareClass.BUSINESS.value: Decimal("3.20"),
        FareClass.FIRST.value: Decimal("5.00"),
    }

    def __init__(self, variance: float = 0.2, seed: Optional[int] = None):
        self.variance = variance
        self._random = random.Random(seed)

    def _base_price(self, origin: str, destination: str) -> Decimal:
        digest = hashlib.sha256(f"{origin}-{destination}".encode()).hexdigest()
        return Decimal(150 + int(digest[:8], 16) % 450)

    async def fetch_fares(
        self,
        origin: str,
        destination: str,
        departure_date: date,
        pax_count: int = 1,
    ) -> SegmentFares:
        base = self._base_price(origin, destination) * pax_count
        swing = Decimal(str(1 + self._random.uniform(-self.variance, self.variance)))
        fares = {
            fare_class: (base * multiplier * swing).quantize(Decimal("1"))
            for fare_class, multiplier in self.CLASS_MULTIPLIERS.items()
        }
        logger.warning(f"Using mock fares for {origin}-{destination}")
        return SegmentFares(fares=fares, source=self.source)


class FallbackPriceChecker(PriceChecker):
    """Try ``primary``; on ``UpstreamUnavailable`` answer from ``fallback``."""

    def __init__(self, primary: PriceChecker, fallback: PriceChecker):
        self.primary = primary
        self.fallback = fallback
        self.source = primary.source

    async def fetch_fares(self, origin, destination, departure_date, pax_count=1) -> SegmentFares:
        try:
            return await self.primary.fetch_fares(origin, destination, departure_date, pax_count)
        except UpstreamUnavailable as e:
            logger.warning(f"{self.primary.source} failed, falling back to {self.fallback.source}: {e}")
            return await self.fallback.fetch_fares(origin, destination, departure_date, pax_count)

    async def close(self):
        await self.primary.close()
        await self.fallback.close()


def build_price_checker(settings: Optional[Settings] = None) -> PriceChecker:
    settings = settings or get_settings()
    if settings.use_mock_prices:
        logger.warning("USE_MOCK_PRICES is set, price checks use mock data")
        return MockPriceChecker()

    checker = AmadeusPriceChecker(
        client_id=settings.amadeus_client_id,
        client_secret=settings.amadeus_client_secret,
        base_url=settings.amadeus_base_url,
    )
    if settings.enable_mock_fallback:
        return FallbackPriceChecker(checker, MockPriceChecker())
    return checker


def _segment_date(segment: dict) -> date:
    raw = segment["date"]
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw)[:10])


async def quote_trip(
    checker: PriceChecker,
    segments: List[dict],
    fare_class: str,
    pax_count: int = 1,
    segment_delay_seconds: float = 1.0,
) -> TripQuote:
    """Price a whole itinerary in the trip's fare class.

    Segments are looked up sequentially with ``segment_delay_seconds``
    between calls. When a segment has no fare in the requested class its
    cheapest fare is used instead.
    """
    usable = [s for s in segments if s.get("origin") and s.get("destination") and s.get("date")]
    if not usable:
        raise UpstreamUnavailable("Trip has no segment with origin, destination and date")

    total = Decimal("0")
    exact = True
    per_class: Optional[Dict[str, Decimal]] = None
    source = checker.source

    for index, segment in enumerate(usable):
        if index and segment_delay_seconds > 0:
            await asyncio.sleep(segment_delay_seconds)

        result = await checker.fetch_fares(
            segment["origin"],
            segment["destination"],
            _segment_date(segment),
            pax_count,
        )
        if not result.fares:
            raise UpstreamUnavailable(
                f"No fares for {segment['origin']}-{segment['destination']}"
            )
        source = result.source

        if fare_class in result.fares:
            total += result.fares[fare_class]
        else:
            exact = False
            total += min(result.fares.values())

        # Per-class totals only for classes offered on every segment
        if per_class is None:
            per_class = dict(result.fares)
        else:
            per_class = {
                cls: per_class[cls] + price
                for cls, price in result.fares.items()
                if cls in per_class
            }

    if not exact:
        logger.info(f"Fare class {fare_class} not offered on every segment, using lowest available")

    return TripQuote(
        price=total,
        fare_class=fare_class,
        source=source,
        fares=per_class or {},
        exact_fare_class=exact,
    )
