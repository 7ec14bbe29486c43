from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_in(tz_name: str, now: datetime | None = None) -> date:
    """Calendar date in ``tz_name`` for the naive UTC instant ``now``."""
    now = now or utcnow()
    return now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name)).date()


def isoformat_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
