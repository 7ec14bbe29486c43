"""Utility modules for Farewatch."""

from farewatch.utils.timeutil import utcnow, today_in, isoformat_or_none

__all__ = ["utcnow", "today_in", "isoformat_or_none"]
