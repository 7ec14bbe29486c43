"""Farewatch: re-checks booked flight fares and alerts on price drops."""

__version__ = "0.1.0"
