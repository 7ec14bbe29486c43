"""
Exception hierarchy for the recheck scheduler.

Upstream failures are recovered by backoff, trigger rejections are returned to
the caller, persistence failures leave the affected trip or job to be picked
up again on the next tick.
"""
import math
from typing import Optional


class FarewatchError(Exception):
    """Base class for all farewatch errors."""


class ConfigurationError(FarewatchError):
    """Fatal at startup: the process must not run with this configuration."""


class UpstreamUnavailable(FarewatchError):
    """The price source could not produce a price for the trip."""


class CheckTimeout(UpstreamUnavailable):
    """The price lookup did not finish within the per-check time bound."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Price check timed out after {timeout_seconds:g}s")


class TriggerRejected(FarewatchError):
    """A manual trigger was not admitted."""

    code = "trigger_rejected"

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self)}


class FeatureDisabled(TriggerRejected):
    code = "feature_disabled"

    def __init__(self, message: str = "Manual triggers are disabled"):
        super().__init__(message)


class CooldownActive(TriggerRejected):
    code = "cooldown_active"

    def __init__(self, user_email: str, remaining_seconds: float):
        self.user_email = user_email
        self.remaining_seconds = max(0.0, remaining_seconds)
        self.wait_minutes = max(1, math.ceil(self.remaining_seconds / 60))
        super().__init__(
            f"Please wait {self.wait_minutes} minutes before triggering another check"
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retry_after_seconds"] = math.ceil(self.remaining_seconds)
        data["wait_minutes"] = self.wait_minutes
        return data


class JobExecutionFailure(FarewatchError):
    """A manual job could not be executed; recorded on the job, never retried."""


class PersistenceError(FarewatchError):
    """A store operation failed and was rolled back."""


class LeaseHeld(FarewatchError):
    """Another executor is already checking this trip."""

    def __init__(self, trip_id: int):
        self.trip_id = trip_id
        super().__init__(f"Trip {trip_id} is already being checked")


class TripNotFound(FarewatchError):
    def __init__(self, trip_id: int, message: Optional[str] = None):
        self.trip_id = trip_id
        super().__init__(message or f"Trip {trip_id} not found")
