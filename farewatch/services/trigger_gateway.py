import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from farewatch.config import Settings
from farewatch.errors import CooldownActive, FeatureDisabled
from farewatch.models.check_job import JobPayload, UserTrigger
from farewatch.services.job_store import JobStore
from farewatch.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


class CooldownLedger:
    """Last admitted user trigger per user.

    Process-local and empty after a restart, so the cooldown only holds
    within one process.
    """

    def __init__(self):
        self._last_trigger: Dict[str, datetime] = {}

    def last_trigger(self, user_email: str) -> Optional[datetime]:
        return self._last_trigger.get(user_email)

    def remaining_seconds(self, user_email: str, now: datetime, window: timedelta) -> float:
        last = self._last_trigger.get(user_email)
        if last is None:
            return 0.0
        return max(0.0, (window - (now - last)).total_seconds())

    def record(self, user_email: str, now: datetime) -> None:
        self._last_trigger[user_email] = now

    def snapshot(self) -> Dict[str, str]:
        return {email: ts.isoformat() for email, ts in self._last_trigger.items()}


class TriggerGateway:
    """The single entry point for user-initiated checks."""

    def __init__(
        self,
        jobs: JobStore,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
        ledger: Optional[CooldownLedger] = None,
    ):
        self.jobs = jobs
        self.settings = settings
        self.clock = clock
        self.ledger = ledger or CooldownLedger()
        self.enabled = settings.allow_manual_triggers

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.settings.manual_trigger_cooldown_minutes)

    def queue_manual_job(self, payload: JobPayload) -> int:
        """Admit a manual job and insert it as pending. Returns the job id.

        Raises ``FeatureDisabled`` when manual triggers are off, and
        ``CooldownActive`` for a user trigger inside the user's cooldown.
        The cooldown starts at admission, before the insert.
        """
        if not self.enabled:
            raise FeatureDisabled()

        if isinstance(payload, UserTrigger):
            now = self.clock()
            remaining = self.ledger.remaining_seconds(payload.user_email, now, self.cooldown)
            if remaining > 0:
                raise CooldownActive(payload.user_email, remaining)
            self.ledger.record(payload.user_email, now)

        job_id = self.jobs.insert(payload, self.clock())
        logger.info(f"Manual job {job_id} queued ({payload.job_type.value}, priority {payload.priority})")
        return job_id
