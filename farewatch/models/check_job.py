import enum
from dataclasses import dataclass
from typing import Union

from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, Enum, ForeignKey, Index, CheckConstraint
from sqlalchemy.sql import func
from farewatch.database import Base


class JobType(str, enum.Enum):
    MANUAL_CHECK = "manual_check"
    USER_TRIGGER = "user_trigger"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ManualCheck:
    """Check one trip."""
    trip_id: int

    job_type = JobType.MANUAL_CHECK
    priority = 5


@dataclass(frozen=True)
class UserTrigger:
    """Check every active trip of one user, sequentially."""
    user_email: str

    job_type = JobType.USER_TRIGGER
    priority = 10


JobPayload = Union[ManualCheck, UserTrigger]


def payload_for(job_type, trip_id=None, user_email=None) -> JobPayload:
    """Build the typed payload for a job type; the matching field is required."""
    job_type = JobType(job_type)
    if job_type == JobType.MANUAL_CHECK:
        if trip_id is None:
            raise ValueError("manual_check requires trip_id")
        return ManualCheck(trip_id=int(trip_id))
    if not user_email:
        raise ValueError("user_trigger requires user_email")
    return UserTrigger(user_email=user_email)


class CheckJob(Base):
    """A queued manual or user-triggered price check."""
    __tablename__ = "check_jobs"

    id = Column(Integer, primary_key=True, index=True)
    job_type = Column(Enum(JobType), nullable=False)
    status = Column(Enum(JobStatus), nullable=False, default=JobStatus.PENDING)
    priority = Column(Integer, nullable=False, default=0)

    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=True)
    user_email = Column(String(255), nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)

    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_check_jobs_queue", "status", "priority", "created_at"),
        CheckConstraint(
            "(job_type != 'MANUAL_CHECK' OR trip_id IS NOT NULL) AND "
            "(job_type != 'USER_TRIGGER' OR user_email IS NOT NULL)",
            name="ck_check_jobs_payload",
        ),
    )

    @classmethod
    def from_payload(cls, payload: JobPayload, created_at=None) -> "CheckJob":
        job = cls(
            job_type=payload.job_type,
            status=JobStatus.PENDING,
            priority=payload.priority,
        )
        if created_at is not None:
            job.created_at = created_at
        if isinstance(payload, ManualCheck):
            job.trip_id = payload.trip_id
        else:
            job.user_email = payload.user_email
        return job

    @property
    def payload(self) -> JobPayload:
        if self.job_type == JobType.MANUAL_CHECK:
            return ManualCheck(trip_id=self.trip_id)
        return UserTrigger(user_email=self.user_email)

    def __repr__(self) -> str:
        return f"<CheckJob {self.id} {self.job_type.value}: {self.status.value}>"
