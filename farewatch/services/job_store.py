import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import and_, func, or_

from farewatch.models.check_job import CheckJob, JobPayload, JobStatus, JobType
from farewatch.services.store import SessionStore

logger = logging.getLogger(__name__)


class JobStore(SessionStore):
    """Job Store: the manual check queue in the ``check_jobs`` table."""

    def insert(self, payload: JobPayload, now: datetime) -> int:
        with self._session("insert") as db:
            job = CheckJob.from_payload(payload, created_at=now)
            db.add(job)
            db.commit()
            return job.id

    def get(self, job_id: int) -> Optional[CheckJob]:
        with self._session("get") as db:
            return db.get(CheckJob, job_id)

    def fetch_pending(self, limit: int) -> List[CheckJob]:
        """Pending jobs, highest priority first, oldest first within a priority."""
        with self._session("fetch_pending") as db:
            return (
                db.query(CheckJob)
                .filter(
                    CheckJob.status == JobStatus.PENDING,
                    CheckJob.job_type.in_([JobType.MANUAL_CHECK, JobType.USER_TRIGGER]),
                )
                .order_by(CheckJob.priority.desc(), CheckJob.created_at.asc(), CheckJob.id.asc())
                .limit(limit)
                .all()
            )

    def claim(self, job_id: int, now: datetime) -> bool:
        """Move a pending job to processing. False if another processor got there first."""
        with self._session("claim") as db:
            matched = (
                db.query(CheckJob)
                .filter(CheckJob.id == job_id, CheckJob.status == JobStatus.PENDING)
                .update(
                    {CheckJob.status: JobStatus.PROCESSING, CheckJob.started_at: now},
                    synchronize_session=False,
                )
            )
            db.commit()
            return matched == 1

    def complete(self, job_id: int, now: datetime, result: dict) -> None:
        with self._session("complete") as db:
            db.query(CheckJob).filter(
                CheckJob.id == job_id, CheckJob.status == JobStatus.PROCESSING
            ).update(
                {CheckJob.status: JobStatus.COMPLETED, CheckJob.completed_at: now, CheckJob.result: result},
                synchronize_session=False,
            )
            db.commit()

    def fail(self, job_id: int, now: datetime, error: str) -> None:
        with self._session("fail") as db:
            db.query(CheckJob).filter(
                CheckJob.id == job_id, CheckJob.status == JobStatus.PROCESSING
            ).update(
                {CheckJob.status: JobStatus.FAILED, CheckJob.failed_at: now, CheckJob.error: error},
                synchronize_session=False,
            )
            db.commit()

    def delete_terminal_before(self, cutoff: datetime) -> int:
        """Delete completed/failed jobs whose terminal timestamp is older than ``cutoff``."""
        with self._session("delete_terminal_before") as db:
            deleted = (
                db.query(CheckJob)
                .filter(
                    or_(
                        and_(CheckJob.status == JobStatus.COMPLETED, CheckJob.completed_at < cutoff),
                        and_(CheckJob.status == JobStatus.FAILED, CheckJob.failed_at < cutoff),
                    )
                )
                .delete(synchronize_session=False)
            )
            db.commit()
            return deleted

    def counts_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        with self._session("counts_by_status") as db:
            rows = db.query(CheckJob.status, func.count(CheckJob.id)).group_by(CheckJob.status).all()
        for status, count in rows:
            counts[status.value] = count
        counts["total"] = sum(counts.values())
        return counts
