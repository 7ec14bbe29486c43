from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from farewatch.models.check_job import JobType, JobStatus


class TriggerRequest(BaseModel):
    type: JobType
    trip_id: Optional[int] = None
    user_email: Optional[str] = None


class JobQueuedResponse(BaseModel):
    job_id: int
    status: JobStatus = JobStatus.PENDING


class JobResponse(BaseModel):
    id: int
    job_type: JobType
    status: JobStatus
    priority: int
    trip_id: Optional[int] = None
    user_email: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    class Config:
        from_attributes = True


class IntervalUpdate(BaseModel):
    interval: int = Field(..., description="Minutes between automatic checks")


class TripMonitoringResponse(BaseModel):
    trip_id: int
    name: str
    monitoring_status: str
    check_enabled: bool
    check_interval: Optional[int] = None
    next_check_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None
    last_successful_check: Optional[datetime] = None
    failure_count: int = 0
    last_check_error: Optional[str] = None
    paid_price: Decimal
    last_checked_price: Optional[Decimal] = None
    lowest_seen: Optional[Decimal] = None
    price_source: Optional[str] = None
    in_flight: bool = False


class MonitoringStats(BaseModel):
    user_email: str
    total_trips: int
    monitored_trips: int
    trips_with_errors: int
    recent_alerts: int
    alerts_sent: int
    total_savings_found: Decimal
    days: int = 30
