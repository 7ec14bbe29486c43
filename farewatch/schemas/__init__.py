from farewatch.schemas.monitoring import (
    TriggerRequest,
    JobQueuedResponse,
    JobResponse,
    IntervalUpdate,
    TripMonitoringResponse,
    MonitoringStats,
)

__all__ = [
    "TriggerRequest",
    "JobQueuedResponse",
    "JobResponse",
    "IntervalUpdate",
    "TripMonitoringResponse",
    "MonitoringStats",
]
