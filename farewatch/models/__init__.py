# SQLAlchemy models
from farewatch.models.trip import Trip, TripStatus, FareClass
from farewatch.models.check_job import CheckJob, JobType, JobStatus, ManualCheck, UserTrigger
from farewatch.models.alert import AlertRecord
from farewatch.models.user_preferences import UserPreferences

__all__ = [
    "Trip",
    "CheckJob",
    "AlertRecord",
    "UserPreferences",
    # Enums
    "TripStatus",
    "FareClass",
    "JobType",
    "JobStatus",
    # Job payloads
    "ManualCheck",
    "UserTrigger",
]
