from .jobs import (
    ScheduledJob,
    ComputeUserMetricsTask,
    AggregateSchoolMetricsTask,
    RefreshSDMSCacheTask,
    CleanupOldMetricsTask,
    AutoLinkByEmailTask,
)
from .scheduler import TaskScheduler, build_jobs

__all__ = [
    "ScheduledJob",
    "ComputeUserMetricsTask",
    "AggregateSchoolMetricsTask",
    "RefreshSDMSCacheTask",
    "CleanupOldMetricsTask",
    "AutoLinkByEmailTask",
    "TaskScheduler",
    "build_jobs",
]
