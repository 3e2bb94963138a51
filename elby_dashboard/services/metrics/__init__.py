from .periods import week_bounds, month_bounds
from .store import MetricsStore
from .calculator import MetricsCalculator, estimate_time_spent, summarize_activity
from .observer import (
    MetricsEventObserver,
    QuizAttemptSubmitted,
    AssignmentSubmissionCreated,
    CourseModuleCompletionUpdated,
    CourseCompleted,
)
from .aggregator import SchoolAggregator, engagement_tiers

__all__ = [
    "week_bounds",
    "month_bounds",
    "MetricsStore",
    "MetricsCalculator",
    "estimate_time_spent",
    "summarize_activity",
    "MetricsEventObserver",
    "QuizAttemptSubmitted",
    "AssignmentSubmissionCreated",
    "CourseModuleCompletionUpdated",
    "CourseCompleted",
    "SchoolAggregator",
    "engagement_tiers",
]
