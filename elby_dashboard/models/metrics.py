"""
SQLAlchemy models for per-user and per-school engagement metrics.

A UserMetrics row is written by two independent subsystems. The batch
calculator owns the log-derived columns in BATCH_FIELDS, the event
observers own the columns in EVENT_FIELDS. Neither writer touches the
other's columns.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Float, Index, UniqueConstraint
)
from sqlalchemy.sql import func
import enum

from elby_dashboard.core.database import Base


class PeriodType(str, enum.Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


BATCH_FIELDS = frozenset({
    "period_end",
    "total_actions",
    "active_days",
    "first_access",
    "last_access",
    "time_spent_seconds",
    "resources_viewed",
    "resources_unique",
    "videos_started",
    "pages_viewed",
    "files_downloaded",
    "forum_views",
    "forum_posts",
    "forum_replies",
    "chat_messages",
    "assignments_viewed",
    "activities_total",
})

EVENT_FIELDS = frozenset({
    "quizzes_attempted",
    "quizzes_avg_score",
    "assignments_submitted",
    "activities_completed",
    "course_progress",
})


class UserMetrics(Base):
    __tablename__ = "elby_user_metrics"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False)
    course_id = Column(Integer, nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    period_type = Column(String(10), nullable=False, default=PeriodType.WEEKLY.value)

    # Batch-owned: derived from the activity log
    total_actions = Column(Integer, nullable=False, default=0)
    active_days = Column(Integer, nullable=False, default=0)
    first_access = Column(DateTime, nullable=True)
    last_access = Column(DateTime, nullable=True)
    time_spent_seconds = Column(Integer, nullable=False, default=0)
    resources_viewed = Column(Integer, nullable=False, default=0)
    resources_unique = Column(Integer, nullable=False, default=0)
    videos_started = Column(Integer, nullable=False, default=0)
    pages_viewed = Column(Integer, nullable=False, default=0)
    files_downloaded = Column(Integer, nullable=False, default=0)
    forum_views = Column(Integer, nullable=False, default=0)
    forum_posts = Column(Integer, nullable=False, default=0)
    forum_replies = Column(Integer, nullable=False, default=0)
    chat_messages = Column(Integer, nullable=False, default=0)
    assignments_viewed = Column(Integer, nullable=False, default=0)
    activities_total = Column(Integer, nullable=False, default=0)

    # Event-owned: maintained by observers
    quizzes_attempted = Column(Integer, nullable=False, default=0)
    quizzes_avg_score = Column(Float, nullable=True)
    assignments_submitted = Column(Integer, nullable=False, default=0)
    activities_completed = Column(Integer, nullable=False, default=0)
    course_progress = Column(Float, nullable=True)

    # Reserved, no writer yet
    assignments_avg_score = Column(Float, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    __table_args__ = (
        UniqueConstraint(
            'user_id', 'course_id', 'period_start', 'period_type',
            name='uq_elby_user_metrics_period'
        ),
        Index('idx_elby_user_metrics_period', 'period_type', 'period_start'),
    )


class SchoolMetrics(Base):
    """Roll-up of UserMetrics per school; course_id 0 is the school-wide row."""

    __tablename__ = "elby_school_metrics"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, nullable=False)
    course_id = Column(Integer, nullable=False, default=0)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    period_type = Column(String(10), nullable=False)

    total_enrolled = Column(Integer, nullable=False, default=0)
    total_active = Column(Integer, nullable=False, default=0)
    total_inactive = Column(Integer, nullable=False, default=0)
    new_enrollments = Column(Integer, nullable=False, default=0)

    avg_actions_per_student = Column(Float, nullable=True)
    avg_active_days = Column(Float, nullable=True)
    avg_time_spent_minutes = Column(Float, nullable=True)
    total_resource_views = Column(Integer, nullable=False, default=0)
    avg_resources_per_student = Column(Float, nullable=True)
    total_submissions = Column(Integer, nullable=False, default=0)
    total_quiz_attempts = Column(Integer, nullable=False, default=0)
    avg_assignment_score = Column(Float, nullable=True)
    avg_quiz_score = Column(Float, nullable=True)
    submission_rate = Column(Float, nullable=True)
    avg_course_progress = Column(Float, nullable=True)
    completion_rate = Column(Float, nullable=True)

    high_engagement_count = Column(Integer, nullable=False, default=0)
    medium_engagement_count = Column(Integer, nullable=False, default=0)
    low_engagement_count = Column(Integer, nullable=False, default=0)
    at_risk_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    __table_args__ = (
        UniqueConstraint(
            'school_id', 'course_id', 'period_start', 'period_type',
            name='uq_elby_school_metrics_period'
        ),
    )
