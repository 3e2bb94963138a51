"""
Batch engagement metrics computed from the activity log.

For every (user, course) pair active in a period the calculator rebuilds
the log-derived counters and writes them through MetricsStore's batch path,
which leaves the observer-maintained columns alone.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from elby_dashboard.core.sdms_config import MetricsConfig
from elby_dashboard.integrations.sdms.errors import BatchResult
from elby_dashboard.models.host import ActivityLogEntry, CourseModule, SITE_COURSE_ID
from elby_dashboard.models.metrics import UserMetrics
from .store import MetricsStore


logger = logging.getLogger(__name__)


def estimate_time_spent(timestamps: Sequence[float], session_gap: int = 1800) -> int:
    """
    Session-gap estimate of active time in seconds.

    Consecutive gaps shorter than ``session_gap`` are summed; longer gaps are
    idle time between sessions and count for nothing. This is a lower bound,
    the time after the last event of each session is never counted.
    """
    if len(timestamps) < 2:
        return 0

    ordered = sorted(timestamps)
    total = 0
    for previous, current in zip(ordered, ordered[1:]):
        gap = current - previous
        if gap < session_gap:
            total += gap
    return int(total)


def _epoch(value: datetime) -> float:
    return value.replace(tzinfo=timezone.utc).timestamp()


@dataclass
class ActivitySummary:
    """Log-derived counters for one user in one course and period."""
    total_actions: int = 0
    active_days: int = 0
    first_access: Optional[datetime] = None
    last_access: Optional[datetime] = None
    time_spent_seconds: int = 0
    resources_viewed: int = 0
    resources_unique: int = 0
    videos_started: int = 0
    pages_viewed: int = 0
    files_downloaded: int = 0
    forum_views: int = 0
    forum_posts: int = 0
    forum_replies: int = 0
    chat_messages: int = 0
    assignments_viewed: int = 0
    _days: Set[str] = field(default_factory=set, repr=False)
    _resources: Set[Tuple[str, Optional[int]]] = field(default_factory=set, repr=False)

    def add(self, entry: ActivityLogEntry) -> None:
        created = entry.created_at
        self.total_actions += 1
        self._days.add(created.date().isoformat())
        if self.first_access is None or created < self.first_access:
            self.first_access = created
        if self.last_access is None or created > self.last_access:
            self.last_access = created

        component, action, target = entry.component, entry.action, entry.target

        if component == "mod_resource":
            self.resources_viewed += 1
            if entry.object_table:
                self._resources.add((entry.object_table, entry.object_id))
        elif component == "mod_page":
            self.pages_viewed += 1
        elif component == "mod_url":
            self.videos_started += 1
        elif component == "mod_forum":
            if action == "viewed":
                self.forum_views += 1
            elif action == "created" and target == "discussion":
                self.forum_posts += 1
            elif action == "created" and target == "post":
                self.forum_replies += 1
        elif component == "mod_chat":
            if action in ("sent", "created"):
                self.chat_messages += 1
        elif component == "mod_assign":
            if action == "viewed":
                self.assignments_viewed += 1

        # A resource view is also counted as a download
        if action == "downloaded" or (component == "mod_resource" and action == "viewed"):
            self.files_downloaded += 1

    def finish(self, timestamps: Sequence[float], session_gap: int) -> None:
        self.active_days = len(self._days)
        self.resources_unique = len(self._resources)
        self.time_spent_seconds = estimate_time_spent(timestamps, session_gap)

    def as_fields(self) -> Dict[str, Any]:
        return {
            "total_actions": self.total_actions,
            "active_days": self.active_days,
            "first_access": self.first_access,
            "last_access": self.last_access,
            "time_spent_seconds": self.time_spent_seconds,
            "resources_viewed": self.resources_viewed,
            "resources_unique": self.resources_unique,
            "videos_started": self.videos_started,
            "pages_viewed": self.pages_viewed,
            "files_downloaded": self.files_downloaded,
            "forum_views": self.forum_views,
            "forum_posts": self.forum_posts,
            "forum_replies": self.forum_replies,
            "chat_messages": self.chat_messages,
            "assignments_viewed": self.assignments_viewed,
        }


def summarize_activity(entries: Sequence[ActivityLogEntry], session_gap: int = 1800) -> ActivitySummary:
    summary = ActivitySummary()
    for entry in entries:
        summary.add(entry)
    summary.finish([_epoch(entry.created_at) for entry in entries], session_gap)
    return summary


class MetricsCalculator:
    """Hourly batch computation of weekly user metrics."""

    def __init__(
        self,
        db: AsyncSession,
        config: Optional[MetricsConfig] = None,
        store: Optional[MetricsStore] = None,
    ):
        self.db = db
        self.config = config or MetricsConfig()
        self.store = store or MetricsStore(db)

    async def compute_for_period(self, period_start: datetime, period_end: datetime) -> BatchResult:
        """
        Compute metrics for every (user, course) pair with activity in
        [period_start, period_end). A failing pair is logged and skipped.
        """
        result = BatchResult(name="compute_user_metrics")
        pairs = await self._active_pairs(period_start, period_end)
        logger.info(f"Computing metrics for {len(pairs)} user/course pairs from {period_start} to {period_end}")

        for user_id, course_id in pairs:
            try:
                await self.compute_user_course_metrics(user_id, course_id, period_start, period_end)
                result.record_success()
            except Exception as e:
                logger.error(f"Metrics failed for user {user_id} course {course_id}: {e}")
                await self.db.rollback()
                result.record_failure(f"user {user_id} course {course_id}", e)

        return result

    async def compute_user_course_metrics(
        self,
        user_id: int,
        course_id: int,
        period_start: datetime,
        period_end: datetime,
    ) -> Optional[UserMetrics]:
        entries = await self._entries(user_id, course_id, period_start, period_end)
        if not entries:
            return None

        summary = summarize_activity(entries, self.config.session_gap_seconds)
        fields = summary.as_fields()
        fields["period_end"] = period_end
        fields["activities_total"] = await self._activities_total(course_id)

        return await self.store.apply_batch_update(
            user_id, course_id, period_start, period_end, fields
        )

    def estimate_time_spent(self, timestamps: Sequence[float]) -> int:
        return estimate_time_spent(timestamps, self.config.session_gap_seconds)

    async def _active_pairs(self, period_start: datetime, period_end: datetime) -> List[Tuple[int, int]]:
        result = await self.db.execute(
            select(ActivityLogEntry.user_id, ActivityLogEntry.course_id)
            .where(
                ActivityLogEntry.created_at >= period_start,
                ActivityLogEntry.created_at < period_end,
                ActivityLogEntry.course_id > SITE_COURSE_ID,
                ActivityLogEntry.user_id > 0,
                ActivityLogEntry.anonymous.is_(False),
            )
            .distinct()
            .order_by(ActivityLogEntry.user_id, ActivityLogEntry.course_id)
        )
        return [(row.user_id, row.course_id) for row in result.all()]

    async def _entries(
        self, user_id: int, course_id: int, period_start: datetime, period_end: datetime
    ) -> List[ActivityLogEntry]:
        result = await self.db.execute(
            select(ActivityLogEntry)
            .where(
                ActivityLogEntry.user_id == user_id,
                ActivityLogEntry.course_id == course_id,
                ActivityLogEntry.created_at >= period_start,
                ActivityLogEntry.created_at < period_end,
                ActivityLogEntry.anonymous.is_(False),
            )
            .order_by(ActivityLogEntry.created_at, ActivityLogEntry.id)
        )
        return list(result.scalars().all())

    async def _activities_total(self, course_id: int) -> int:
        result = await self.db.execute(
            select(func.count(CourseModule.id)).where(
                CourseModule.course_id == course_id,
                CourseModule.deletion_in_progress.is_(False),
            )
        )
        return result.scalar_one()
