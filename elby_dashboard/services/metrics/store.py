"""
Single write path for UserMetrics rows.

The batch calculator and the event observers both write to the same
per-user, per-course, per-period row. Each goes through its own entry point
here, and each entry point only accepts the columns its writer owns.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from elby_dashboard.models.metrics import UserMetrics, PeriodType, BATCH_FIELDS, EVENT_FIELDS
from .periods import week_bounds


logger = logging.getLogger(__name__)

COUNTER_FIELDS = (
    "total_actions",
    "active_days",
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
    "quizzes_attempted",
    "assignments_submitted",
    "activities_completed",
)


def _check_fields(names: Iterable[str], allowed: frozenset, writer: str) -> None:
    foreign = sorted(set(names) - allowed)
    if foreign:
        raise ValueError(f"{writer} update may not write {', '.join(foreign)}")


class MetricsStore:
    """Get-or-create plus the two ownership-checked update paths."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(
        self,
        user_id: int,
        course_id: int,
        period_start: datetime,
        period_type: PeriodType = PeriodType.WEEKLY,
    ) -> Optional[UserMetrics]:
        result = await self.db.execute(
            select(UserMetrics).where(
                UserMetrics.user_id == user_id,
                UserMetrics.course_id == course_id,
                UserMetrics.period_start == period_start,
                UserMetrics.period_type == period_type.value,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create(
        self,
        user_id: int,
        course_id: int,
        period_start: datetime,
        period_end: datetime,
        period_type: PeriodType = PeriodType.WEEKLY,
    ) -> UserMetrics:
        """
        Return the row for the key, inserting one with every counter at zero
        and every nullable column null when it does not exist yet.
        """
        existing = await self.get(user_id, course_id, period_start, period_type)
        if existing is not None:
            return existing

        row = UserMetrics(
            user_id=user_id,
            course_id=course_id,
            period_start=period_start,
            period_end=period_end,
            period_type=period_type.value,
            first_access=None,
            last_access=None,
            quizzes_avg_score=None,
            course_progress=None,
            assignments_avg_score=None,
            **{name: 0 for name in COUNTER_FIELDS},
        )
        self.db.add(row)
        try:
            await self.db.flush()
        except IntegrityError:
            # Another writer created the row first
            await self.db.rollback()
            existing = await self.get(user_id, course_id, period_start, period_type)
            if existing is None:
                raise
            return existing
        return row

    async def apply_batch_update(
        self,
        user_id: int,
        course_id: int,
        period_start: datetime,
        period_end: datetime,
        fields: Dict[str, Any],
    ) -> UserMetrics:
        """Overwrite batch-owned columns of the weekly row; event-owned columns are never touched."""
        _check_fields(fields, BATCH_FIELDS, "Batch")

        row = await self.get_or_create(user_id, course_id, period_start, period_end)
        await self.db.execute(
            update(UserMetrics).where(UserMetrics.id == row.id).values(**fields)
        )
        await self.db.commit()
        return row

    async def apply_event_update(
        self,
        user_id: int,
        course_id: int,
        increments: Iterable[str] = (),
        values: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> UserMetrics:
        """
        Increment and/or set event-owned columns on the current week's row.

        Increments are applied in SQL (``col = col + 1``) so concurrent
        events never lose counts.
        """
        increments = list(increments)
        values = dict(values or {})
        _check_fields(list(increments) + list(values), EVENT_FIELDS, "Event")

        period_start, period_end = week_bounds(now)
        row = await self.get_or_create(user_id, course_id, period_start, period_end)

        changes: Dict[str, Any] = {name: getattr(UserMetrics, name) + 1 for name in increments}
        changes.update(values)
        if changes:
            await self.db.execute(
                update(UserMetrics).where(UserMetrics.id == row.id).values(**changes)
            )
        await self.db.commit()
        await self.db.refresh(row)
        return row
