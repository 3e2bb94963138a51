"""
Roll-up of weekly/monthly user metrics into per-school metrics.

Each cycle recomputes a school's rows from scratch: one row per course the
school's students were active in, plus a school-wide row with course_id 0.
Only students count; staff links are ignored.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from elby_dashboard.core.sdms_config import MetricsConfig, utcnow
from elby_dashboard.integrations.sdms.errors import BatchResult
from elby_dashboard.models.host import ActivityLogEntry, CourseEnrolment
from elby_dashboard.models.metrics import UserMetrics, SchoolMetrics, PeriodType
from elby_dashboard.models.sdms import UserLink, UserType


logger = logging.getLogger(__name__)

SCHOOL_WIDE_COURSE_ID = 0


def engagement_tiers(scores: Iterable[float]) -> Tuple[int, int, int]:
    """
    Bucket per-student activity scores into (high, medium, low) using the
    30th and 70th percentile of the scores themselves.
    """
    ordered = sorted(float(score) for score in scores)
    count = len(ordered)
    if count == 0:
        return 0, 0, 0

    p30 = ordered[max(0, int(count * 0.3) - 1)]
    p70 = ordered[min(count - 1, int(count * 0.7))]

    high = medium = low = 0
    for score in ordered:
        if score > p70:
            high += 1
        elif score >= p30:
            medium += 1
        else:
            low += 1
    return high, medium, low


def _average(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [float(value) for value in values if value is not None]
    if not present:
        return None
    return round(sum(present) / len(present), 2)


def _rate(count: float, total: int) -> Optional[float]:
    if total <= 0:
        return None
    return round(count / total * 100, 2)


class SchoolAggregator:
    """Computes SchoolMetrics rows from UserMetrics."""

    def __init__(self, db: AsyncSession, config: Optional[MetricsConfig] = None):
        self.db = db
        self.config = config or MetricsConfig()

    async def aggregate_all(
        self,
        period_start: datetime,
        period_end: datetime,
        period_type: PeriodType = PeriodType.WEEKLY,
        now: Optional[datetime] = None,
    ) -> BatchResult:
        """Aggregate every school with at least one linked student; schools fail independently."""
        result = BatchResult(name=f"aggregate_school_metrics_{period_type.value}")

        rows = await self.db.execute(
            select(UserLink.school_id)
            .where(UserLink.school_id.is_not(None), UserLink.user_type == UserType.STUDENT)
            .distinct()
            .order_by(UserLink.school_id)
        )
        school_ids = list(rows.scalars().all())

        for school_id in school_ids:
            try:
                await self.aggregate_school(school_id, period_start, period_end, period_type, now)
                result.record_success()
            except Exception as e:
                logger.error(f"School aggregation failed for school {school_id}: {e}")
                await self.db.rollback()
                result.record_failure(f"school {school_id}", e)

        return result

    async def aggregate_school(
        self,
        school_id: int,
        period_start: datetime,
        period_end: datetime,
        period_type: PeriodType = PeriodType.WEEKLY,
        now: Optional[datetime] = None,
    ) -> List[SchoolMetrics]:
        now = now or utcnow()
        students = await self._student_ids(school_id)
        if not students:
            return []

        metrics = await self._user_metrics(students, period_start, period_type)
        by_course: Dict[int, List[UserMetrics]] = defaultdict(list)
        for row in metrics:
            by_course[row.course_id].append(row)

        recent = await self._recently_active(students, now)
        new = await self._new_enrolments(students, period_start, period_end)
        records = []

        for course_id in sorted(by_course):
            enrolled = await self._enrolled_in_course(students, course_id)
            at_risk = len(enrolled - recent.get(course_id, set()))
            records.append(self._build(
                school_id, course_id, period_start, period_end, period_type,
                by_course[course_id], len(enrolled), at_risk, len(new.get(course_id, set())),
                with_completion=True,
            ))

        active_anywhere: Set[int] = set().union(*recent.values()) if recent else set()
        new_anywhere: Set[int] = set().union(*new.values()) if new else set()
        records.append(self._build(
            school_id, SCHOOL_WIDE_COURSE_ID, period_start, period_end, period_type,
            metrics, len(students), len(students - active_anywhere), len(new_anywhere),
            with_completion=False,
        ))

        try:
            await self.db.execute(
                delete(SchoolMetrics).where(
                    SchoolMetrics.school_id == school_id,
                    SchoolMetrics.period_start == period_start,
                    SchoolMetrics.period_type == period_type.value,
                )
            )
            self.db.add_all(records)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Aggregated {len(records)} {period_type.value} metric rows for school {school_id}")
        return records

    def _build(
        self,
        school_id: int,
        course_id: int,
        period_start: datetime,
        period_end: datetime,
        period_type: PeriodType,
        rows: Sequence[UserMetrics],
        total_enrolled: int,
        at_risk: int,
        new_enrollments: int,
        with_completion: bool,
    ) -> SchoolMetrics:
        total_active = len({row.user_id for row in rows})
        total_submissions = sum(row.assignments_submitted or 0 for row in rows)

        actions_by_user: Dict[int, int] = defaultdict(int)
        for row in rows:
            actions_by_user[row.user_id] += row.total_actions or 0
        high, medium, low = engagement_tiers(actions_by_user.values())

        completion_rate = None
        if with_completion:
            completed = sum(1 for row in rows if row.course_progress == 100)
            completion_rate = _rate(completed, total_enrolled)

        return SchoolMetrics(
            school_id=school_id,
            course_id=course_id,
            period_start=period_start,
            period_end=period_end,
            period_type=period_type.value,
            total_enrolled=total_enrolled,
            total_active=total_active,
            total_inactive=max(0, total_enrolled - total_active),
            new_enrollments=new_enrollments,
            avg_actions_per_student=_average(row.total_actions for row in rows),
            avg_active_days=_average(row.active_days for row in rows),
            avg_time_spent_minutes=_average(
                row.time_spent_seconds / 60.0 for row in rows if row.time_spent_seconds is not None
            ),
            total_resource_views=sum(row.resources_viewed or 0 for row in rows),
            avg_resources_per_student=_average(row.resources_viewed for row in rows),
            total_submissions=total_submissions,
            total_quiz_attempts=sum(row.quizzes_attempted or 0 for row in rows),
            avg_assignment_score=_average(row.assignments_avg_score for row in rows),
            avg_quiz_score=_average(row.quizzes_avg_score for row in rows),
            submission_rate=_rate(total_submissions, total_enrolled),
            avg_course_progress=_average(row.course_progress for row in rows),
            completion_rate=completion_rate,
            high_engagement_count=high,
            medium_engagement_count=medium,
            low_engagement_count=low,
            at_risk_count=at_risk,
        )

    async def _student_ids(self, school_id: int) -> Set[int]:
        result = await self.db.execute(
            select(UserLink.user_id).where(
                UserLink.school_id == school_id,
                UserLink.user_type == UserType.STUDENT,
            )
        )
        return set(result.scalars().all())

    async def _user_metrics(
        self, students: Set[int], period_start: datetime, period_type: PeriodType
    ) -> List[UserMetrics]:
        result = await self.db.execute(
            select(UserMetrics).where(
                UserMetrics.user_id.in_(students),
                UserMetrics.period_start == period_start,
                UserMetrics.period_type == period_type.value,
            )
        )
        return list(result.scalars().all())

    async def _enrolled_in_course(self, students: Set[int], course_id: int) -> Set[int]:
        result = await self.db.execute(
            select(CourseEnrolment.user_id)
            .where(CourseEnrolment.course_id == course_id, CourseEnrolment.user_id.in_(students))
            .distinct()
        )
        return set(result.scalars().all())

    async def _new_enrolments(
        self, students: Set[int], period_start: datetime, period_end: datetime
    ) -> Dict[int, Set[int]]:
        """Students enrolled during the period, keyed by course."""
        result = await self.db.execute(
            select(CourseEnrolment.course_id, CourseEnrolment.user_id)
            .where(
                CourseEnrolment.user_id.in_(students),
                CourseEnrolment.enrolled_at >= period_start,
                CourseEnrolment.enrolled_at < period_end,
            )
            .distinct()
        )
        enrolled: Dict[int, Set[int]] = defaultdict(set)
        for course_id, user_id in result.all():
            enrolled[course_id].add(user_id)
        return dict(enrolled)

    async def _recently_active(self, students: Set[int], now: datetime) -> Dict[int, Set[int]]:
        """Students with any log entry inside the inactivity window, keyed by course."""
        threshold = now - timedelta(days=self.config.at_risk_inactivity_days)
        result = await self.db.execute(
            select(ActivityLogEntry.course_id, ActivityLogEntry.user_id)
            .where(
                ActivityLogEntry.user_id.in_(students),
                ActivityLogEntry.created_at >= threshold,
                ActivityLogEntry.anonymous.is_(False),
            )
            .distinct()
        )
        active: Dict[int, Set[int]] = defaultdict(set)
        for course_id, user_id in result.all():
            active[course_id].add(user_id)
        return dict(active)
