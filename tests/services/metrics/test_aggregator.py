"""
Tests for the school-level metrics roll-up.
"""

import pytest
from datetime import datetime, timedelta
from sqlalchemy import select

from elby_dashboard.models import (
    UserMetrics, SchoolMetrics, CourseEnrolment, ActivityLogEntry, UserType
)
from elby_dashboard.services.metrics import SchoolAggregator, engagement_tiers, week_bounds
from elby_dashboard.services.metrics.aggregator import SCHOOL_WIDE_COURSE_ID

NOW = datetime(2025, 3, 12, 10, 0)
WEEK_START, WEEK_END = week_bounds(NOW)


def test_engagement_tiers_use_percentiles():
    assert engagement_tiers(range(1, 11)) == (2, 6, 2)


def test_engagement_tiers_empty():
    assert engagement_tiers([]) == (0, 0, 0)


def test_engagement_tiers_identical_scores_are_medium():
    assert engagement_tiers([5, 5, 5]) == (0, 3, 0)


@pytest.fixture
async def school_with_students(db_session, make_school, make_link):
    school = await make_school()
    await make_link(7, "STU007", school_id=school.id)
    await make_link(8, "STU008", school_id=school.id)
    await make_link(9, "STF009", user_type=UserType.STAFF, school_id=school.id)

    def metrics(user_id, **fields):
        return UserMetrics(
            user_id=user_id, course_id=3, period_start=WEEK_START, period_end=WEEK_END,
            period_type="weekly", **fields
        )

    db_session.add_all([
        metrics(7, total_actions=10, active_days=3, time_spent_seconds=1200,
                resources_viewed=4, assignments_submitted=2, course_progress=100.0),
        metrics(8, total_actions=2, active_days=1, time_spent_seconds=600, resources_viewed=0),
        metrics(9, total_actions=50, active_days=5, time_spent_seconds=6000),
        CourseEnrolment(user_id=7, course_id=3),
        CourseEnrolment(user_id=8, course_id=3),
        CourseEnrolment(user_id=9, course_id=3),
        ActivityLogEntry(user_id=7, course_id=3, component="mod_page", action="viewed",
                         created_at=NOW - timedelta(days=1)),
        ActivityLogEntry(user_id=8, course_id=3, component="mod_page", action="viewed",
                         created_at=NOW - timedelta(days=20)),
    ])
    await db_session.commit()
    return school


async def _rows(db, school_id):
    result = await db.execute(
        select(SchoolMetrics)
        .where(SchoolMetrics.school_id == school_id)
        .order_by(SchoolMetrics.course_id)
    )
    return list(result.scalars().all())


class TestSchoolAggregator:

    @pytest.mark.asyncio
    async def test_course_and_school_wide_rows(self, db_session, metrics_config, school_with_students):
        aggregator = SchoolAggregator(db_session, metrics_config)

        await aggregator.aggregate_school(school_with_students.id, WEEK_START, WEEK_END, now=NOW)

        school_wide, course = await _rows(db_session, school_with_students.id)
        assert school_wide.course_id == SCHOOL_WIDE_COURSE_ID
        assert course.course_id == 3

        assert course.total_enrolled == 2
        assert course.total_active == 2
        assert course.total_inactive == 0
        assert course.avg_actions_per_student == 6.0
        assert course.avg_time_spent_minutes == 15.0
        assert course.total_submissions == 2
        assert course.submission_rate == 100.0
        assert course.completion_rate == 50.0
        assert course.at_risk_count == 1
        assert (course.high_engagement_count, course.medium_engagement_count,
                course.low_engagement_count) == (0, 2, 0)

        assert school_wide.total_enrolled == 2
        assert school_wide.completion_rate is None
        assert school_wide.at_risk_count == 1

    @pytest.mark.asyncio
    async def test_rerun_replaces_rows(self, db_session, metrics_config, school_with_students):
        aggregator = SchoolAggregator(db_session, metrics_config)

        await aggregator.aggregate_school(school_with_students.id, WEEK_START, WEEK_END, now=NOW)
        await aggregator.aggregate_school(school_with_students.id, WEEK_START, WEEK_END, now=NOW)

        assert len(await _rows(db_session, school_with_students.id)) == 2

    @pytest.mark.asyncio
    async def test_aggregate_all_visits_student_schools(self, db_session, metrics_config,
                                                        school_with_students, make_school, make_link):
        staff_only = await make_school(code="SCH02")
        await make_link(10, "STF010", user_type=UserType.STAFF, school_id=staff_only.id)

        result = await SchoolAggregator(db_session, metrics_config).aggregate_all(
            WEEK_START, WEEK_END, now=NOW
        )

        assert result.succeeded == 1
        assert result.failed == 0
        assert await _rows(db_session, staff_only.id) == []

    @pytest.mark.asyncio
    async def test_inactive_students_without_metrics(self, db_session, metrics_config, make_school, make_link):
        school = await make_school()
        await make_link(7, "STU007", school_id=school.id)

        records = await SchoolAggregator(db_session, metrics_config).aggregate_school(
            school.id, WEEK_START, WEEK_END, now=NOW
        )

        assert len(records) == 1
        assert records[0].total_active == 0
        assert records[0].total_inactive == 1
        assert records[0].at_risk_count == 1
        assert records[0].avg_actions_per_student is None

    @pytest.mark.asyncio
    async def test_new_enrollments_within_period(self, db_session, metrics_config, make_school, make_link):
        school = await make_school()
        await make_link(7, "STU007", school_id=school.id)
        await make_link(8, "STU008", school_id=school.id)
        db_session.add_all([
            UserMetrics(user_id=7, course_id=5, period_start=WEEK_START, period_end=WEEK_END,
                        period_type="weekly", total_actions=3),
            UserMetrics(user_id=8, course_id=5, period_start=WEEK_START, period_end=WEEK_END,
                        period_type="weekly", total_actions=1),
            CourseEnrolment(user_id=7, course_id=5, enrolled_at=WEEK_START + timedelta(days=1)),
            CourseEnrolment(user_id=8, course_id=5, enrolled_at=WEEK_START + timedelta(days=1)),
            CourseEnrolment(user_id=7, course_id=6, enrolled_at=WEEK_START + timedelta(days=2)),
            CourseEnrolment(user_id=8, course_id=9, enrolled_at=WEEK_START - timedelta(days=3)),
            CourseEnrolment(user_id=8, course_id=10, enrolled_at=WEEK_END),
        ])
        await db_session.commit()

        await SchoolAggregator(db_session, metrics_config).aggregate_school(
            school.id, WEEK_START, WEEK_END, now=NOW
        )

        school_wide, course = await _rows(db_session, school.id)
        assert (course.course_id, course.total_enrolled, course.new_enrollments) == (5, 2, 2)
        assert school_wide.new_enrollments == 2
