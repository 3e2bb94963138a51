"""
Real-time metric updates driven by learning platform events.

Each handler touches only event-owned columns of the current week's
UserMetrics row, through MetricsStore.apply_event_update.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, ClassVar, Dict, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from elby_dashboard.core.sdms_config import utcnow
from elby_dashboard.models.host import Quiz, QuizGrade
from .periods import week_bounds
from .store import MetricsStore


logger = logging.getLogger(__name__)

COMPLETION_INCOMPLETE = 0
COMPLETION_COMPLETE = 1
COMPLETION_COMPLETE_PASS = 2
COMPLETION_COMPLETE_FAIL = 3

COUNTED_COMPLETION_STATES = frozenset({COMPLETION_COMPLETE, COMPLETION_COMPLETE_PASS})


@dataclass(frozen=True)
class QuizAttemptSubmitted:
    event_name: ClassVar[str] = "\\mod_quiz\\event\\attempt_submitted"
    user_id: int
    course_id: int


@dataclass(frozen=True)
class AssignmentSubmissionCreated:
    event_name: ClassVar[str] = "\\mod_assign\\event\\submission_created"
    user_id: int
    course_id: int


@dataclass(frozen=True)
class CourseModuleCompletionUpdated:
    event_name: ClassVar[str] = "\\core\\event\\course_module_completion_updated"
    user_id: int
    course_id: int
    completion_state: int


@dataclass(frozen=True)
class CourseCompleted:
    event_name: ClassVar[str] = "\\core\\event\\course_completed"
    user_id: int
    course_id: int


class MetricsEventObserver:
    """Dispatches platform events to their metric handlers."""

    def __init__(
        self,
        db: AsyncSession,
        store: Optional[MetricsStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.store = store or MetricsStore(db)
        self.clock = clock
        self.handlers: Dict[str, Callable] = {
            QuizAttemptSubmitted.event_name: self.quiz_submitted,
            AssignmentSubmissionCreated.event_name: self.assignment_submitted,
            CourseModuleCompletionUpdated.event_name: self.course_module_completed,
            CourseCompleted.event_name: self.course_completed,
        }

    async def dispatch(self, event) -> bool:
        """
        Run the handler registered for the event. Returns False when the
        event is unknown or the handler failed; handler failures are logged
        so they never break the code path that raised the event.
        """
        handler = self.handlers.get(getattr(event, "event_name", None))
        if handler is None:
            logger.debug(f"No metrics handler for {type(event).__name__}")
            return False

        try:
            await handler(event)
        except Exception as e:
            logger.error(f"Metrics observer failed for {event}: {e}", exc_info=True)
            await self.db.rollback()
            return False
        return True

    async def quiz_submitted(self, event: QuizAttemptSubmitted) -> None:
        now = self.clock()
        average = await self._weekly_quiz_average(event.user_id, event.course_id, now)
        values = {"quizzes_avg_score": average} if average is not None else {}
        await self.store.apply_event_update(
            event.user_id, event.course_id,
            increments=["quizzes_attempted"], values=values, now=now,
        )

    async def assignment_submitted(self, event: AssignmentSubmissionCreated) -> None:
        await self.store.apply_event_update(
            event.user_id, event.course_id,
            increments=["assignments_submitted"], now=self.clock(),
        )

    async def course_module_completed(self, event: CourseModuleCompletionUpdated) -> None:
        if event.completion_state not in COUNTED_COMPLETION_STATES:
            return
        await self.store.apply_event_update(
            event.user_id, event.course_id,
            increments=["activities_completed"], now=self.clock(),
        )

    async def course_completed(self, event: CourseCompleted) -> None:
        await self.store.apply_event_update(
            event.user_id, event.course_id,
            values={"course_progress": 100.0}, now=self.clock(),
        )

    async def _weekly_quiz_average(self, user_id: int, course_id: int, now: datetime) -> Optional[float]:
        """Mean percentage over the week's quiz grades, recomputed from source."""
        week_start, week_end = week_bounds(now)
        result = await self.db.execute(
            select(func.avg(QuizGrade.grade / Quiz.grade * 100))
            .select_from(QuizGrade)
            .join(Quiz, Quiz.id == QuizGrade.quiz_id)
            .where(
                QuizGrade.user_id == user_id,
                Quiz.course_id == course_id,
                QuizGrade.modified_at >= week_start,
                QuizGrade.modified_at < week_end,
                Quiz.grade > 0,
            )
        )
        average = result.scalar_one_or_none()
        return round(float(average), 2) if average is not None else None
