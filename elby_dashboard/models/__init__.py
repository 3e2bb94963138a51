from .host import (
    User, CourseEnrolment, ActivityLogEntry, CourseModule, Quiz, QuizGrade, SITE_COURSE_ID
)
from .sdms import (
    School, Level, Combination, Grade, ClassGroup,
    UserLink, StudentProfile, StaffProfile, StaffSubject,
    SyncStatus, UserType
)
from .metrics import UserMetrics, SchoolMetrics, PeriodType, BATCH_FIELDS, EVENT_FIELDS
from .sync_log import SyncLogEntry, SyncOperation

__all__ = [
    "User",
    "CourseEnrolment",
    "ActivityLogEntry",
    "CourseModule",
    "Quiz",
    "QuizGrade",
    "SITE_COURSE_ID",
    "School",
    "Level",
    "Combination",
    "Grade",
    "ClassGroup",
    "UserLink",
    "StudentProfile",
    "StaffProfile",
    "StaffSubject",
    "SyncStatus",
    "UserType",
    "UserMetrics",
    "SchoolMetrics",
    "PeriodType",
    "BATCH_FIELDS",
    "EVENT_FIELDS",
    "SyncLogEntry",
    "SyncOperation",
]
