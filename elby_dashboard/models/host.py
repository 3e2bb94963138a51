"""
Read-only mirrors of the host learning platform tables the engines consume:
users, enrolments, the standard activity log, course modules and quiz grades.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Index
from sqlalchemy.sql import func

from elby_dashboard.core.database import Base

SITE_COURSE_ID = 1


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=False, default="")
    deleted = Column(Boolean, default=False)

    created_at = Column(DateTime, server_default=func.now())


class CourseEnrolment(Base):
    __tablename__ = "course_enrolments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    course_id = Column(Integer, nullable=False, index=True)
    enrolled_at = Column(DateTime, server_default=func.now())


class ActivityLogEntry(Base):
    """Standard activity log row; one per user action."""

    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False)
    course_id = Column(Integer, nullable=False)
    component = Column(String(100), nullable=False)
    action = Column(String(100), nullable=False)
    target = Column(String(100), nullable=False, default="")
    object_table = Column(String(100), nullable=True)
    object_id = Column(Integer, nullable=True)
    anonymous = Column(Boolean, default=False)
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index('idx_activity_log_time', 'created_at'),
        Index('idx_activity_log_user_course', 'user_id', 'course_id', 'created_at'),
    )


class CourseModule(Base):
    __tablename__ = "course_modules"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, nullable=False, index=True)
    module_name = Column(String(50), nullable=False, default="")
    deletion_in_progress = Column(Boolean, default=False)


class Quiz(Base):
    __tablename__ = "quizzes"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, nullable=False, index=True)
    grade = Column(Float, nullable=False, default=10.0)  # maximum grade


class QuizGrade(Base):
    __tablename__ = "quiz_grades"

    id = Column(Integer, primary_key=True, index=True)
    quiz_id = Column(Integer, nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    grade = Column(Float, nullable=False)
    modified_at = Column(DateTime, nullable=False)
