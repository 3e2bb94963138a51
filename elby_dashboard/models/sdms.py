"""
SQLAlchemy models for the local SDMS cache: schools, their level →
combination → grade → class group hierarchy, and linked users.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text,
    ForeignKey, Index, UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.sql import func
from sqlalchemy.ext.hybrid import hybrid_property
import enum
from typing import Optional, Union

from elby_dashboard.core.database import Base


class SyncStatus(str, enum.Enum):
    """Outcome of the most recent sync attempt for a cached record."""
    SYNCED = "synced"
    ERROR = "error"


class UserType(str, enum.Enum):
    """Kind of SDMS account a local user is linked to."""
    STUDENT = "student"
    STAFF = "teacher"

    @classmethod
    def parse(cls, value: Union[str, "UserType"]) -> "UserType":
        """Accept the stored values plus the "staff" alias used by the SDMS API."""
        if isinstance(value, UserType):
            return value
        normalized = (value or "").strip().lower()
        if normalized == "staff":
            return cls.STAFF
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown user type: {value!r}")


class School(Base):
    """Cached SDMS school record."""

    __tablename__ = "elby_schools"

    id = Column(Integer, primary_key=True, index=True)
    school_code = Column(String(50), unique=True, index=True, nullable=False)
    school_name = Column(String(255), nullable=False, default="")
    region_code = Column(String(50), nullable=True)  # province/district/sector digits
    is_active = Column(Boolean, default=False)
    school_status = Column(String(50), nullable=True)
    school_category = Column(String(100), nullable=True)
    academic_year = Column(String(20), nullable=True)
    gps_long = Column(String(50), nullable=True)
    gps_lat = Column(String(50), nullable=True)
    establishment_date = Column(DateTime, nullable=True)
    has_tvet = Column(Boolean, default=False)

    # Sync bookkeeping
    sync_status = Column(SQLEnum(SyncStatus), default=SyncStatus.SYNCED, nullable=False)
    sync_error = Column(Text, nullable=True)
    last_synced = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    @hybrid_property
    def province_code(self) -> Optional[str]:
        return self.region_code[:1] if self.region_code else None

    @hybrid_property
    def district_code(self) -> Optional[str]:
        return self.region_code[:3] if self.region_code else None

    def mark_error(self, message: str) -> None:
        self.sync_status = SyncStatus.ERROR
        self.sync_error = message


class Level(Base):
    __tablename__ = "elby_levels"

    id = Column(Integer, primary_key=True, index=True)
    school_id = Column(Integer, ForeignKey("elby_schools.id"), nullable=False)
    sdms_level_id = Column(String(50), nullable=False)
    level_name = Column(String(255), nullable=False, default="")
    level_desc = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint('school_id', 'sdms_level_id', name='uq_elby_levels_school_level'),
    )


class Combination(Base):
    __tablename__ = "elby_combinations"

    id = Column(Integer, primary_key=True, index=True)
    level_id = Column(Integer, ForeignKey("elby_levels.id"), nullable=False)
    combination_code = Column(String(50), nullable=False)
    combination_name = Column(String(255), nullable=False, default="")
    combination_desc = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint('level_id', 'combination_code', name='uq_elby_combinations_level_code'),
    )


class Grade(Base):
    __tablename__ = "elby_grades"

    id = Column(Integer, primary_key=True, index=True)
    combination_id = Column(Integer, ForeignKey("elby_combinations.id"), nullable=False)
    grade_code = Column(String(50), nullable=False)
    grade_name = Column(String(255), nullable=False, default="")

    __table_args__ = (
        UniqueConstraint('combination_id', 'grade_code', name='uq_elby_grades_combination_code'),
    )


class ClassGroup(Base):
    __tablename__ = "elby_classgroups"

    id = Column(Integer, primary_key=True, index=True)
    grade_id = Column(Integer, ForeignKey("elby_grades.id"), nullable=False)
    sdms_class_id = Column(String(100), nullable=False, index=True)
    class_name = Column(String(255), nullable=False, default="")

    __table_args__ = (
        UniqueConstraint('grade_id', 'sdms_class_id', name='uq_elby_classgroups_grade_class'),
    )


class UserLink(Base):
    """Link between a local user and an SDMS student or staff record."""

    __tablename__ = "elby_sdms_users"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    sdms_id = Column(String(100), unique=True, nullable=False)
    school_id = Column(Integer, ForeignKey("elby_schools.id"), nullable=True)
    user_type = Column(SQLEnum(UserType), nullable=True)  # null for flagged placeholders
    academic_year = Column(String(20), nullable=True)
    sdms_status = Column(String(50), nullable=True)

    # Sync bookkeeping
    sync_status = Column(SQLEnum(SyncStatus), default=SyncStatus.SYNCED, nullable=False)
    sync_error = Column(Text, nullable=True)
    last_synced = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    __table_args__ = (
        Index('idx_elby_sdms_users_school_type', 'school_id', 'user_type'),
        Index('idx_elby_sdms_users_last_synced', 'last_synced'),
    )

    def mark_error(self, message: str) -> None:
        self.sync_status = SyncStatus.ERROR
        self.sync_error = message


class StudentProfile(Base):
    __tablename__ = "elby_students"

    id = Column(Integer, primary_key=True, index=True)
    link_id = Column(Integer, ForeignKey("elby_sdms_users.id"), unique=True, nullable=False)
    class_id = Column(Integer, ForeignKey("elby_classgroups.id"), nullable=True)
    program = Column(String(255), nullable=True)
    program_code = Column(String(50), nullable=True)
    registration_date = Column(DateTime, nullable=True)
    gender = Column(String(10), nullable=True)
    date_of_birth = Column(String(20), nullable=True)
    study_level = Column(String(100), nullable=True)
    class_grade = Column(String(100), nullable=True)
    grade_code = Column(String(50), nullable=True)
    class_group_name = Column(String(100), nullable=True)
    parent_guardian_name = Column(String(255), nullable=True)
    parent_guardian_nid = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    emergency_contact_person = Column(String(255), nullable=True)
    emergency_contact_number = Column(String(50), nullable=True)
    inactive_reason = Column(Text, nullable=True)
    sdms_modified_since = Column(String(50), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())


class StaffProfile(Base):
    __tablename__ = "elby_teachers"

    id = Column(Integer, primary_key=True, index=True)
    link_id = Column(Integer, ForeignKey("elby_sdms_users.id"), unique=True, nullable=False)
    position = Column(String(255), nullable=True)
    gender = Column(String(10), nullable=True)
    official_document_id = Column(String(50), nullable=True)
    mobile_phone = Column(String(50), nullable=True)
    company_email = Column(String(255), nullable=True)
    employment_status = Column(String(50), nullable=True)
    employment_start_date = Column(String(50), nullable=True)
    employment_end_date = Column(String(50), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())


class StaffSubject(Base):
    """One subject taught by a staff member; the set is replaced on every sync."""

    __tablename__ = "elby_staff_subjects"

    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("elby_teachers.id"), nullable=False, index=True)
    level_id = Column(String(50), nullable=False, default="")
    level_name = Column(String(255), nullable=False, default="")
    combination_code = Column(String(50), nullable=False, default="")
    combination_name = Column(String(255), nullable=False, default="")
    subject_code = Column(String(50), nullable=False, default="")
    subject_name = Column(String(255), nullable=False, default="")
    grade_code = Column(String(50), nullable=True)
    grade_name = Column(String(100), nullable=True)
    class_group = Column(String(100), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
