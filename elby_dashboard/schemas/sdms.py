"""
Pydantic views returned by the SDMS sync service and API.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List
from datetime import datetime

from elby_dashboard.models.sdms import SyncStatus, UserType


class ClassGroupInfo(BaseModel):
    sdms_class_id: str
    class_name: str

    model_config = ConfigDict(from_attributes=True)


class GradeInfo(BaseModel):
    grade_code: str
    grade_name: str
    class_groups: List[ClassGroupInfo] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class CombinationInfo(BaseModel):
    combination_code: str
    combination_name: str
    combination_desc: Optional[str] = None
    grades: List[GradeInfo] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class LevelInfo(BaseModel):
    sdms_level_id: str
    level_name: str
    level_desc: Optional[str] = None
    combinations: List[CombinationInfo] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class SchoolSummary(BaseModel):
    id: int
    school_code: str
    school_name: str

    model_config = ConfigDict(from_attributes=True)


class SchoolInfo(BaseModel):
    """Cached school with its hierarchy and sync state."""
    id: int
    school_code: str
    school_name: str
    region_code: Optional[str] = None
    province_code: Optional[str] = None
    district_code: Optional[str] = None
    is_active: bool = False
    school_status: Optional[str] = None
    school_category: Optional[str] = None
    academic_year: Optional[str] = None
    has_tvet: bool = False
    sync_status: SyncStatus
    sync_error: Optional[str] = None
    last_synced: Optional[datetime] = None
    is_stale: bool = False
    levels: List[LevelInfo] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class StudentProfileInfo(BaseModel):
    class_id: Optional[int] = None
    program: Optional[str] = None
    program_code: Optional[str] = None
    registration_date: Optional[datetime] = None
    gender: Optional[str] = None
    study_level: Optional[str] = None
    class_grade: Optional[str] = None
    grade_code: Optional[str] = None
    class_group_name: Optional[str] = None
    inactive_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class StaffSubjectInfo(BaseModel):
    level_name: str
    combination_code: str
    combination_name: str
    subject_code: str
    subject_name: str
    grade_code: Optional[str] = None
    grade_name: Optional[str] = None
    class_group: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class StaffProfileInfo(BaseModel):
    position: Optional[str] = None
    gender: Optional[str] = None
    employment_status: Optional[str] = None
    subjects: List[StaffSubjectInfo] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class UserProfile(BaseModel):
    """Linked user with the cached SDMS profile for its type."""
    user_id: int
    sdms_id: str
    user_type: Optional[UserType] = None
    academic_year: Optional[str] = None
    sdms_status: Optional[str] = None
    school: Optional[SchoolSummary] = None
    sync_status: SyncStatus
    sync_error: Optional[str] = None
    last_synced: Optional[datetime] = None
    is_stale: bool = False
    student: Optional[StudentProfileInfo] = None
    staff: Optional[StaffProfileInfo] = None


class LinkUserRequest(BaseModel):
    sdms_code: str = Field(..., min_length=1, max_length=100)
    user_type: UserType = UserType.STUDENT

    @field_validator('user_type', mode='before')
    @classmethod
    def parse_user_type(cls, v):
        return UserType.parse(v)
