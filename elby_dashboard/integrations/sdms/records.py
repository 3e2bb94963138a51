"""
Pydantic models for SDMS API payloads.

The upstream JSON is a given contract with a few misspelled keys; the
aliases below accept every spelling seen in production, correct spelling
first.
"""

from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator


class SDMSRecord(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class SDMSClassGroup(SDMSRecord):
    class_group_id: str = Field(default="", alias="classGroupId")
    class_group_name: str = Field(default="", alias="classGroupName")


class SDMSGrade(SDMSRecord):
    grade_code: str = Field(default="", alias="gradeCode")
    grade_name: str = Field(default="", alias="gradeName")
    class_groups: List[SDMSClassGroup] = Field(default_factory=list, alias="classGroups")


class SDMSCombination(SDMSRecord):
    combination_code: str = Field(default="", alias="combinationCode")
    combination_name: str = Field(default="", alias="combinationName")
    description: Optional[str] = None
    grades: List[SDMSGrade] = Field(default_factory=list)


class SDMSLevel(SDMSRecord):
    level_id: str = Field(default="", alias="levelId")
    level_name: str = Field(default="", alias="levelName")
    description: Optional[str] = None
    combinations: List[SDMSCombination] = Field(default_factory=list)


class SDMSSchoolRecord(SDMSRecord):
    school_code: Optional[str] = Field(default=None, alias="schoolCode")
    school_name: str = Field(default="", alias="schoolName")
    region_code: Optional[str] = Field(default=None, alias="regionCode")
    is_active: Optional[str] = Field(default=None, alias="isActive")
    school_status: Optional[str] = Field(default=None, alias="schoolStatus")
    school_category: Optional[str] = Field(default=None, alias="schoolCategory")
    academic_year: Optional[str] = Field(default=None, alias="academicYear")
    gps_long: Optional[str] = Field(default=None, alias="gpsLong")
    gps_lat: Optional[str] = Field(default=None, alias="gpsLat")
    establishment_date: Optional[str] = Field(default=None, alias="establishmentDate")
    levels: List[SDMSLevel] = Field(default_factory=list)

    @property
    def active(self) -> bool:
        return self.is_active == "ACTIVE"


class SDMSPersonRecord(SDMSRecord):
    """Fields shared by the student and staff payloads."""
    school_code: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("schoolCode", "schooCode"),
    )
    academic_year: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("currentAcadmicYear", "currentAcademicYear", "academicYear"),
    )
    status: Optional[str] = None
    gender: Optional[str] = None

    @field_validator("gender")
    @classmethod
    def normalize_gender(cls, v):
        if not v or not v.strip():
            return None
        return v.strip().upper()


class SDMSStudentRecord(SDMSPersonRecord):
    student_number: Optional[str] = Field(default=None, alias="studentNumber")
    combination: Optional[str] = None
    combination_code: Optional[str] = Field(default=None, alias="combinationCode")
    class_grade: Optional[str] = Field(default=None, alias="classGrade")
    grade_code: Optional[str] = Field(default=None, alias="gradeCode")
    class_group_id: Optional[str] = Field(default=None, alias="classGroupId")
    class_group: Optional[str] = Field(default=None, alias="classGroup")
    registration_date: Optional[str] = Field(default=None, alias="registrationDate")
    date_of_birth: Optional[str] = Field(default=None, alias="dateOfBirth")
    study_level: Optional[str] = Field(default=None, alias="studyLevel")
    parent_guardian_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("parentGuardianName", "parentGardianName"),
    )
    parent_guardian_nid: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("parentGuardianNationalId", "parentGardianNationalId"),
    )
    address: Optional[str] = None
    emergency_contact_person: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("emergencyContactPerson", "emergenceContactPerson"),
    )
    emergency_contact_number: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("emergencyContactNumber", "emergenceContactNumber"),
    )
    inactive_reason: Optional[str] = Field(default=None, alias="inactiveReason")
    modified_since: Optional[str] = Field(default=None, alias="modifiedSince")


class SDMSSpeciality(SDMSRecord):
    level_id: str = Field(default="", alias="levelId")
    level_name: str = Field(default="", validation_alias=AliasChoices("levelName", "level"))
    combination_code: str = Field(default="", alias="combinationCode")
    combination_name: str = Field(
        default="", validation_alias=AliasChoices("combinationName", "combination")
    )
    subject_code: str = Field(default="", alias="subjectCode")
    subject_name: str = Field(default="", validation_alias=AliasChoices("subjectName", "subject"))
    grade_code: Optional[str] = Field(default=None, alias="gradeCode")
    grade_name: Optional[str] = Field(default=None, alias="gradeName")
    class_group: Optional[str] = Field(default=None, alias="classGroup")


class SDMSStaffRecord(SDMSPersonRecord):
    staff_number: Optional[str] = Field(default=None, alias="staffNumber")
    position: Optional[str] = None
    official_document_id: Optional[str] = Field(default=None, alias="officialDocumentId")
    mobile_phone: Optional[str] = Field(default=None, alias="mobilePhoneNumber")
    company_email: Optional[str] = Field(default=None, alias="companyEmail")
    employment_status: Optional[str] = Field(default=None, alias="employmentStatus")
    employment_start_date: Optional[str] = Field(default=None, alias="employmentStartDateTime")
    employment_end_date: Optional[str] = Field(default=None, alias="employmentEndDate")
    specialities: List[SDMSSpeciality] = Field(default_factory=list)


def parse_remote_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an SDMS date string into a naive UTC datetime; unparseable values give None."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        for fmt in ("%d/%m/%Y", "%Y/%m/%d", "%d-%m-%Y"):
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        else:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
