"""
Per-variant handling for linked SDMS users.

Each handler knows how to fetch its record type, where the school code
lives on it, and how to write the type-specific profile rows.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Union

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from elby_dashboard.integrations.sdms.client import SDMSClient
from elby_dashboard.integrations.sdms.records import (
    SDMSPersonRecord, SDMSStudentRecord, SDMSStaffRecord, parse_remote_date
)
from elby_dashboard.models.sdms import (
    UserType, UserLink, StudentProfile, StaffProfile, StaffSubject,
    ClassGroup, Grade, Combination, Level
)


class UserTypeHandler(ABC):
    """Base class for student and staff sync behaviour."""

    user_type: UserType
    sync_type: str

    @abstractmethod
    async def fetch_record(self, client: SDMSClient, code: str) -> Optional[SDMSPersonRecord]:
        """Fetch the remote record; None when SDMS does not know the code."""
        pass

    def school_code(self, record: SDMSPersonRecord) -> Optional[str]:
        return record.school_code or None

    @abstractmethod
    async def upsert_profile(
        self, db: AsyncSession, link: UserLink, record: SDMSPersonRecord
    ) -> None:
        """Create or update the profile rows for a flushed link."""
        pass


class StudentHandler(UserTypeHandler):
    user_type = UserType.STUDENT
    sync_type = "student"

    async def fetch_record(self, client: SDMSClient, code: str) -> Optional[SDMSStudentRecord]:
        return await client.get_student(code)

    async def upsert_profile(
        self, db: AsyncSession, link: UserLink, record: SDMSStudentRecord
    ) -> None:
        result = await db.execute(
            select(StudentProfile).where(StudentProfile.link_id == link.id)
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            profile = StudentProfile(link_id=link.id)
            db.add(profile)

        profile.class_id = await self._resolve_class(db, link.school_id, record.class_group_id)
        profile.program = record.combination
        profile.program_code = record.combination_code
        profile.registration_date = parse_remote_date(record.registration_date)
        profile.gender = record.gender
        profile.date_of_birth = record.date_of_birth
        profile.study_level = record.study_level
        profile.class_grade = record.class_grade
        profile.grade_code = record.grade_code
        profile.class_group_name = record.class_group
        profile.parent_guardian_name = record.parent_guardian_name
        profile.parent_guardian_nid = record.parent_guardian_nid
        profile.address = record.address
        profile.emergency_contact_person = record.emergency_contact_person
        profile.emergency_contact_number = record.emergency_contact_number
        profile.inactive_reason = record.inactive_reason
        profile.sdms_modified_since = record.modified_since
        await db.flush()

    async def _resolve_class(
        self, db: AsyncSession, school_id: Optional[int], class_group_id: Optional[str]
    ) -> Optional[int]:
        """Find the cached class group, preferring one inside the student's school."""
        if not class_group_id:
            return None

        query = select(ClassGroup.id).where(ClassGroup.sdms_class_id == class_group_id)
        if school_id is not None:
            query = (
                query.join(Grade, Grade.id == ClassGroup.grade_id)
                .join(Combination, Combination.id == Grade.combination_id)
                .join(Level, Level.id == Combination.level_id)
                .where(Level.school_id == school_id)
            )
        result = await db.execute(query.limit(1))
        return result.scalar_one_or_none()


class StaffHandler(UserTypeHandler):
    user_type = UserType.STAFF
    sync_type = "staff"

    async def fetch_record(self, client: SDMSClient, code: str) -> Optional[SDMSStaffRecord]:
        return await client.get_staff(code)

    async def upsert_profile(
        self, db: AsyncSession, link: UserLink, record: SDMSStaffRecord
    ) -> None:
        result = await db.execute(
            select(StaffProfile).where(StaffProfile.link_id == link.id)
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            profile = StaffProfile(link_id=link.id)
            db.add(profile)

        profile.position = record.position
        profile.gender = record.gender
        profile.official_document_id = record.official_document_id
        profile.mobile_phone = record.mobile_phone
        profile.company_email = record.company_email
        profile.employment_status = record.employment_status
        profile.employment_start_date = record.employment_start_date
        profile.employment_end_date = record.employment_end_date
        await db.flush()

        # Subjects are replaced wholesale
        await db.execute(delete(StaffSubject).where(StaffSubject.teacher_id == profile.id))
        for speciality in record.specialities:
            db.add(StaffSubject(
                teacher_id=profile.id,
                level_id=speciality.level_id,
                level_name=speciality.level_name,
                combination_code=speciality.combination_code,
                combination_name=speciality.combination_name,
                subject_code=speciality.subject_code,
                subject_name=speciality.subject_name,
                grade_code=speciality.grade_code,
                grade_name=speciality.grade_name,
                class_group=speciality.class_group,
            ))
        await db.flush()


_HANDLERS: Dict[UserType, UserTypeHandler] = {
    UserType.STUDENT: StudentHandler(),
    UserType.STAFF: StaffHandler(),
}


def handler_for(user_type: Union[str, UserType]) -> UserTypeHandler:
    """Return the handler for a user type; accepts "student", "teacher" and "staff"."""
    return _HANDLERS[UserType.parse(user_type)]
