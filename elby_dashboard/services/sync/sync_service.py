"""
Cache-first SDMS sync service.

Reads are served from the local tables and refreshed from SDMS only when
the cached row is older than the configured TTL. A failed refresh never
fails the read while a cached row exists; the row is returned with its
sync status set to error instead. Forced syncs surface fetch errors to
the caller.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Union

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from elby_dashboard.core.sdms_config import CacheConfig, utcnow
from elby_dashboard.integrations.sdms.audit import SyncLogWriter
from elby_dashboard.integrations.sdms.client import SDMSClient
from elby_dashboard.integrations.sdms.errors import (
    ConflictError, NotLinkedError, FETCH_ERRORS
)
from elby_dashboard.integrations.sdms.records import (
    SDMSPersonRecord, SDMSSchoolRecord, parse_remote_date
)
from elby_dashboard.models.sdms import (
    School, Level, Combination, Grade, ClassGroup,
    UserLink, StudentProfile, StaffProfile, StaffSubject,
    SyncStatus, UserType
)
from elby_dashboard.models.sync_log import SyncOperation
from elby_dashboard.schemas.sdms import (
    SchoolInfo, SchoolSummary, LevelInfo, CombinationInfo, GradeInfo, ClassGroupInfo,
    UserProfile, StudentProfileInfo, StaffProfileInfo, StaffSubjectInfo
)
from .hierarchy import SchoolHierarchySync
from .user_types import UserTypeHandler, handler_for


logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Not found in SDMS"


class SDMSSyncService:
    """Keeps the local SDMS cache of schools and linked users current."""

    def __init__(
        self,
        db: AsyncSession,
        client: SDMSClient,
        cache_config: CacheConfig,
        audit: Optional[SyncLogWriter] = None,
        triggered_by: str = "api",
    ):
        self.db = db
        self.client = client
        self.cache_config = cache_config
        self.audit = audit or SyncLogWriter(None)
        self.triggered_by = triggered_by

    def is_stale(self, last_synced: Optional[datetime]) -> bool:
        return self.cache_config.is_stale(last_synced)

    # ------------------------------------------------------------------
    # Schools
    # ------------------------------------------------------------------

    async def get_school_info(self, school_code: str) -> Optional[SchoolInfo]:
        """
        Return the cached school, refreshing it first when stale.

        A school that has never been cached is fetched synchronously; with
        nothing to fall back on, fetch errors propagate in that case.
        """
        school = await self._get_school(school_code)

        if school is None:
            school = await self.sync_school(school_code, force=True)
            if school is None:
                return None
        elif self.is_stale(school.last_synced):
            try:
                refreshed = await self.sync_school(school_code, force=True)
            except FETCH_ERRORS as e:
                logger.warning(f"Serving stale school {school_code}: {e}")
                school.mark_error(str(e))
                await self.db.commit()
            else:
                if refreshed is not None:
                    school = refreshed

        return await self._school_info(school)

    async def sync_school(self, school_code: str, force: bool = False) -> Optional[School]:
        """
        Fetch a school and replace its cached hierarchy.

        Without ``force`` a fresh cached row is returned untouched. Returns
        None when SDMS does not know the code; an existing row is then kept
        and marked as errored.
        """
        existing = await self._get_school(school_code)
        if existing is not None and not force and not self.is_stale(existing.last_synced):
            return existing

        record = await self.client.get_school(school_code)
        if record is None:
            if existing is not None:
                existing.mark_error(NOT_FOUND_MESSAGE)
                await self.db.commit()
            logger.info(f"School {school_code} not found in SDMS")
            return None

        try:
            school = existing or School(school_code=record.school_code or school_code)
            if existing is None:
                self.db.add(school)
            self._apply_school_record(school, record)
            await self.db.flush()

            hierarchy = SchoolHierarchySync(self.db)
            await hierarchy.replace(school.id, record.levels)
            school.has_tvet = await hierarchy.has_tvet(school.id)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.audit.record(
            "school",
            school.school_code,
            SyncOperation.UPDATE if existing is not None else SyncOperation.CREATE,
            triggered_by=self.triggered_by,
        )
        logger.info(f"Synced school {school.school_code}")
        return school

    async def sync_school_now(self, school_code: str) -> Optional[School]:
        """Administrative force sync; fetch errors propagate."""
        return await self.sync_school(school_code, force=True)

    def _apply_school_record(self, school: School, record: SDMSSchoolRecord) -> None:
        school.school_name = record.school_name
        school.region_code = record.region_code
        school.is_active = record.active
        school.school_status = record.school_status
        school.school_category = record.school_category
        school.academic_year = record.academic_year
        school.gps_long = record.gps_long
        school.gps_lat = record.gps_lat
        school.establishment_date = parse_remote_date(record.establishment_date)
        school.sync_status = SyncStatus.SYNCED
        school.sync_error = None
        school.last_synced = utcnow()

    async def _get_school(self, school_code: str) -> Optional[School]:
        result = await self.db.execute(
            select(School).where(School.school_code == school_code)
        )
        return result.scalar_one_or_none()

    async def _school_info(self, school: School) -> SchoolInfo:
        info = SchoolInfo.model_validate(school)
        info.is_stale = self.is_stale(school.last_synced)
        info.levels = await self._load_hierarchy(school.id)
        return info

    async def _load_hierarchy(self, school_id: int) -> List[LevelInfo]:
        levels = (await self.db.execute(
            select(Level).where(Level.school_id == school_id).order_by(Level.id)
        )).scalars().all()
        level_ids = [level.id for level in levels]

        combinations = (await self.db.execute(
            select(Combination).where(Combination.level_id.in_(level_ids)).order_by(Combination.id)
        )).scalars().all() if level_ids else []
        combination_ids = [combination.id for combination in combinations]

        grades = (await self.db.execute(
            select(Grade).where(Grade.combination_id.in_(combination_ids)).order_by(Grade.id)
        )).scalars().all() if combination_ids else []
        grade_ids = [grade.id for grade in grades]

        class_groups = (await self.db.execute(
            select(ClassGroup).where(ClassGroup.grade_id.in_(grade_ids)).order_by(ClassGroup.id)
        )).scalars().all() if grade_ids else []

        groups_by_grade: Dict[int, List[ClassGroupInfo]] = {}
        for group in class_groups:
            groups_by_grade.setdefault(group.grade_id, []).append(ClassGroupInfo.model_validate(group))

        grades_by_combination: Dict[int, List[GradeInfo]] = {}
        for grade in grades:
            info = GradeInfo.model_validate(grade)
            info.class_groups = groups_by_grade.get(grade.id, [])
            grades_by_combination.setdefault(grade.combination_id, []).append(info)

        combinations_by_level: Dict[int, List[CombinationInfo]] = {}
        for combination in combinations:
            info = CombinationInfo.model_validate(combination)
            info.grades = grades_by_combination.get(combination.id, [])
            combinations_by_level.setdefault(combination.level_id, []).append(info)

        result = []
        for level in levels:
            info = LevelInfo.model_validate(level)
            info.combinations = combinations_by_level.get(level.id, [])
            result.append(info)
        return result

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user_profile(self, user_id: int) -> Optional[UserProfile]:
        """Return the linked user's cached profile, refreshing it when stale. None if unlinked."""
        link = await self._get_link(user_id)
        if link is None:
            return None

        if link.user_type is not None and self.is_stale(link.last_synced):
            try:
                await self.refresh_user(user_id, force=True)
            except FETCH_ERRORS as e:
                logger.warning(f"Serving stale profile for user {user_id}: {e}")
                link = await self._get_link(user_id)
                link.mark_error(str(e))
                await self.db.commit()
            link = await self._get_link(user_id)

        return await self._user_profile(link)

    async def link_user(
        self,
        user_id: int,
        sdms_code: str,
        user_type: Union[str, UserType],
    ) -> Optional[UserLink]:
        """
        Link a local user to an SDMS student or staff record.

        Raises ConflictError when either side is already linked. Returns
        None when SDMS has no record for the code. The user's school is
        synced along the way; failing that does not block the link.
        """
        handler = handler_for(user_type)
        code = (sdms_code or "").strip()
        if not code:
            raise ValueError("SDMS code is required")

        await self._ensure_unlinked(user_id, code)

        record = await handler.fetch_record(self.client, code)
        if record is None:
            logger.info(f"{handler.sync_type} {code} not found in SDMS")
            return None

        school_id = await self._cascade_school(handler.school_code(record))
        link = await self._upsert_user(user_id, code, handler, record, school_id, existing=None)
        logger.info(f"Linked user {user_id} to SDMS {handler.sync_type} {code}")
        return link

    async def refresh_user(self, user_id: int, force: bool = True) -> Optional[UserLink]:
        """
        Re-fetch a linked user's record. Raises NotLinkedError for unknown
        users; returns None (and marks the link errored) when SDMS no longer
        has the record.
        """
        link = await self._get_link(user_id)
        if link is None:
            raise NotLinkedError(f"User {user_id} is not linked to SDMS", entity_id=str(user_id))
        if link.user_type is None:
            logger.info(f"User {user_id} has a placeholder link, nothing to refresh")
            return None
        if not force and not self.is_stale(link.last_synced):
            return link

        handler = handler_for(link.user_type)
        sdms_id = link.sdms_id
        record = await handler.fetch_record(self.client, sdms_id)
        if record is None:
            link.mark_error(NOT_FOUND_MESSAGE)
            await self.db.commit()
            logger.info(f"{handler.sync_type} {sdms_id} for user {user_id} no longer in SDMS")
            return None

        school_id = await self._cascade_school(handler.school_code(record))
        link = await self._get_link(user_id)
        return await self._upsert_user(user_id, sdms_id, handler, record, school_id, existing=link)

    async def _ensure_unlinked(self, user_id: int, sdms_code: str) -> None:
        result = await self.db.execute(
            select(UserLink).where(or_(UserLink.user_id == user_id, UserLink.sdms_id == sdms_code))
        )
        for link in result.scalars().all():
            if link.user_id == user_id:
                raise ConflictError(
                    f"User {user_id} is already linked to SDMS id {link.sdms_id}",
                    entity_type="user", entity_id=str(user_id),
                )
            raise ConflictError(
                f"SDMS id {sdms_code} is already linked to another user",
                entity_type="sdms_user", entity_id=sdms_code,
            )

    async def _cascade_school(self, school_code: Optional[str]) -> Optional[int]:
        """Make sure the user's school is cached. Failures are logged, not raised."""
        if not school_code:
            return None
        try:
            school = await self.sync_school(school_code)
        except Exception as e:
            logger.warning(f"Could not sync school {school_code}: {e}")
            return None
        return school.id if school is not None else None

    async def _upsert_user(
        self,
        user_id: int,
        sdms_id: str,
        handler: UserTypeHandler,
        record: SDMSPersonRecord,
        school_id: Optional[int],
        existing: Optional[UserLink],
    ) -> UserLink:
        try:
            link = existing
            if link is None:
                link = UserLink(user_id=user_id, sdms_id=sdms_id)
                self.db.add(link)
            # Keep the previous school when the record's code is unknown
            if school_id is not None:
                link.school_id = school_id
            link.user_type = handler.user_type
            link.academic_year = record.academic_year
            link.sdms_status = record.status
            link.sync_status = SyncStatus.SYNCED
            link.sync_error = None
            link.last_synced = utcnow()
            await self.db.flush()

            await handler.upsert_profile(self.db, link, record)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError(
                f"SDMS id {sdms_id} or user {user_id} is already linked",
                entity_type="sdms_user", entity_id=sdms_id,
                details={'error': str(e.orig)},
            )
        except Exception:
            await self.db.rollback()
            raise

        await self.audit.record(
            handler.sync_type,
            sdms_id,
            SyncOperation.UPDATE if existing is not None else SyncOperation.CREATE,
            user_id=user_id,
            triggered_by=self.triggered_by,
        )
        return link

    async def _get_link(self, user_id: int) -> Optional[UserLink]:
        result = await self.db.execute(
            select(UserLink).where(UserLink.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def _user_profile(self, link: UserLink) -> UserProfile:
        school = None
        if link.school_id is not None:
            row = await self.db.get(School, link.school_id)
            if row is not None:
                school = SchoolSummary.model_validate(row)

        profile = UserProfile(
            user_id=link.user_id,
            sdms_id=link.sdms_id,
            user_type=link.user_type,
            academic_year=link.academic_year,
            sdms_status=link.sdms_status,
            school=school,
            sync_status=link.sync_status,
            sync_error=link.sync_error,
            last_synced=link.last_synced,
            is_stale=self.is_stale(link.last_synced),
        )

        if link.user_type == UserType.STUDENT:
            result = await self.db.execute(
                select(StudentProfile).where(StudentProfile.link_id == link.id)
            )
            student = result.scalar_one_or_none()
            if student is not None:
                profile.student = StudentProfileInfo.model_validate(student)
        elif link.user_type == UserType.STAFF:
            result = await self.db.execute(
                select(StaffProfile).where(StaffProfile.link_id == link.id)
            )
            staff = result.scalar_one_or_none()
            if staff is not None:
                info = StaffProfileInfo.model_validate(staff)
                subjects = await self.db.execute(
                    select(StaffSubject)
                    .where(StaffSubject.teacher_id == staff.id)
                    .order_by(StaffSubject.id)
                )
                info.subjects = [StaffSubjectInfo.model_validate(s) for s in subjects.scalars().all()]
                profile.staff = info

        return profile
