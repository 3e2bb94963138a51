"""
Replacement of a school's level → combination → grade → class group tree.

Rows are matched on their natural key within the parent, updated in place
(ids stay stable for the student profiles that reference class groups), and
anything the remote response no longer contains is deleted together with
its descendants. The caller owns the transaction.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Sequence, Tuple, Type

from sqlalchemy import select, delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from elby_dashboard.integrations.sdms.records import SDMSLevel
from elby_dashboard.models.sdms import (
    Level, Combination, Grade, ClassGroup, StudentProfile
)


logger = logging.getLogger(__name__)

TVET_LEVEL_NAME = "TVET"


@dataclass
class HierarchyStats:
    levels: int = 0
    combinations: int = 0
    grades: int = 0
    class_groups: int = 0
    removed: int = 0


class SchoolHierarchySync:
    """Upserts and prunes the hierarchy rows of one school."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def replace(self, school_id: int, levels: Sequence[SDMSLevel]) -> HierarchyStats:
        stats = HierarchyStats()

        level_rows, stale_levels = await self._sync_children(
            Level, "school_id", school_id, "sdms_level_id",
            levels,
            key=lambda item: item.level_id,
            values=lambda item: {
                "level_name": item.level_name,
                "level_desc": item.description,
            },
        )
        stats.levels = len(level_rows)

        for level, level_items in level_rows:
            combination_rows, stale_combinations = await self._sync_children(
                Combination, "level_id", level.id, "combination_code",
                [combo for item in level_items for combo in item.combinations],
                key=lambda item: item.combination_code,
                values=lambda item: {
                    "combination_name": item.combination_name,
                    "combination_desc": item.description,
                },
            )
            stats.combinations += len(combination_rows)
            stats.removed += await self._delete_combinations([row.id for row in stale_combinations])

            for combination, combination_items in combination_rows:
                grade_rows, stale_grades = await self._sync_children(
                    Grade, "combination_id", combination.id, "grade_code",
                    [grade for item in combination_items for grade in item.grades],
                    key=lambda item: item.grade_code,
                    values=lambda item: {"grade_name": item.grade_name},
                )
                stats.grades += len(grade_rows)
                stats.removed += await self._delete_grades([row.id for row in stale_grades])

                for grade, grade_items in grade_rows:
                    class_rows, stale_classes = await self._sync_children(
                        ClassGroup, "grade_id", grade.id, "sdms_class_id",
                        [group for item in grade_items for group in item.class_groups],
                        key=lambda item: item.class_group_id,
                        values=lambda item: {"class_name": item.class_group_name},
                    )
                    stats.class_groups += len(class_rows)
                    stats.removed += await self._delete_class_groups([row.id for row in stale_classes])

        stats.removed += await self._delete_levels([row.id for row in stale_levels])
        await self.db.flush()

        logger.debug(
            f"School {school_id} hierarchy: {stats.levels} levels, {stats.combinations} combinations, "
            f"{stats.grades} grades, {stats.class_groups} class groups, {stats.removed} removed"
        )
        return stats

    async def has_tvet(self, school_id: int) -> bool:
        result = await self.db.execute(
            select(Level.id)
            .where(Level.school_id == school_id, Level.level_name == TVET_LEVEL_NAME)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _sync_children(
        self,
        model: Type[Any],
        parent_field: str,
        parent_id: int,
        key_field: str,
        items: Sequence[Any],
        key: Callable[[Any], str],
        values: Callable[[Any], Dict[str, Any]],
    ) -> Tuple[List[Tuple[Any, List[Any]]], List[Any]]:
        """
        Match items to existing rows by natural key. Items sharing a key are
        merged onto one row; the last one's values win.

        Returns (row, items) pairs in response order and the rows that no
        longer appear in the response.
        """
        result = await self.db.execute(
            select(model).where(getattr(model, parent_field) == parent_id)
        )
        current = {getattr(row, key_field): row for row in result.scalars().all()}

        synced: Dict[str, Tuple[Any, List[Any]]] = {}
        for item in items:
            item_key = key(item)
            if item_key in synced:
                row, grouped = synced[item_key]
                grouped.append(item)
            else:
                row = current.pop(item_key, None)
                if row is None:
                    row = model(**{parent_field: parent_id, key_field: item_key})
                    self.db.add(row)
                synced[item_key] = (row, [item])
            for field_name, value in values(item).items():
                setattr(row, field_name, value)

        await self.db.flush()
        return list(synced.values()), list(current.values())

    async def _delete_levels(self, level_ids: List[int]) -> int:
        if not level_ids:
            return 0
        result = await self.db.execute(
            select(Combination.id).where(Combination.level_id.in_(level_ids))
        )
        removed = await self._delete_combinations(list(result.scalars().all()))
        await self.db.execute(delete(Level).where(Level.id.in_(level_ids)))
        return removed + len(level_ids)

    async def _delete_combinations(self, combination_ids: List[int]) -> int:
        if not combination_ids:
            return 0
        result = await self.db.execute(
            select(Grade.id).where(Grade.combination_id.in_(combination_ids))
        )
        removed = await self._delete_grades(list(result.scalars().all()))
        await self.db.execute(delete(Combination).where(Combination.id.in_(combination_ids)))
        return removed + len(combination_ids)

    async def _delete_grades(self, grade_ids: List[int]) -> int:
        if not grade_ids:
            return 0
        result = await self.db.execute(
            select(ClassGroup.id).where(ClassGroup.grade_id.in_(grade_ids))
        )
        removed = await self._delete_class_groups(list(result.scalars().all()))
        await self.db.execute(delete(Grade).where(Grade.id.in_(grade_ids)))
        return removed + len(grade_ids)

    async def _delete_class_groups(self, class_ids: List[int]) -> int:
        if not class_ids:
            return 0
        # Students keep their profile; they just lose the class reference
        await self.db.execute(
            update(StudentProfile)
            .where(StudentProfile.class_id.in_(class_ids))
            .values(class_id=None)
        )
        await self.db.execute(delete(ClassGroup).where(ClassGroup.id.in_(class_ids)))
        return len(class_ids)
