from .sync_service import SDMSSyncService
from .hierarchy import SchoolHierarchySync, HierarchyStats
from .user_types import UserTypeHandler, StudentHandler, StaffHandler, handler_for

__all__ = [
    "SDMSSyncService",
    "SchoolHierarchySync",
    "HierarchyStats",
    "UserTypeHandler",
    "StudentHandler",
    "StaffHandler",
    "handler_for",
]
