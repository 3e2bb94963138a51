"""
Client and error types for the SDMS (Student Data Management System) API.
"""

from .client import SDMSClient
from .audit import SyncLogWriter
from .errors import (
    SDMSError, SDMSConfigurationError, TransientFetchError, PermanentFetchError,
    ConflictError, NotLinkedError, BatchResult, FETCH_ERRORS
)
from .records import (
    SDMSStudentRecord, SDMSStaffRecord, SDMSSchoolRecord, parse_remote_date
)

__all__ = [
    "SDMSClient",
    "SyncLogWriter",
    "SDMSError",
    "SDMSConfigurationError",
    "TransientFetchError",
    "PermanentFetchError",
    "ConflictError",
    "NotLinkedError",
    "BatchResult",
    "FETCH_ERRORS",
    "SDMSStudentRecord",
    "SDMSStaffRecord",
    "SDMSSchoolRecord",
    "parse_remote_date",
]
