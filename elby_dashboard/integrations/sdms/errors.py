"""
Error types for the SDMS integration.

Not-found is deliberately absent from this module: a missing remote record
is reported as ``None``, never raised.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional

from elby_dashboard.core.sdms_config import utcnow


class SDMSErrorCategory:
    """Error categories for classification in logs."""
    CONFIGURATION = "configuration"
    NETWORK = "network"
    PROVIDER_ERROR = "provider_error"
    DATA_VALIDATION = "data_validation"
    CONFLICT = "conflict"
    NOT_LINKED = "not_linked"
    UNKNOWN = "unknown"


class SDMSError(Exception):
    """Base exception for SDMS integration errors."""

    def __init__(
        self,
        message: str,
        category: str = SDMSErrorCategory.UNKNOWN,
        retryable: bool = False,
        status_code: Optional[int] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.retryable = retryable
        self.status_code = status_code
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.details = details or {}
        self.timestamp: datetime = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/API responses."""
        return {
            'message': self.message,
            'category': self.category,
            'retryable': self.retryable,
            'status_code': self.status_code,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'details': self.details,
            'timestamp': self.timestamp.isoformat(),
        }


class SDMSConfigurationError(SDMSError):
    """The client cannot be used with the given configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=SDMSErrorCategory.CONFIGURATION, retryable=False, **kwargs)


class TransientFetchError(SDMSError):
    """5xx responses, timeouts and connection failures."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=SDMSErrorCategory.NETWORK, retryable=True, **kwargs)


class PermanentFetchError(SDMSError):
    """Non-retryable failures: 4xx other than 404, malformed or error bodies."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=SDMSErrorCategory.PROVIDER_ERROR, retryable=False, **kwargs)


class ConflictError(SDMSError):
    """The external id or the local user is already linked."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=SDMSErrorCategory.CONFLICT, retryable=False, **kwargs)


class NotLinkedError(SDMSError):
    """The operation needs a linked user and there is none."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=SDMSErrorCategory.NOT_LINKED, retryable=False, **kwargs)


FETCH_ERRORS = (TransientFetchError, PermanentFetchError)


@dataclass
class BatchResult:
    """Outcome of a scheduled batch where items fail independently."""
    name: str
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def record_success(self) -> None:
        self.processed += 1
        self.succeeded += 1

    def record_skip(self) -> None:
        self.processed += 1
        self.skipped += 1

    def record_failure(self, item: Any, error: Exception) -> None:
        self.processed += 1
        self.failed += 1
        self.errors.append(f"{item}: {error}")

    @property
    def partial_failure(self) -> bool:
        return self.failed > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'processed': self.processed,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'skipped': self.skipped,
            'errors': list(self.errors),
        }

    def merge(self, other: "BatchResult") -> "BatchResult":
        """Fold another result's counts into this one."""
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.skipped += other.skipped
        self.errors.extend(other.errors)
        return self
