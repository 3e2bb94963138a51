from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from sqlalchemy.sql import func
import enum

from elby_dashboard.core.database import Base


class SyncOperation(str, enum.Enum):
    FETCH = "fetch"
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"
    ERROR = "error"


class SyncLogEntry(Base):
    """Append-only audit row for SDMS requests and sync writes."""

    __tablename__ = "elby_sync_log"

    id = Column(Integer, primary_key=True, index=True)
    sync_type = Column(String(30), nullable=False)  # student, staff, school, enrollment
    entity_id = Column(String(100), nullable=False)
    user_id = Column(Integer, nullable=True)
    operation = Column(String(20), nullable=False)
    request_url = Column(Text, nullable=True)
    response_code = Column(Integer, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    details = Column(Text, nullable=True)
    triggered_by = Column(String(30), nullable=True)  # api, task, event, admin

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index('idx_elby_sync_log_created', 'created_at'),
        Index('idx_elby_sync_log_entity', 'sync_type', 'entity_id'),
    )
