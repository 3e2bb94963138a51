"""
Best-effort writer for the SDMS sync audit log.
"""

import logging
from typing import Optional
from sqlalchemy.ext.asyncio import async_sessionmaker

from elby_dashboard.core.sdms_config import utcnow
from elby_dashboard.models.sync_log import SyncLogEntry, SyncOperation


sdms_logger = logging.getLogger('sdms_integration')


class SyncLogWriter:
    """
    Appends SyncLogEntry rows in a session of its own, so an audit write
    never joins (or breaks) the caller's transaction.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker]):
        self.session_factory = session_factory

    async def record(
        self,
        sync_type: str,
        entity_id: str,
        operation: SyncOperation,
        *,
        user_id: Optional[int] = None,
        request_url: Optional[str] = None,
        response_code: Optional[int] = None,
        response_time_ms: Optional[int] = None,
        error_message: Optional[str] = None,
        details: Optional[str] = None,
        triggered_by: str = "api",
    ) -> None:
        if self.session_factory is None:
            return

        entry = SyncLogEntry(
            sync_type=sync_type,
            entity_id=str(entity_id),
            user_id=user_id,
            operation=operation.value,
            request_url=request_url,
            response_code=response_code,
            response_time_ms=response_time_ms,
            error_message=error_message,
            details=details,
            triggered_by=triggered_by,
            created_at=utcnow(),
        )

        try:
            async with self.session_factory() as session:
                session.add(entry)
                await session.commit()
        except Exception as e:
            sdms_logger.warning(f"Failed to write sync log for {sync_type} {entity_id}: {e}")
