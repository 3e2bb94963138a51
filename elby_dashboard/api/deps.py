from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from elby_dashboard.core.database import session_scope
from elby_dashboard.services.sync import SDMSSyncService

SDMS_NOT_CONFIGURED = "SDMS API URL is not configured. Please contact your administrator."


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async for session in session_scope(request.app.state.session_factory):
        yield session


async def get_sync_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> SDMSSyncService:
    state = request.app.state
    if state.sdms_client is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=SDMS_NOT_CONFIGURED)
    return SDMSSyncService(
        db,
        state.sdms_client,
        state.settings.cache_config(),
        state.audit,
        triggered_by="api",
    )
