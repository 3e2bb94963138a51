"""
FastAPI router for the SDMS cache: profile and school reads, linking,
and administrative refreshes.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from elby_dashboard.api.deps import get_sync_service
from elby_dashboard.integrations.sdms.errors import (
    SDMSError, ConflictError, NotLinkedError, SDMSConfigurationError, FETCH_ERRORS
)
from elby_dashboard.schemas.sdms import (
    SchoolInfo, SchoolSummary, UserProfile, LinkUserRequest
)
from elby_dashboard.services.sync import SDMSSyncService

router = APIRouter()


def _error_response(error: SDMSError) -> HTTPException:
    if isinstance(error, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.message)
    if isinstance(error, NotLinkedError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    if isinstance(error, FETCH_ERRORS):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error.to_dict())
    if isinstance(error, SDMSConfigurationError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=error.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)


@router.get("/users/{user_id}/profile", response_model=UserProfile)
async def get_user_profile(
    user_id: int,
    service: SDMSSyncService = Depends(get_sync_service),
):
    """Cached SDMS profile of a linked user, refreshed first when stale."""
    profile = await service.get_user_profile(user_id)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} is not linked to SDMS"
        )
    return profile


@router.get("/schools/{school_code}", response_model=SchoolInfo)
async def get_school(
    school_code: str,
    service: SDMSSyncService = Depends(get_sync_service),
):
    """Cached school with its level hierarchy."""
    try:
        info = await service.get_school_info(school_code)
    except SDMSError as e:
        raise _error_response(e)
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"School {school_code} not found in SDMS"
        )
    return info


@router.post("/users/{user_id}/link", response_model=UserProfile, status_code=status.HTTP_201_CREATED)
async def link_user(
    user_id: int,
    request: LinkUserRequest,
    service: SDMSSyncService = Depends(get_sync_service),
):
    """Link a local user to an SDMS student or staff record."""
    try:
        link = await service.link_user(user_id, request.sdms_code, request.user_type)
    except SDMSError as e:
        raise _error_response(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if link is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No SDMS {request.user_type.value} found for {request.sdms_code}"
        )
    return await service.get_user_profile(user_id)


@router.post("/users/{user_id}/refresh", response_model=UserProfile)
async def refresh_user(
    user_id: int,
    service: SDMSSyncService = Depends(get_sync_service),
):
    """Force a refresh of a linked user from SDMS."""
    try:
        link = await service.refresh_user(user_id, force=True)
    except SDMSError as e:
        raise _error_response(e)

    if link is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"SDMS record for user {user_id} could not be refreshed"
        )
    return await service.get_user_profile(user_id)


@router.post("/schools/{school_code}/sync", response_model=SchoolSummary)
async def sync_school(
    school_code: str,
    service: SDMSSyncService = Depends(get_sync_service),
):
    """Force a school sync, replacing its cached hierarchy."""
    try:
        school = await service.sync_school_now(school_code)
    except SDMSError as e:
        raise _error_response(e)

    if school is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"School {school_code} not found in SDMS"
        )
    return SchoolSummary.model_validate(school)
