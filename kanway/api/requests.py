"""Service request, acceptance and assignment API endpoints"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from kanway.api.deps import get_current_identity
from kanway.db.database import get_db
from kanway.db.models import RequestStatus
from kanway.schemas.acceptances import AcceptanceListResponse, InterestResponse
from kanway.schemas.requests import (
    ChooseProvider,
    RequestCreate,
    RequestUpdate,
    ServiceRequestListResponse,
    ServiceRequestResponse,
    StatusTransition,
)
from kanway.services.acceptances import AcceptanceService
from kanway.services.notifications import NotificationEmitter, get_notifier
from kanway.services.requests import RequestService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=ServiceRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
    request_data: RequestCreate,
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> ServiceRequestResponse:
    """Create a new service request"""
    request = await RequestService(db).create_request(caller_id, request_data)
    return ServiceRequestResponse.model_validate(request)


@router.get("/available", response_model=ServiceRequestListResponse)
async def list_available_requests(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    _: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> ServiceRequestListResponse:
    """Open requests that providers can still accept"""
    requests, total = await RequestService(db).list_available(limit=limit, offset=skip)
    return ServiceRequestListResponse(
        requests=[ServiceRequestResponse.model_validate(r) for r in requests],
        total=total,
    )


@router.get("/mine", response_model=ServiceRequestListResponse)
async def list_my_requests(
    role: str = Query("requester", pattern="^(requester|provider)$"),
    status_filter: RequestStatus | None = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> ServiceRequestListResponse:
    """Requests the caller created, or jobs assigned to them with role=provider"""
    service = RequestService(db)
    if role == "provider":
        requests, total = await service.list_for_provider(caller_id, status_filter, limit, skip)
    else:
        requests, total = await service.list_for_requester(caller_id, status_filter, limit, skip)

    return ServiceRequestListResponse(
        requests=[ServiceRequestResponse.model_validate(r) for r in requests],
        total=total,
    )


@router.get("/{request_id}", response_model=ServiceRequestResponse)
async def get_request(
    request_id: UUID,
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> ServiceRequestResponse:
    request = await RequestService(db).get_request(request_id, caller_id)
    return ServiceRequestResponse.model_validate(request)


@router.patch("/{request_id}", response_model=ServiceRequestResponse)
async def update_request(
    request_id: UUID,
    update_data: RequestUpdate,
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> ServiceRequestResponse:
    """Edit a pending request"""
    request = await RequestService(db).update_request(request_id, caller_id, update_data)
    return ServiceRequestResponse.model_validate(request)


@router.post(
    "/{request_id}/acceptances",
    response_model=InterestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def express_interest(
    request_id: UUID,
    caller_id: UUID = Depends(get_current_identity),
    notifier: NotificationEmitter = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> InterestResponse:
    """Provider offers to take a pending request"""
    return await AcceptanceService(db, notifier=notifier).express_interest(request_id, caller_id)


@router.delete("/{request_id}/acceptances/me", status_code=status.HTTP_204_NO_CONTENT)
async def withdraw_interest(
    request_id: UUID,
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await AcceptanceService(db).withdraw_interest(request_id, caller_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{request_id}/acceptances", response_model=AcceptanceListResponse)
async def list_acceptances(
    request_id: UUID,
    caller_id: UUID = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> AcceptanceListResponse:
    """Providers who accepted, with their public profiles (requester only)"""
    acceptances = await AcceptanceService(db).list_acceptances(request_id, caller_id)
    return AcceptanceListResponse(acceptances=acceptances, total=len(acceptances))


@router.post("/{request_id}/choose", response_model=ServiceRequestResponse)
async def choose_provider(
    request_id: UUID,
    choice: ChooseProvider,
    caller_id: UUID = Depends(get_current_identity),
    notifier: NotificationEmitter = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> ServiceRequestResponse:
    """Requester picks one of the providers who accepted"""
    service = RequestService(db, notifier=notifier)
    request = await service.choose_provider(request_id, choice.provider_id, caller_id)
    return ServiceRequestResponse.model_validate(request)


@router.post("/{request_id}/status", response_model=ServiceRequestResponse)
async def change_status(
    request_id: UUID,
    transition: StatusTransition,
    caller_id: UUID = Depends(get_current_identity),
    notifier: NotificationEmitter = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> ServiceRequestResponse:
    """Start, complete or cancel a request"""
    service = RequestService(db, notifier=notifier)
    request = await service.transition(request_id, transition.status, caller_id)
    return ServiceRequestResponse.model_validate(request)
