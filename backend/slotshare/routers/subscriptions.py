from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_current_user_id, get_session
from ..domain.errors import (
    CountryNotFoundError,
    DuplicateRequestError,
    ServiceProviderNotFoundError,
    UnsupportedCountryError,
)
from ..infrastructure.repositories import (
    SqlAlchemyCountryRepository,
    SqlAlchemyServiceProviderRepository,
    SqlAlchemySubscriptionRepository,
    SqlAlchemySubscriptionRequestRepository,
    SqlAlchemySubscriptionSlotRepository,
)
from ..models import SubscriptionRequestStatus
from ..schemas import SlotRequestCreate, SlotRequestResult, SubscriptionRequestRead, SubscriptionSlotRead
from ..usecases import slot_requests as request_usecase
from ..utils.audit_log import emit_audit_log

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post("/request", response_model=SlotRequestResult, status_code=status.HTTP_201_CREATED)
async def request_slot(
    payload: SlotRequestCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> SlotRequestResult:
    sub_repo = SqlAlchemySubscriptionRepository(session)
    slot_repo = SqlAlchemySubscriptionSlotRepository(session)
    req_repo = SqlAlchemySubscriptionRequestRepository(session)
    provider_repo = SqlAlchemyServiceProviderRepository(session)
    country_repo = SqlAlchemyCountryRepository(session)
    async with session.begin():
        try:
            request, result = await request_usecase.request_subscription_slot(
                sub_repo,
                slot_repo,
                req_repo,
                provider_repo,
                country_repo,
                user_id=user_id,
                service_provider_id=payload.service_provider_id,
                country_id=payload.country_id,
                max_attempts=get_settings().assignment_max_attempts,
            )
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        except (ServiceProviderNotFoundError, CountryNotFoundError) as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
        except UnsupportedCountryError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        except DuplicateRequestError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    try:
        emit_audit_log(
            action="slot_request.created",
            initiator="user",
            user_id=user_id,
            service_provider_id=request.service_provider_id,
            slot_request_id=request.id,
            status_to=SubscriptionRequestStatus.PENDING,
            message=result.outcome,
        )
        if result.success and result.slot is not None:
            emit_audit_log(
                action="slot_request.assigned",
                initiator="system",
                user_id=user_id,
                service_provider_id=request.service_provider_id,
                subscription_id=result.subscription_id,
                slot_request_id=request.id,
                slot_id=result.slot.id,
                status_from=SubscriptionRequestStatus.PENDING,
                status_to=request.status,
            )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to write audit log")

    return SlotRequestResult(
        request=SubscriptionRequestRead.from_db(request=request),
        outcome=result.outcome,
        message=result.message,
    )


@router.get("/my-slots", response_model=List[SubscriptionSlotRead])
async def list_my_slots(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[SubscriptionSlotRead]:
    slot_repo = SqlAlchemySubscriptionSlotRepository(session)
    slots = await request_usecase.get_user_subscription_slots(slot_repo, user_id=user_id)
    return [SubscriptionSlotRead.from_db(slot=slot, subscription=slot.subscription) for slot in slots]


@router.get("/my-requests", response_model=List[SubscriptionRequestRead])
async def list_my_requests(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[SubscriptionRequestRead]:
    req_repo = SqlAlchemySubscriptionRequestRepository(session)
    requests = await request_usecase.list_user_requests(req_repo, user_id=user_id)
    return [SubscriptionRequestRead.from_db(request=request) for request in requests]


@router.get("/my-requests/{request_id}", response_model=SubscriptionRequestRead)
async def get_my_request(
    request_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> SubscriptionRequestRead:
    req_repo = SqlAlchemySubscriptionRequestRepository(session)
    request = await request_usecase.get_user_request(req_repo, request_id=request_id, user_id=user_id)
    if request is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="subscription request not found")
    return SubscriptionRequestRead.from_db(request=request)
