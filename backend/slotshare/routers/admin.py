from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_admin_id, get_session
from ..domain.errors import (
    CountryNotFoundError,
    ServiceProviderNotFoundError,
    SubscriptionNotFoundError,
    UnsupportedCountryError,
)
from ..infrastructure.repositories import (
    SqlAlchemyCountryRepository,
    SqlAlchemyServiceProviderRepository,
    SqlAlchemySubscriptionRepository,
    SqlAlchemySubscriptionRequestRepository,
)
from ..schemas import (
    CapacityAdjust,
    SubscriptionCreate,
    SubscriptionRead,
    SubscriptionRequestRead,
    SubscriptionUpdate,
)
from ..usecases import subscriptions as subscription_usecase
from ..utils.audit_log import emit_audit_log
from ..utils.time import to_utc_naive

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(get_current_admin_id)])


@router.post("/subscriptions", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    payload: SubscriptionCreate,
    session: AsyncSession = Depends(get_session),
) -> SubscriptionRead:
    expires_at = None
    if payload.expires_at is not None:
        if payload.expires_at.tzinfo is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="expires_at must have timezone")
        expires_at = to_utc_naive(payload.expires_at)

    sub_repo = SqlAlchemySubscriptionRepository(session)
    provider_repo = SqlAlchemyServiceProviderRepository(session)
    country_repo = SqlAlchemyCountryRepository(session)
    try:
        async with session.begin():
            subscription = await subscription_usecase.create_subscription(
                sub_repo,
                provider_repo,
                country_repo,
                service_provider_id=payload.service_provider_id,
                country_id=payload.country_id,
                name=payload.name,
                email=payload.email,
                available_slots=payload.available_slots,
                is_active=payload.is_active,
                expires_at=expires_at,
                renewal_info=payload.renewal_info,
                meta=payload.metadata,
            )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except (ServiceProviderNotFoundError, CountryNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except UnsupportedCountryError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except IntegrityError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="a subscription with this email already exists")

    try:
        emit_audit_log(
            action="subscription.created",
            initiator="admin",
            user_id=None,
            service_provider_id=subscription.service_provider_id,
            subscription_id=subscription.id,
            available_slots=subscription.available_slots,
        )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to write audit log")
    return SubscriptionRead.from_db(subscription=subscription)


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionRead)
async def get_subscription(
    subscription_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> SubscriptionRead:
    sub_repo = SqlAlchemySubscriptionRepository(session)
    try:
        subscription = await subscription_usecase.get_subscription(sub_repo, subscription_id=subscription_id)
    except SubscriptionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return SubscriptionRead.from_db(subscription=subscription)


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionRead)
async def update_subscription(
    payload: SubscriptionUpdate,
    subscription_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> SubscriptionRead:
    changes = payload.changes()
    if changes.get("expires_at") is not None:
        if changes["expires_at"].tzinfo is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="expires_at must have timezone")
        changes["expires_at"] = to_utc_naive(changes["expires_at"])

    sub_repo = SqlAlchemySubscriptionRepository(session)
    provider_repo = SqlAlchemyServiceProviderRepository(session)
    country_repo = SqlAlchemyCountryRepository(session)
    try:
        async with session.begin():
            subscription = await subscription_usecase.update_subscription(
                sub_repo,
                provider_repo,
                country_repo,
                subscription_id=subscription_id,
                changes=changes,
            )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except (SubscriptionNotFoundError, ServiceProviderNotFoundError, CountryNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except UnsupportedCountryError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except IntegrityError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="a subscription with this email already exists")

    try:
        emit_audit_log(
            action="subscription.updated",
            initiator="admin",
            user_id=None,
            service_provider_id=subscription.service_provider_id,
            subscription_id=subscription.id,
            available_slots=subscription.available_slots,
            extra={"fields": sorted(changes)},
        )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to write audit log")
    return SubscriptionRead.from_db(subscription=subscription)


@router.post("/subscriptions/{subscription_id}/capacity", response_model=SubscriptionRead)
async def adjust_capacity(
    payload: CapacityAdjust,
    subscription_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> SubscriptionRead:
    sub_repo = SqlAlchemySubscriptionRepository(session)
    async with session.begin():
        try:
            subscription = await subscription_usecase.adjust_capacity(
                sub_repo,
                subscription_id=subscription_id,
                amount=payload.amount,
            )
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        except SubscriptionNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))

    try:
        emit_audit_log(
            action="subscription.capacity_adjusted",
            initiator="admin",
            user_id=None,
            service_provider_id=subscription.service_provider_id,
            subscription_id=subscription.id,
            available_slots=subscription.available_slots,
            extra={"amount": payload.amount},
        )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to write audit log")
    return SubscriptionRead.from_db(subscription=subscription)


@router.get("/service-providers/{service_provider_id}/subscriptions", response_model=List[SubscriptionRead])
async def list_provider_subscriptions(
    service_provider_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> list[SubscriptionRead]:
    sub_repo = SqlAlchemySubscriptionRepository(session)
    provider_repo = SqlAlchemyServiceProviderRepository(session)
    try:
        subscriptions = await subscription_usecase.list_provider_subscriptions(
            sub_repo,
            provider_repo,
            service_provider_id=service_provider_id,
        )
    except ServiceProviderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return [SubscriptionRead.from_db(subscription=sub) for sub in subscriptions]


@router.get(
    "/service-providers/{service_provider_id}/pending-requests",
    response_model=List[SubscriptionRequestRead],
)
async def list_pending_requests(
    service_provider_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> list[SubscriptionRequestRead]:
    req_repo = SqlAlchemySubscriptionRequestRepository(session)
    provider_repo = SqlAlchemyServiceProviderRepository(session)
    try:
        requests = await subscription_usecase.list_pending_requests(
            req_repo,
            provider_repo,
            service_provider_id=service_provider_id,
        )
    except ServiceProviderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return [SubscriptionRequestRead.from_db(request=request) for request in requests]
