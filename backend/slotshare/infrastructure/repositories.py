from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, cast

from sqlalchemy import CursorResult, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from ..domain.errors import (
    CapacityExhaustedError,
    DuplicateSlotError,
    SlotRequestNotFoundError,
    SubscriptionNotFoundError,
)
from ..domain.repositories import (
    CountryRepository,
    ServiceProviderRepository,
    SubscriptionRepository,
    SubscriptionRequestRepository,
    SubscriptionSlotRepository,
)
from ..domain.services import ensure_request_transition
from ..models import (
    Country,
    ServiceProvider,
    Subscription,
    SubscriptionRequest,
    SubscriptionRequestStatus,
    SubscriptionSlot,
    service_provider_countries,
)
from ..utils.time import utc_now


class SqlAlchemySubscriptionRepository(SubscriptionRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, subscription_id: int) -> Subscription | None:
        return await self.session.get(Subscription, subscription_id, populate_existing=True)

    async def get_for_update(self, subscription_id: int) -> Subscription | None:
        stmt = (
            select(Subscription)
            .where(Subscription.id == subscription_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Subscription) else None

    async def find_candidates(self, service_provider_id: int, country_id: int | None = None) -> list[Subscription]:
        stmt = select(Subscription).where(
            Subscription.service_provider_id == service_provider_id,
            Subscription.available_slots > 0,
        )
        if country_id is not None:
            stmt = stmt.where(Subscription.country_id == country_id)
        stmt = stmt.order_by(
            Subscription.available_slots.asc(),
            Subscription.created_at.asc(),
            Subscription.id.asc(),
        ).execution_options(populate_existing=True)
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def decrement_available_slots(self, subscription_id: int) -> Subscription:
        # Single conditional statement: the WHERE clause is the capacity guard.
        stmt = (
            update(Subscription)
            .where(Subscription.id == subscription_id, Subscription.available_slots > 0)
            .values(available_slots=Subscription.available_slots - 1, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = cast(CursorResult[Any], await self.session.execute(stmt))
        if result.rowcount == 0:
            raise CapacityExhaustedError(f"subscription {subscription_id} has no available slots")
        return await self._reload(subscription_id)

    async def increment_available_slots(self, subscription_id: int, amount: int = 1) -> Subscription:
        if amount < 1:
            raise ValueError("amount must be >= 1")
        stmt = (
            update(Subscription)
            .where(Subscription.id == subscription_id)
            .values(available_slots=Subscription.available_slots + amount, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = cast(CursorResult[Any], await self.session.execute(stmt))
        if result.rowcount == 0:
            raise SubscriptionNotFoundError(f"subscription {subscription_id} not found")
        return await self._reload(subscription_id)

    async def count_occupied(self, subscription_id: int) -> int:
        stmt = select(func.count(SubscriptionSlot.id)).where(
            SubscriptionSlot.subscription_id == subscription_id,
            SubscriptionSlot.is_active.is_(True),
        )
        return int(await self.session.scalar(stmt) or 0)

    async def list_by_service_provider(self, service_provider_id: int) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.service_provider_id == service_provider_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def create(
        self,
        *,
        service_provider_id: int,
        country_id: int | None,
        name: str,
        email: str,
        available_slots: int,
        is_active: bool,
        expires_at: datetime | None,
        renewal_info: dict[str, Any] | None,
        meta: dict[str, Any] | None,
    ) -> Subscription:
        now = utc_now()
        subscription = Subscription(
            service_provider_id=service_provider_id,
            country_id=country_id,
            name=name,
            email=email,
            available_slots=available_slots,
            is_active=is_active,
            expires_at=expires_at,
            renewal_info=renewal_info,
            meta=meta,
            created_at=now,
            updated_at=now,
        )
        self.session.add(subscription)
        await self.session.flush()
        return subscription

    async def update(self, subscription_id: int, changes: dict[str, Any]) -> Subscription:
        subscription = await self.get_for_update(subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(f"subscription {subscription_id} not found")
        for field, value in changes.items():
            setattr(subscription, field, value)
        subscription.updated_at = utc_now()
        await self.session.flush()
        return subscription

    def savepoint(self) -> AbstractAsyncContextManager[Any]:
        return self.session.begin_nested()

    async def _reload(self, subscription_id: int) -> Subscription:
        subscription = await self.session.get(Subscription, subscription_id, populate_existing=True)
        if subscription is None:
            raise SubscriptionNotFoundError(f"subscription {subscription_id} not found")
        return subscription


class SqlAlchemySubscriptionSlotRepository(SubscriptionSlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, *, user_id: int, subscription_id: int) -> SubscriptionSlot:
        now = utc_now()
        slot = SubscriptionSlot(
            user_id=user_id,
            subscription_id=subscription_id,
            assigned_at=now,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        self.session.add(slot)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise DuplicateSlotError(f"user {user_id} already holds a slot on subscription {subscription_id}") from exc
        return slot

    async def find_by_user_and_subscription(self, user_id: int, subscription_id: int) -> SubscriptionSlot | None:
        stmt = select(SubscriptionSlot).where(
            SubscriptionSlot.user_id == user_id,
            SubscriptionSlot.subscription_id == subscription_id,
        )
        return await self.session.scalar(stmt)

    async def find_by_user_and_service_provider(
        self, user_id: int, service_provider_id: int
    ) -> SubscriptionSlot | None:
        stmt = (
            select(SubscriptionSlot)
            .join(Subscription, SubscriptionSlot.subscription_id == Subscription.id)
            .where(
                SubscriptionSlot.user_id == user_id,
                SubscriptionSlot.is_active.is_(True),
                Subscription.service_provider_id == service_provider_id,
            )
            .order_by(SubscriptionSlot.id.asc())
            .limit(1)
        )
        return await self.session.scalar(stmt)

    async def find_by_user_id(self, user_id: int) -> list[SubscriptionSlot]:
        stmt = (
            select(SubscriptionSlot)
            .options(joinedload(SubscriptionSlot.subscription))
            .where(SubscriptionSlot.user_id == user_id)
            .order_by(SubscriptionSlot.assigned_at.desc(), SubscriptionSlot.id.desc())
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())


class SqlAlchemySubscriptionRequestRepository(SubscriptionRequestRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        user_id: int,
        service_provider_id: int,
        country_id: int | None,
    ) -> SubscriptionRequest:
        now = utc_now()
        request = SubscriptionRequest(
            user_id=user_id,
            service_provider_id=service_provider_id,
            country_id=country_id,
            status=SubscriptionRequestStatus.PENDING,
            requested_at=now,
            created_at=now,
            updated_at=now,
        )
        self.session.add(request)
        await self.session.flush()
        return request

    async def find_by_id(self, request_id: int) -> SubscriptionRequest | None:
        return await self.session.get(SubscriptionRequest, request_id)

    async def find_by_user_id(self, user_id: int) -> list[SubscriptionRequest]:
        stmt = (
            select(SubscriptionRequest)
            .where(SubscriptionRequest.user_id == user_id)
            .order_by(SubscriptionRequest.requested_at.desc(), SubscriptionRequest.id.desc())
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def update_status(
        self,
        request_id: int,
        status: SubscriptionRequestStatus,
        *,
        assigned_slot_id: int | None = None,
        processed_at: datetime | None = None,
    ) -> SubscriptionRequest:
        request = await self.session.get(SubscriptionRequest, request_id, with_for_update=True)
        if request is None:
            raise SlotRequestNotFoundError(f"subscription request {request_id} not found")
        ensure_request_transition(
            request.status,
            status,
            assigned_slot_id=assigned_slot_id,
            current_slot_id=request.assigned_slot_id,
        )
        request.status = status
        request.assigned_slot_id = assigned_slot_id
        request.processed_at = processed_at
        request.updated_at = utc_now()
        await self.session.flush()
        return request

    async def find_pending_by_service_provider(self, service_provider_id: int) -> list[SubscriptionRequest]:
        stmt = (
            select(SubscriptionRequest)
            .where(
                SubscriptionRequest.service_provider_id == service_provider_id,
                SubscriptionRequest.status == SubscriptionRequestStatus.PENDING,
            )
            .order_by(SubscriptionRequest.requested_at.asc(), SubscriptionRequest.id.asc())
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())


class SqlAlchemyServiceProviderRepository(ServiceProviderRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_id(self, service_provider_id: int) -> ServiceProvider | None:
        return await self.session.get(ServiceProvider, service_provider_id)

    async def get_supported_countries(self, service_provider_id: int) -> list[Country]:
        stmt = (
            select(Country)
            .join(service_provider_countries, service_provider_countries.c.country_id == Country.id)
            .where(service_provider_countries.c.service_provider_id == service_provider_id)
            .order_by(Country.name.asc())
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())


class SqlAlchemyCountryRepository(CountryRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_id(self, country_id: int) -> Country | None:
        return await self.session.get(Country, country_id)
