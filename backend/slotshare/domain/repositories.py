from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Protocol

from ..models import Country, ServiceProvider, Subscription, SubscriptionRequest, SubscriptionRequestStatus, SubscriptionSlot


class SubscriptionRepository(Protocol):
    async def get(self, subscription_id: int) -> Subscription | None: ...

    async def get_for_update(self, subscription_id: int) -> Subscription | None: ...

    async def find_candidates(self, service_provider_id: int, country_id: int | None = None) -> list[Subscription]: ...

    async def decrement_available_slots(self, subscription_id: int) -> Subscription: ...

    async def increment_available_slots(self, subscription_id: int, amount: int = 1) -> Subscription: ...

    async def count_occupied(self, subscription_id: int) -> int: ...

    async def list_by_service_provider(self, service_provider_id: int) -> list[Subscription]: ...

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
    ) -> Subscription: ...

    async def update(self, subscription_id: int, changes: dict[str, Any]) -> Subscription: ...

    def savepoint(self) -> AbstractAsyncContextManager[Any]: ...


class SubscriptionSlotRepository(Protocol):
    async def create(self, *, user_id: int, subscription_id: int) -> SubscriptionSlot: ...

    async def find_by_user_and_subscription(self, user_id: int, subscription_id: int) -> SubscriptionSlot | None: ...

    async def find_by_user_and_service_provider(
        self, user_id: int, service_provider_id: int
    ) -> SubscriptionSlot | None: ...

    async def find_by_user_id(self, user_id: int) -> list[SubscriptionSlot]: ...


class SubscriptionRequestRepository(Protocol):
    async def create(
        self,
        *,
        user_id: int,
        service_provider_id: int,
        country_id: int | None,
    ) -> SubscriptionRequest: ...

    async def find_by_id(self, request_id: int) -> SubscriptionRequest | None: ...

    async def find_by_user_id(self, user_id: int) -> list[SubscriptionRequest]: ...

    async def update_status(
        self,
        request_id: int,
        status: SubscriptionRequestStatus,
        *,
        assigned_slot_id: int | None = None,
        processed_at: datetime | None = None,
    ) -> SubscriptionRequest: ...

    async def find_pending_by_service_provider(self, service_provider_id: int) -> list[SubscriptionRequest]: ...


class ServiceProviderRepository(Protocol):
    async def find_by_id(self, service_provider_id: int) -> ServiceProvider | None: ...

    async def get_supported_countries(self, service_provider_id: int) -> list[Country]: ...


class CountryRepository(Protocol):
    async def find_by_id(self, country_id: int) -> Country | None: ...
