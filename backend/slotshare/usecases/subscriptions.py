import re
from datetime import datetime
from typing import Any

from ..domain.errors import ServiceProviderNotFoundError, SubscriptionNotFoundError
from ..domain.repositories import (
    CountryRepository,
    ServiceProviderRepository,
    SubscriptionRepository,
    SubscriptionRequestRepository,
)
from ..models import Subscription, SubscriptionRequest
from ..utils.time import utc_now
from .catalog import ensure_scope_supported

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_SLOTS = 100
# Capacity moves only through adjust_capacity and slot assignment.
UPDATABLE_FIELDS = frozenset({"name", "email", "country_id", "is_active", "expires_at", "renewal_info", "meta"})


def _clean_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValueError("subscription name is required")
    if len(name) > 100:
        raise ValueError("subscription name must be 100 characters or less")
    return name


def _clean_email(email: str | None) -> str:
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise ValueError("invalid email format")
    return email


def _check_expiry(expires_at: datetime | None, now: datetime | None) -> None:
    if expires_at is not None and expires_at <= (now or utc_now()):
        raise ValueError("expires_at must be in the future")


async def create_subscription(
    sub_repo: SubscriptionRepository,
    provider_repo: ServiceProviderRepository,
    country_repo: CountryRepository,
    *,
    service_provider_id: int,
    country_id: int | None,
    name: str,
    email: str,
    available_slots: int,
    is_active: bool = True,
    expires_at: datetime | None = None,
    renewal_info: dict[str, Any] | None = None,
    meta: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Subscription:
    name = _clean_name(name)
    email = _clean_email(email)
    if available_slots < 1:
        raise ValueError("available_slots must be >= 1")
    if available_slots > MAX_SLOTS:
        raise ValueError(f"available_slots cannot exceed {MAX_SLOTS}")
    _check_expiry(expires_at, now)

    await ensure_scope_supported(
        provider_repo,
        country_repo,
        service_provider_id=service_provider_id,
        country_id=country_id,
    )
    return await sub_repo.create(
        service_provider_id=service_provider_id,
        country_id=country_id,
        name=name,
        email=email,
        available_slots=available_slots,
        is_active=is_active,
        expires_at=expires_at,
        renewal_info=renewal_info,
        meta=meta,
    )


async def get_subscription(
    sub_repo: SubscriptionRepository,
    *,
    subscription_id: int,
) -> Subscription:
    subscription = await sub_repo.get(subscription_id)
    if subscription is None:
        raise SubscriptionNotFoundError("subscription not found")
    return subscription


async def update_subscription(
    sub_repo: SubscriptionRepository,
    provider_repo: ServiceProviderRepository,
    country_repo: CountryRepository,
    *,
    subscription_id: int,
    changes: dict[str, Any],
    now: datetime | None = None,
) -> Subscription:
    """
    Apply an administrative edit. Only the keys present in ``changes`` are written.

    Deactivating or re-dating a subscription takes it out of (or back into)
    slot selection; slots already handed out are kept.
    """
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"cannot update field(s): {', '.join(sorted(unknown))}")
    if not changes:
        raise ValueError("no fields to update")

    cleaned = dict(changes)
    if "name" in cleaned:
        cleaned["name"] = _clean_name(cleaned["name"])
    if "email" in cleaned:
        cleaned["email"] = _clean_email(cleaned["email"])
    if "is_active" in cleaned and cleaned["is_active"] is None:
        raise ValueError("is_active cannot be null")
    if "expires_at" in cleaned:
        _check_expiry(cleaned["expires_at"], now)

    existing = await sub_repo.get(subscription_id)
    if existing is None:
        raise SubscriptionNotFoundError("subscription not found")
    if cleaned.get("country_id") is not None:
        await ensure_scope_supported(
            provider_repo,
            country_repo,
            service_provider_id=existing.service_provider_id,
            country_id=cleaned["country_id"],
        )
    return await sub_repo.update(subscription_id, cleaned)


async def adjust_capacity(
    sub_repo: SubscriptionRepository,
    *,
    subscription_id: int,
    amount: int,
) -> Subscription:
    """Correction path: hand slots back to a subscription."""
    if amount < 1:
        raise ValueError("amount must be >= 1")
    subscription = await sub_repo.get(subscription_id)
    if subscription is None:
        raise SubscriptionNotFoundError("subscription not found")
    if subscription.available_slots + amount > MAX_SLOTS:
        raise ValueError(f"available_slots cannot exceed {MAX_SLOTS}")
    return await sub_repo.increment_available_slots(subscription_id, amount)


async def list_provider_subscriptions(
    sub_repo: SubscriptionRepository,
    provider_repo: ServiceProviderRepository,
    *,
    service_provider_id: int,
) -> list[Subscription]:
    if await provider_repo.find_by_id(service_provider_id) is None:
        raise ServiceProviderNotFoundError("service provider not found")
    return await sub_repo.list_by_service_provider(service_provider_id)


async def list_pending_requests(
    req_repo: SubscriptionRequestRepository,
    provider_repo: ServiceProviderRepository,
    *,
    service_provider_id: int,
) -> list[SubscriptionRequest]:
    if await provider_repo.find_by_id(service_provider_id) is None:
        raise ServiceProviderNotFoundError("service provider not found")
    return await req_repo.find_pending_by_service_provider(service_provider_id)
