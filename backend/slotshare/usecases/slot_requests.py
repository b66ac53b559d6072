import logging
from datetime import datetime

from ..domain.errors import DuplicateRequestError
from ..domain.repositories import (
    CountryRepository,
    ServiceProviderRepository,
    SubscriptionRepository,
    SubscriptionRequestRepository,
    SubscriptionSlotRepository,
)
from ..models import SubscriptionRequest, SubscriptionRequestStatus, SubscriptionSlot
from ..utils.time import utc_now
from .assignment import RETRYABLE_OUTCOMES, AssignmentResult, assign_slot_to_user
from .catalog import ensure_scope_supported

logger = logging.getLogger(__name__)


async def request_subscription_slot(
    sub_repo: SubscriptionRepository,
    slot_repo: SubscriptionSlotRepository,
    req_repo: SubscriptionRequestRepository,
    provider_repo: ServiceProviderRepository,
    country_repo: CountryRepository,
    *,
    user_id: int,
    service_provider_id: int,
    country_id: int | None = None,
    max_attempts: int = 3,
    now: datetime | None = None,
) -> tuple[SubscriptionRequest, AssignmentResult]:
    """
    Record a slot request and try to satisfy it immediately.

    The request is created PENDING and moves to ASSIGNED when the engine
    reserves a slot. Otherwise it stays PENDING and the result message tells
    the caller why.
    """
    if user_id is None or user_id < 1:
        raise ValueError("user_id is required")
    if service_provider_id is None or service_provider_id < 1:
        raise ValueError("service_provider_id is required")
    if country_id is not None and country_id < 1:
        raise ValueError("country_id must be positive")
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    await ensure_scope_supported(
        provider_repo,
        country_repo,
        service_provider_id=service_provider_id,
        country_id=country_id,
    )

    existing = await req_repo.find_by_user_id(user_id)
    if any(
        req.status == SubscriptionRequestStatus.PENDING
        and req.service_provider_id == service_provider_id
        and req.country_id == country_id
        for req in existing
    ):
        raise DuplicateRequestError("You already have a pending request for this service provider and country")

    request = await req_repo.create(
        user_id=user_id,
        service_provider_id=service_provider_id,
        country_id=country_id,
    )
    request_id = request.id

    result = await assign_slot_to_user(
        sub_repo,
        slot_repo,
        user_id=user_id,
        service_provider_id=service_provider_id,
        country_id=country_id,
        now=now,
    )
    attempt = 1
    while not result.success and result.outcome in RETRYABLE_OUTCOMES and attempt < max_attempts:
        attempt += 1
        logger.info("retrying assignment for request=%s attempt=%s after %s", request_id, attempt, result.outcome)
        result = await assign_slot_to_user(
            sub_repo,
            slot_repo,
            user_id=user_id,
            service_provider_id=service_provider_id,
            country_id=country_id,
            now=now,
        )

    if result.success and result.slot is not None:
        updated = await req_repo.update_status(
            request_id,
            SubscriptionRequestStatus.ASSIGNED,
            assigned_slot_id=result.slot.id,
            processed_at=now or utc_now(),
        )
        return updated, result

    # A rolled-back savepoint may have expired the instance; reload it.
    pending = await req_repo.find_by_id(request_id)
    return pending or request, result


async def get_user_subscription_slots(
    slot_repo: SubscriptionSlotRepository,
    *,
    user_id: int,
) -> list[SubscriptionSlot]:
    return await slot_repo.find_by_user_id(user_id)


async def list_user_requests(
    req_repo: SubscriptionRequestRepository,
    *,
    user_id: int,
) -> list[SubscriptionRequest]:
    return await req_repo.find_by_user_id(user_id)


async def get_user_request(
    req_repo: SubscriptionRequestRepository,
    *,
    request_id: int,
    user_id: int,
) -> SubscriptionRequest | None:
    request = await req_repo.find_by_id(request_id)
    if request is None or request.user_id != user_id:
        return None
    return request
