"""
Slot assignment engine.

One call makes a single attempt to give a user one slot on a subscription of
the requested provider. Capacity outcomes are returned as an AssignmentResult;
only datastore failures raise.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from ..domain.errors import CapacityExhaustedError, DuplicateSlotError, SubscriptionUnavailableError
from ..domain.repositories import SubscriptionRepository, SubscriptionSlotRepository
from ..domain.services import SubscriptionSnapshot, select_subscription, validate_slot_assignment as validate_snapshot
from ..models import Subscription, SubscriptionSlot
from ..utils.time import utc_now

logger = logging.getLogger(__name__)


class AssignmentOutcome(StrEnum):
    ASSIGNED = "assigned"
    ALREADY_ASSIGNED = "already_assigned"
    NO_AVAILABLE_SLOT = "no_available_slot"
    NO_LONGER_AVAILABLE = "no_longer_available"
    DUPLICATE_SLOT = "duplicate_slot"
    CAPACITY_EXHAUSTED = "capacity_exhausted"


# Outcomes where another subscription may still be free on a fresh attempt.
RETRYABLE_OUTCOMES = frozenset({AssignmentOutcome.NO_LONGER_AVAILABLE, AssignmentOutcome.CAPACITY_EXHAUSTED})

MESSAGES = {
    AssignmentOutcome.ASSIGNED: "Slot successfully assigned",
    AssignmentOutcome.ALREADY_ASSIGNED: "You already have a slot assigned for this service provider",
    AssignmentOutcome.NO_AVAILABLE_SLOT: (
        "No available slots found. All subscriptions are currently full, "
        "but new subscriptions will be created shortly. Please try again later."
    ),
    AssignmentOutcome.NO_LONGER_AVAILABLE: "Selected subscription is no longer available. Please try again.",
    AssignmentOutcome.DUPLICATE_SLOT: "Slot could not be reserved right now. Please try again later.",
    AssignmentOutcome.CAPACITY_EXHAUSTED: "Slot could not be reserved right now. Please try again later.",
}


@dataclass(frozen=True)
class AssignmentResult:
    success: bool
    outcome: AssignmentOutcome
    message: str
    slot: SubscriptionSlot | None = None
    subscription_id: int | None = None

    @classmethod
    def failed(cls, outcome: AssignmentOutcome, *, subscription_id: int | None = None) -> "AssignmentResult":
        return cls(success=False, outcome=outcome, message=MESSAGES[outcome], subscription_id=subscription_id)


async def find_available_subscription(
    sub_repo: SubscriptionRepository,
    *,
    service_provider_id: int,
    country_id: int | None = None,
    now: datetime | None = None,
) -> Subscription | None:
    candidates = await sub_repo.find_candidates(service_provider_id, country_id)
    return select_subscription(candidates, now=now or utc_now())


async def validate_slot_assignment(
    sub_repo: SubscriptionRepository,
    *,
    subscription_id: int,
    now: datetime | None = None,
) -> bool:
    """Lock the subscription row and re-check it can take one more slot."""
    subscription = await sub_repo.get_for_update(subscription_id)
    if subscription is None:
        return False
    occupied = await sub_repo.count_occupied(subscription_id)
    snapshot = SubscriptionSnapshot(
        is_active=subscription.is_active,
        expires_at=subscription.expires_at,
        available_slots=subscription.available_slots,
        occupied_slots=occupied,
    )
    try:
        validate_snapshot(snapshot, now=now or utc_now())
    except SubscriptionUnavailableError:
        return False
    return True


async def assign_slot_to_user(
    sub_repo: SubscriptionRepository,
    slot_repo: SubscriptionSlotRepository,
    *,
    user_id: int,
    service_provider_id: int,
    country_id: int | None = None,
    now: datetime | None = None,
) -> AssignmentResult:
    now = now or utc_now()

    holding = await slot_repo.find_by_user_and_service_provider(user_id, service_provider_id)
    if holding is not None:
        return AssignmentResult.failed(AssignmentOutcome.ALREADY_ASSIGNED, subscription_id=holding.subscription_id)

    target = await find_available_subscription(
        sub_repo,
        service_provider_id=service_provider_id,
        country_id=country_id,
        now=now,
    )
    if target is None:
        logger.info("no available subscription for provider=%s country=%s", service_provider_id, country_id)
        return AssignmentResult.failed(AssignmentOutcome.NO_AVAILABLE_SLOT)
    subscription_id = target.id

    # Lock, validate, insert and decrement commit or roll back together.
    try:
        async with sub_repo.savepoint():
            if not await validate_slot_assignment(sub_repo, subscription_id=subscription_id, now=now):
                raise SubscriptionUnavailableError(f"subscription {subscription_id} is no longer available")
            slot = await slot_repo.create(user_id=user_id, subscription_id=subscription_id)
            await sub_repo.decrement_available_slots(subscription_id)
    except SubscriptionUnavailableError:
        return AssignmentResult.failed(AssignmentOutcome.NO_LONGER_AVAILABLE, subscription_id=subscription_id)
    except DuplicateSlotError:
        logger.info("duplicate slot for user=%s subscription=%s", user_id, subscription_id)
        return AssignmentResult.failed(AssignmentOutcome.DUPLICATE_SLOT, subscription_id=subscription_id)
    except CapacityExhaustedError:
        logger.info("capacity exhausted on subscription=%s", subscription_id)
        return AssignmentResult.failed(AssignmentOutcome.CAPACITY_EXHAUSTED, subscription_id=subscription_id)

    logger.info("assigned slot=%s user=%s subscription=%s", slot.id, user_id, subscription_id)
    return AssignmentResult(
        success=True,
        outcome=AssignmentOutcome.ASSIGNED,
        message=MESSAGES[AssignmentOutcome.ASSIGNED],
        slot=slot,
        subscription_id=subscription_id,
    )
