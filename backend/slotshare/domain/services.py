from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from ..models import Subscription, SubscriptionRequestStatus
from .errors import InvalidStatusTransitionError, SubscriptionUnavailableError


@dataclass(frozen=True)
class SubscriptionSnapshot:
    is_active: bool
    expires_at: Optional[datetime]
    available_slots: int
    occupied_slots: int


def is_active_and_valid(*, is_active: bool, expires_at: Optional[datetime], now: datetime) -> bool:
    if not is_active:
        return False
    if expires_at is not None and expires_at <= now:
        return False
    return True


def is_assignable(subscription: Subscription, *, now: datetime) -> bool:
    return (
        is_active_and_valid(is_active=subscription.is_active, expires_at=subscription.expires_at, now=now)
        and subscription.available_slots > 0
    )


def select_subscription(candidates: Iterable[Subscription], *, now: datetime) -> Optional[Subscription]:
    """
    Pick the assignable subscription with the fewest remaining slots.
    Ties go to the oldest subscription, then the lowest id, so the choice is deterministic.
    """
    valid = [sub for sub in candidates if is_assignable(sub, now=now)]
    if not valid:
        return None
    return min(valid, key=lambda sub: (sub.available_slots, sub.created_at, sub.id))


def validate_slot_assignment(snapshot: SubscriptionSnapshot, *, now: datetime) -> int:
    """
    Pure validation of a locked subscription row.
    Returns the available slots left after one more assignment. Raises SubscriptionUnavailableError otherwise.
    """
    if not is_active_and_valid(is_active=snapshot.is_active, expires_at=snapshot.expires_at, now=now):
        raise SubscriptionUnavailableError("subscription is inactive or expired")
    if snapshot.available_slots <= 0:
        raise SubscriptionUnavailableError("subscription has no available slots")
    # Drift check between slot rows and the counter.
    if snapshot.occupied_slots < 0 or snapshot.occupied_slots >= snapshot.occupied_slots + snapshot.available_slots:
        raise SubscriptionUnavailableError("occupied slots exceed capacity")
    return snapshot.available_slots - 1


def ensure_request_transition(
    current: SubscriptionRequestStatus,
    target: SubscriptionRequestStatus,
    *,
    assigned_slot_id: Optional[int],
    current_slot_id: Optional[int] = None,
) -> None:
    if current == SubscriptionRequestStatus.ASSIGNED and target != SubscriptionRequestStatus.ASSIGNED:
        raise InvalidStatusTransitionError(f"cannot move request from {current} to {target}")
    if target == SubscriptionRequestStatus.ASSIGNED and assigned_slot_id is None:
        raise InvalidStatusTransitionError("assigned request requires a slot")
    # An assigned request keeps its slot for good.
    if current == SubscriptionRequestStatus.ASSIGNED and assigned_slot_id != current_slot_id:
        raise InvalidStatusTransitionError(
            f"request is already assigned to slot {current_slot_id}, not {assigned_slot_id}"
        )
