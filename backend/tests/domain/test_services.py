from datetime import datetime, timedelta

import pytest
from slotshare.domain.errors import InvalidStatusTransitionError, SubscriptionUnavailableError
from slotshare.domain.services import (
    SubscriptionSnapshot,
    ensure_request_transition,
    is_assignable,
    select_subscription,
    validate_slot_assignment,
)
from slotshare.models import Subscription, SubscriptionRequestStatus

NOW = datetime(2026, 1, 1, 12, 0, 0)


def _sub(
    sub_id: int,
    available: int,
    *,
    is_active: bool = True,
    expires_at: datetime | None = None,
    created_at: datetime = NOW - timedelta(days=1),
) -> Subscription:
    return Subscription(
        id=sub_id,
        service_provider_id=1,
        country_id=None,
        name=f"sub-{sub_id}",
        email=f"sub-{sub_id}@example.com",
        available_slots=available,
        is_active=is_active,
        expires_at=expires_at,
        created_at=created_at,
        updated_at=created_at,
    )


def test_select_prefers_fewest_remaining() -> None:
    chosen = select_subscription([_sub(1, 5), _sub(2, 2)], now=NOW)
    assert chosen is not None
    assert chosen.id == 2


def test_select_breaks_ties_by_creation_then_id() -> None:
    older = _sub(7, 2, created_at=NOW - timedelta(days=3))
    newer = _sub(3, 2, created_at=NOW - timedelta(days=1))
    assert select_subscription([newer, older], now=NOW) is older

    same_time = [_sub(9, 1), _sub(4, 1)]
    chosen = select_subscription(same_time, now=NOW)
    assert chosen is not None and chosen.id == 4


def test_select_skips_inactive_expired_and_full() -> None:
    candidates = [
        _sub(1, 1, is_active=False),
        _sub(2, 1, expires_at=NOW - timedelta(minutes=1)),
        _sub(3, 1, expires_at=NOW),
        _sub(4, 0),
        _sub(5, 9),
    ]
    chosen = select_subscription(candidates, now=NOW)
    assert chosen is not None
    assert chosen.id == 5


def test_select_returns_none_when_nothing_assignable() -> None:
    assert select_subscription([_sub(1, 1, is_active=False)], now=NOW) is None
    assert select_subscription([], now=NOW) is None


def test_future_expiry_is_assignable() -> None:
    assert is_assignable(_sub(1, 1, expires_at=NOW + timedelta(days=30)), now=NOW)


def test_validate_returns_remaining_after_assignment() -> None:
    snap = SubscriptionSnapshot(is_active=True, expires_at=None, available_slots=3, occupied_slots=2)
    assert validate_slot_assignment(snap, now=NOW) == 2


@pytest.mark.parametrize(
    "snapshot",
    [
        SubscriptionSnapshot(is_active=False, expires_at=None, available_slots=3, occupied_slots=0),
        SubscriptionSnapshot(is_active=True, expires_at=NOW - timedelta(seconds=1), available_slots=3, occupied_slots=0),
        SubscriptionSnapshot(is_active=True, expires_at=None, available_slots=0, occupied_slots=4),
        SubscriptionSnapshot(is_active=True, expires_at=None, available_slots=2, occupied_slots=-1),
    ],
)
def test_validate_rejects_unusable_subscription(snapshot: SubscriptionSnapshot) -> None:
    with pytest.raises(SubscriptionUnavailableError):
        validate_slot_assignment(snapshot, now=NOW)


def test_assigned_request_cannot_regress_to_pending() -> None:
    with pytest.raises(InvalidStatusTransitionError):
        ensure_request_transition(
            SubscriptionRequestStatus.ASSIGNED,
            SubscriptionRequestStatus.PENDING,
            assigned_slot_id=None,
        )


def test_assignment_requires_slot_id() -> None:
    with pytest.raises(InvalidStatusTransitionError):
        ensure_request_transition(
            SubscriptionRequestStatus.PENDING,
            SubscriptionRequestStatus.ASSIGNED,
            assigned_slot_id=None,
        )
    ensure_request_transition(
        SubscriptionRequestStatus.PENDING,
        SubscriptionRequestStatus.ASSIGNED,
        assigned_slot_id=10,
    )


def test_assigned_request_keeps_its_slot() -> None:
    ensure_request_transition(
        SubscriptionRequestStatus.ASSIGNED,
        SubscriptionRequestStatus.ASSIGNED,
        assigned_slot_id=10,
        current_slot_id=10,
    )
    with pytest.raises(InvalidStatusTransitionError):
        ensure_request_transition(
            SubscriptionRequestStatus.ASSIGNED,
            SubscriptionRequestStatus.ASSIGNED,
            assigned_slot_id=999,
            current_slot_id=10,
        )
