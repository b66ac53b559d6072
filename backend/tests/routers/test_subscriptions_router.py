from typing import Any, cast

import pytest
from fastapi import HTTPException
from slotshare.domain.errors import (
    CountryNotFoundError,
    DuplicateRequestError,
    ServiceProviderNotFoundError,
    UnsupportedCountryError,
)
from slotshare.models import SubscriptionRequest, SubscriptionRequestStatus, SubscriptionSlot
from slotshare.routers import subscriptions as router
from slotshare.schemas import SlotRequestCreate, SlotRequestResult
from slotshare.usecases.assignment import AssignmentOutcome, AssignmentResult
from slotshare.utils.time import utc_now
from sqlalchemy.ext.asyncio import AsyncSession

REPO_NAMES = (
    "SqlAlchemySubscriptionRepository",
    "SqlAlchemySubscriptionSlotRepository",
    "SqlAlchemySubscriptionRequestRepository",
    "SqlAlchemyServiceProviderRepository",
    "SqlAlchemyCountryRepository",
)


class DummySession:
    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


def _request(status: SubscriptionRequestStatus, slot_id: int | None = None) -> SubscriptionRequest:
    now = utc_now()
    return SubscriptionRequest(
        id=100,
        user_id=200,
        service_provider_id=1,
        country_id=None,
        status=status,
        assigned_slot_id=slot_id,
        requested_at=now,
        processed_at=now if slot_id else None,
        created_at=now,
        updated_at=now,
    )


def _slot() -> SubscriptionSlot:
    now = utc_now()
    return SubscriptionSlot(id=7, user_id=200, subscription_id=3, assigned_at=now, is_active=True)


def _patch_repos(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in REPO_NAMES:
        monkeypatch.setattr(router, name, lambda s: s)


@pytest.mark.asyncio
async def test_assigned_request_emits_both_audit_events(monkeypatch: pytest.MonkeyPatch) -> None:
    slot = _slot()
    request = _request(SubscriptionRequestStatus.ASSIGNED, slot_id=slot.id)
    result = AssignmentResult(
        success=True,
        outcome=AssignmentOutcome.ASSIGNED,
        message="Slot successfully assigned",
        slot=slot,
        subscription_id=slot.subscription_id,
    )

    async def fake_request(*args: object, **kwargs: object) -> tuple[SubscriptionRequest, AssignmentResult]:
        return request, result

    calls: list[dict[str, Any]] = []

    _patch_repos(monkeypatch)
    monkeypatch.setattr(router.request_usecase, "request_subscription_slot", fake_request)
    monkeypatch.setattr(router, "emit_audit_log", lambda **kwargs: calls.append(kwargs))

    response: SlotRequestResult = await router.request_slot(
        payload=SlotRequestCreate(service_provider_id=1),
        session=cast(AsyncSession, DummySession()),
        user_id=request.user_id,
    )

    assert response.outcome == "assigned"
    assert response.request.assigned_slot_id == slot.id
    assert [c["action"] for c in calls] == ["slot_request.created", "slot_request.assigned"]
    assert calls[1]["slot_id"] == slot.id
    assert calls[1]["subscription_id"] == slot.subscription_id


@pytest.mark.asyncio
async def test_pending_request_reports_outcome(monkeypatch: pytest.MonkeyPatch) -> None:
    request = _request(SubscriptionRequestStatus.PENDING)
    result = AssignmentResult.failed(AssignmentOutcome.NO_AVAILABLE_SLOT)

    async def fake_request(*args: object, **kwargs: object) -> tuple[SubscriptionRequest, AssignmentResult]:
        return request, result

    calls: list[dict[str, Any]] = []

    _patch_repos(monkeypatch)
    monkeypatch.setattr(router.request_usecase, "request_subscription_slot", fake_request)
    monkeypatch.setattr(router, "emit_audit_log", lambda **kwargs: calls.append(kwargs))

    response = await router.request_slot(
        payload=SlotRequestCreate(service_provider_id=1),
        session=cast(AsyncSession, DummySession()),
        user_id=request.user_id,
    )

    assert response.request.status == SubscriptionRequestStatus.PENDING
    assert response.outcome == "no_available_slot"
    assert response.message.startswith("No available slots")
    assert len(calls) == 1
    assert calls[0]["message"] == "no_available_slot"


@pytest.mark.asyncio
async def test_audit_failure_returns_500(monkeypatch: pytest.MonkeyPatch) -> None:
    request = _request(SubscriptionRequestStatus.PENDING)

    async def fake_request(*args: object, **kwargs: object) -> tuple[SubscriptionRequest, AssignmentResult]:
        return request, AssignmentResult.failed(AssignmentOutcome.NO_AVAILABLE_SLOT)

    def fake_emit(**kwargs: Any) -> None:
        raise RuntimeError("fail log")

    _patch_repos(monkeypatch)
    monkeypatch.setattr(router.request_usecase, "request_subscription_slot", fake_request)
    monkeypatch.setattr(router, "emit_audit_log", fake_emit)

    with pytest.raises(HTTPException) as excinfo:
        await router.request_slot(
            payload=SlotRequestCreate(service_provider_id=1),
            session=cast(AsyncSession, DummySession()),
            user_id=request.user_id,
        )
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (ValueError("bad input"), 400),
        (ServiceProviderNotFoundError("service provider not found"), 404),
        (CountryNotFoundError("country not found"), 404),
        (UnsupportedCountryError("not served"), 400),
        (DuplicateRequestError("already pending"), 409),
    ],
)
async def test_request_errors_map_to_status(monkeypatch: pytest.MonkeyPatch, error: Exception, status_code: int) -> None:
    async def fake_request(*args: object, **kwargs: object) -> None:
        raise error

    _patch_repos(monkeypatch)
    monkeypatch.setattr(router.request_usecase, "request_subscription_slot", fake_request)

    with pytest.raises(HTTPException) as excinfo:
        await router.request_slot(
            payload=SlotRequestCreate(service_provider_id=1, country_id=2),
            session=cast(AsyncSession, DummySession()),
            user_id=200,
        )
    assert excinfo.value.status_code == status_code
    assert excinfo.value.detail == str(error)


@pytest.mark.asyncio
async def test_foreign_request_is_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_get(*args: object, **kwargs: object) -> None:
        return None

    monkeypatch.setattr(router, "SqlAlchemySubscriptionRequestRepository", lambda s: s)
    monkeypatch.setattr(router.request_usecase, "get_user_request", fake_get)

    with pytest.raises(HTTPException) as excinfo:
        await router.get_my_request(request_id=5, session=cast(AsyncSession, DummySession()), user_id=200)
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_my_slots_lists_subscription_summary(monkeypatch: pytest.MonkeyPatch) -> None:
    slot = _slot()

    async def fake_slots(*args: object, **kwargs: object) -> list[SubscriptionSlot]:
        return [slot]

    monkeypatch.setattr(router, "SqlAlchemySubscriptionSlotRepository", lambda s: s)
    monkeypatch.setattr(router.request_usecase, "get_user_subscription_slots", fake_slots)

    listed = await router.list_my_slots(session=cast(AsyncSession, DummySession()), user_id=200)

    assert [item.slot_id for item in listed] == [slot.id]
    assert listed[0].subscription is None
    assert listed[0].model_dump()["assigned_at"].endswith("+00:00")
