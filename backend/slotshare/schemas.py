from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from .models import Subscription, SubscriptionRequest, SubscriptionRequestStatus, SubscriptionSlot
from .utils.time import utc_naive_to_aware


def _iso_utc(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = utc_naive_to_aware(dt)
    return dt.isoformat()


class SlotRequestCreate(BaseModel):
    service_provider_id: int = Field(ge=1)
    country_id: Optional[int] = Field(default=None, ge=1)


class SubscriptionRequestRead(BaseModel):
    request_id: int
    user_id: int
    service_provider_id: int
    country_id: Optional[int]
    status: SubscriptionRequestStatus
    assigned_slot_id: Optional[int]
    requested_at: datetime
    processed_at: Optional[datetime]

    @field_serializer("requested_at", "processed_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return _iso_utc(dt)

    @classmethod
    def from_db(cls, *, request: SubscriptionRequest) -> "SubscriptionRequestRead":
        return cls(
            request_id=request.id,
            user_id=request.user_id,
            service_provider_id=request.service_provider_id,
            country_id=request.country_id,
            status=request.status,
            assigned_slot_id=request.assigned_slot_id,
            requested_at=request.requested_at,
            processed_at=request.processed_at,
        )


class SlotRequestResult(BaseModel):
    request: SubscriptionRequestRead
    outcome: str
    message: str


class SubscriptionSummary(BaseModel):
    subscription_id: int
    service_provider_id: int
    name: str
    email: str
    expires_at: Optional[datetime]

    @field_serializer("expires_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return _iso_utc(dt)


class SubscriptionSlotRead(BaseModel):
    slot_id: int
    user_id: int
    subscription_id: int
    assigned_at: datetime
    is_active: bool
    subscription: Optional[SubscriptionSummary] = None

    @field_serializer("assigned_at")
    def _ser_datetime(self, dt: datetime) -> Optional[str]:
        return _iso_utc(dt)

    @classmethod
    def from_db(cls, *, slot: SubscriptionSlot, subscription: Optional[Subscription] = None) -> "SubscriptionSlotRead":
        summary = None
        if subscription is not None:
            summary = SubscriptionSummary(
                subscription_id=subscription.id,
                service_provider_id=subscription.service_provider_id,
                name=subscription.name,
                email=subscription.email,
                expires_at=subscription.expires_at,
            )
        return cls(
            slot_id=slot.id,
            user_id=slot.user_id,
            subscription_id=slot.subscription_id,
            assigned_at=slot.assigned_at,
            is_active=slot.is_active,
            subscription=summary,
        )


class SubscriptionCreate(BaseModel):
    service_provider_id: int = Field(ge=1)
    country_id: Optional[int] = Field(default=None, ge=1)
    name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255)
    available_slots: int = Field(ge=1, le=100)
    is_active: bool = True
    expires_at: Optional[datetime] = None
    renewal_info: Optional[dict[str, Any]] = None
    metadata: Optional[dict[str, Any]] = None


class SubscriptionUpdate(BaseModel):
    """Partial edit; capacity is changed through the capacity endpoint only."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)
    country_id: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None
    expires_at: Optional[datetime] = None
    renewal_info: Optional[dict[str, Any]] = None
    metadata: Optional[dict[str, Any]] = None

    def changes(self) -> dict[str, Any]:
        """Fields the client actually sent, keyed by model attribute name."""
        sent = self.model_dump(exclude_unset=True)
        if "metadata" in sent:
            sent["meta"] = sent.pop("metadata")
        return sent


class CapacityAdjust(BaseModel):
    amount: int = Field(ge=1, le=100)


class SubscriptionRead(BaseModel):
    subscription_id: int
    service_provider_id: int
    country_id: Optional[int]
    name: str
    email: str
    available_slots: int
    is_active: bool
    expires_at: Optional[datetime]
    renewal_info: Optional[dict[str, Any]] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime

    @field_serializer("expires_at", "created_at", "updated_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return _iso_utc(dt)

    @classmethod
    def from_db(cls, *, subscription: Subscription) -> "SubscriptionRead":
        return cls(
            subscription_id=subscription.id,
            service_provider_id=subscription.service_provider_id,
            country_id=subscription.country_id,
            name=subscription.name,
            email=subscription.email,
            available_slots=subscription.available_slots,
            is_active=subscription.is_active,
            expires_at=subscription.expires_at,
            renewal_info=subscription.renewal_info,
            metadata=subscription.meta,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
        )
