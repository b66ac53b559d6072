from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from sqlalchemy import JSON, CheckConstraint, Column, Enum, ForeignKey, Index, Table, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, Boolean, DateTime, Integer, String, Text

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


class UserRole(StrEnum):
    USER = "USER"
    ADMIN = "ADMIN"


class SubscriptionRequestStatus(StrEnum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"


def _str_enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


service_provider_countries = Table(
    "service_provider_countries",
    Base.metadata,
    Column("service_provider_id", BigInteger, ForeignKey("service_providers.id", ondelete="CASCADE"), primary_key=True),
    Column("country_id", BigInteger, ForeignKey("countries.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(_str_enum(UserRole), nullable=False, default=UserRole.USER)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Country(Base):
    __tablename__ = "countries"
    __table_args__ = (UniqueConstraint("code", name="uq_countries_code"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(2), nullable=False)
    alpha3: Mapped[str] = mapped_column(String(3), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ServiceProvider(Base):
    __tablename__ = "service_providers"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    countries: Mapped[list["Country"]] = relationship(secondary=service_provider_countries)
    subscriptions: Mapped[list["Subscription"]] = relationship(back_populates="service_provider")


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("available_slots >= 0", name="chk_subscriptions_available_slots"),
        UniqueConstraint("email", name="uq_subscriptions_email"),
        Index("idx_subscriptions_candidates", "service_provider_id", "country_id", "available_slots"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    service_provider_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("service_providers.id", ondelete="CASCADE"), nullable=False
    )
    country_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("countries.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    available_slots: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    renewal_info: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    service_provider: Mapped["ServiceProvider"] = relationship(back_populates="subscriptions")
    slots: Mapped[list["SubscriptionSlot"]] = relationship(back_populates="subscription")


class SubscriptionSlot(Base):
    __tablename__ = "subscription_slots"
    __table_args__ = (
        UniqueConstraint("user_id", "subscription_id", name="uq_slots_user_subscription"),
        Index("idx_slots_subscription", "subscription_id"),
        Index("idx_slots_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    subscription_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False
    )
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    subscription: Mapped["Subscription"] = relationship(back_populates="slots")


class SubscriptionRequest(Base):
    __tablename__ = "subscription_requests"
    __table_args__ = (
        Index("idx_requests_user", "user_id"),
        Index("idx_requests_provider_status", "service_provider_id", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    service_provider_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("service_providers.id", ondelete="CASCADE"), nullable=False
    )
    country_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("countries.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[SubscriptionRequestStatus] = mapped_column(
        _str_enum(SubscriptionRequestStatus),
        nullable=False,
        default=SubscriptionRequestStatus.PENDING,
    )
    assigned_slot_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("subscription_slots.id", ondelete="SET NULL"), nullable=True
    )
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
