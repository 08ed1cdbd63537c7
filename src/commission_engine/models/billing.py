"""Plans, plan integrations, subscriptions and runtime settings."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.models.base import Base, JSONType, TimestampMixin, UTCDateTime, utcnow

SUBSCRIPTION_STATUSES = (
    "incomplete",
    "incomplete_expired",
    "trialing",
    "active",
    "past_due",
    "unpaid",
    "paused",
    "canceled",
)


class Plan(Base, TimestampMixin):
    """Subscription plan. Written by the admin surface, read-only here."""

    __tablename__ = "plan"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    product_id: Mapped[UUID | None] = mapped_column(nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    is_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    integrations: Mapped[list[PlanIntegration]] = relationship(back_populates="plan")
    commission_levels: Mapped[list[PlanCommissionLevel]] = relationship(back_populates="plan")


class PlanIntegration(Base, TimestampMixin):
    """Mapping of a processor price id to an internal plan, per environment."""

    __tablename__ = "plan_integration"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    plan_id: Mapped[UUID] = mapped_column(
        ForeignKey("plan.id", ondelete="CASCADE"), nullable=False
    )
    external_price_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_product_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    environment: Mapped[str] = mapped_column(String(20), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint(
            "external_price_id", "environment", name="plan_integration_price_env_uq"
        ),
        CheckConstraint(
            "environment IN ('test', 'production')",
            name="plan_integration_environment_ck",
        ),
    )

    plan: Mapped[Plan] = relationship(back_populates="integrations")


class PlanCommissionLevel(Base, TimestampMixin):
    """Commission percentage for one referral level of a plan.

    `percentage` is in percent units (10 means 10%). `affiliate_tier` selects
    the beneficiary's tier; NULL rows apply to any tier.
    """

    __tablename__ = "plan_commission_level"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    plan_id: Mapped[UUID] = mapped_column(
        ForeignKey("plan.id", ondelete="CASCADE"), nullable=False
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    affiliate_tier: Mapped[str | None] = mapped_column(String(10), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("level >= 1", name="plan_commission_level_level_ck"),
        CheckConstraint(
            "percentage >= 0 AND percentage <= 100",
            name="plan_commission_level_percentage_ck",
        ),
        CheckConstraint(
            "affiliate_tier IS NULL OR affiliate_tier IN ('free', 'pro')",
            name="plan_commission_level_tier_ck",
        ),
    )

    plan: Mapped[Plan] = relationship(back_populates="commission_levels")


class Subscription(Base, TimestampMixin):
    """Subscription aggregate, one per processor subscription id."""

    __tablename__ = "subscription"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(nullable=False)
    plan_id: Mapped[UUID] = mapped_column(ForeignKey("plan.id"), nullable=False)
    external_subscription_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    environment: Mapped[str] = mapped_column(String(20), nullable=False, default="production")
    current_period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    trial_end: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancellation_details: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    payment_method_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "external_subscription_id", name="subscription_external_id_uq"
        ),
        CheckConstraint(
            "status IN ('incomplete', 'incomplete_expired', 'trialing', 'active', "
            "'past_due', 'unpaid', 'paused', 'canceled')",
            name="subscription_status_ck",
        ),
        Index("subscription_user_idx", "user_id"),
    )

    plan: Mapped[Plan] = relationship()


class AppSetting(Base):
    """Key/value runtime settings maintained by the admin surface."""

    __tablename__ = "app_setting"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
