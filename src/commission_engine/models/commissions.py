"""Payments, commissions and withdrawals.

The pipeline owns the only write path to these tables; dashboards read them.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.models.base import Base, JSONType, TimestampMixin, UTCDateTime, utcnow


class Payment(Base, TimestampMixin):
    """Paid invoice. `external_payment_id` is the settlement idempotency key."""

    __tablename__ = "payment"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    external_payment_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subscription_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("subscription.id", ondelete="SET NULL"), nullable=True
    )
    user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    affiliate_id: Mapped[UUID | None] = mapped_column(nullable=True)
    plan_id: Mapped[UUID | None] = mapped_column(nullable=True)
    product_id: Mapped[UUID | None] = mapped_column(nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="brl")
    billing_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    commission_processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    commission_processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    commission_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    commissions_generated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    commission_exempt: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    environment: Mapped[str] = mapped_column(String(20), nullable=False, default="production")

    __table_args__ = (
        UniqueConstraint("external_payment_id", name="payment_external_id_uq"),
        CheckConstraint("amount >= 0", name="payment_amount_ck"),
        Index("payment_unprocessed_idx", "commission_processed", "created_at"),
    )

    commissions: Mapped[list[Commission]] = relationship(back_populates="payment")


class Commission(Base, TimestampMixin):
    """One commission per (payment, referral level).

    `status` is the stored state; pending rows past `available_date` read as
    available (see services.commission_status).
    """

    __tablename__ = "commission"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    affiliate_id: Mapped[UUID] = mapped_column(nullable=False)
    payment_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment.id", ondelete="RESTRICT"), nullable=False
    )
    subscription_id: Mapped[UUID | None] = mapped_column(nullable=True)
    user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    product_id: Mapped[UUID | None] = mapped_column(nullable=True)
    commission_type: Mapped[str] = mapped_column(String(30), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    available_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    reference_month: Mapped[date | None] = mapped_column(Date, nullable=True)
    withdrawal_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("withdrawal.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("payment_id", "level", name="commission_payment_level_uq"),
        CheckConstraint("level >= 1", name="commission_level_ck"),
        CheckConstraint("amount >= 0", name="commission_amount_ck"),
        CheckConstraint(
            "status IN ('pending', 'available', 'withdrawn', 'cancelled')",
            name="commission_status_ck",
        ),
        Index("commission_affiliate_idx", "affiliate_id", "status"),
    )

    payment: Mapped[Payment] = relationship(back_populates="commissions")


class Withdrawal(Base, TimestampMixin):
    """Payout request reserving a set of available commissions."""

    __tablename__ = "withdrawal"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    affiliate_id: Mapped[UUID] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    pix_key: Mapped[str] = mapped_column(String(255), nullable=False)
    pix_type: Mapped[str] = mapped_column(String(30), nullable=False)
    commission_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    requested_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    approved_date: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    paid_date: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_proof_urls: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    __table_args__ = (
        CheckConstraint("amount > 0", name="withdrawal_amount_ck"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'paid', 'rejected')",
            name="withdrawal_status_ck",
        ),
        Index("withdrawal_affiliate_idx", "affiliate_id", "status"),
    )
