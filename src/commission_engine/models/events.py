"""Inbound payment-processor event log."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Index, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from commission_engine.models.base import Base, JSONType, UTCDateTime, utcnow


class PaymentEvent(Base):
    """Raw webhook event, keyed by the processor's event id.

    Append-only: only `processed` / `processed_at` change after insert.
    """

    __tablename__ = "payment_event"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    environment: Mapped[str] = mapped_column(String(20), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    correlated_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    correlated_plan_id: Mapped[UUID | None] = mapped_column(nullable=True)
    correlated_product_id: Mapped[UUID | None] = mapped_column(nullable=True)
    affiliate_id: Mapped[UUID | None] = mapped_column(nullable=True)
    external_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_details: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("event_id", name="payment_event_event_id_uq"),
        CheckConstraint(
            "environment IN ('test', 'production')",
            name="payment_event_environment_ck",
        ),
        Index("payment_event_unprocessed_idx", "processed", "received_at"),
    )
