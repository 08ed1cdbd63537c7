"""Read-time commission status.

A pending commission becomes available once its ``available_date`` has
passed. The promotion is a pure function of time: nothing rewrites the
stored status, so the stored row and the derived view cannot drift.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from commission_engine.models import Commission, utcnow


class CommissionStatus(str, Enum):
    """Commission status values."""

    PENDING = "pending"
    AVAILABLE = "available"
    WITHDRAWN = "withdrawn"
    CANCELLED = "cancelled"


def available_date_for(payment_date: datetime, maturation_days: int) -> datetime:
    """Date a commission for a payment on ``payment_date`` matures."""
    return payment_date + timedelta(days=maturation_days)


def effective_status(stored_status: str, available_date: datetime, now: datetime) -> str:
    """Status as observed at ``now``."""
    if stored_status == CommissionStatus.PENDING and available_date <= now:
        return CommissionStatus.AVAILABLE.value
    return str(stored_status)


def commission_effective_status(commission: Commission, now: datetime | None = None) -> str:
    """Effective status of a commission row."""
    return effective_status(commission.status, commission.available_date, now or utcnow())


def is_available_clause(now: datetime) -> ColumnElement[bool]:
    """SQL predicate equivalent to ``effective_status(...) == 'available'``."""
    return or_(
        Commission.status == CommissionStatus.AVAILABLE.value,
        and_(
            Commission.status == CommissionStatus.PENDING.value,
            Commission.available_date <= now,
        ),
    )


def reference_month(payment_date: datetime) -> date:
    """First day of the payment's month."""
    return date(payment_date.year, payment_date.month, 1)


@dataclass
class CommissionBalance:
    """Commission totals per effective status for one affiliate."""

    affiliate_id: UUID
    pending: Decimal = Decimal("0")
    available: Decimal = Decimal("0")
    reserved: Decimal = Decimal("0")
    withdrawn: Decimal = Decimal("0")
    cancelled: Decimal = Decimal("0")
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def withdrawable(self) -> Decimal:
        """Available and not reserved by an open withdrawal."""
        return self.available - self.reserved

    def to_dict(self) -> dict[str, Any]:
        return {
            "affiliate_id": str(self.affiliate_id),
            "pending": str(self.pending),
            "available": str(self.available),
            "reserved": str(self.reserved),
            "withdrawable": str(self.withdrawable),
            "withdrawn": str(self.withdrawn),
            "cancelled": str(self.cancelled),
            "counts": dict(self.counts),
        }


class CommissionQueryService:
    """Read model for dashboards: commissions with their effective status."""

    def __init__(self, session: Session):
        self.session = session

    def list_for_affiliate(
        self,
        affiliate_id: UUID,
        *,
        now: datetime | None = None,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[tuple[Commission, str]]:
        """Commissions of an affiliate paired with their effective status."""
        now = now or utcnow()
        query = select(Commission).where(Commission.affiliate_id == affiliate_id)

        if status == CommissionStatus.AVAILABLE:
            query = query.where(is_available_clause(now))
        elif status == CommissionStatus.PENDING:
            query = query.where(
                Commission.status == CommissionStatus.PENDING.value,
                Commission.available_date > now,
            )
        elif status is not None:
            query = query.where(Commission.status == status)

        query = query.order_by(Commission.payment_date.desc(), Commission.level)
        rows = self.session.scalars(query.offset(offset).limit(limit))
        return [(c, commission_effective_status(c, now)) for c in rows]

    def balance(self, affiliate_id: UUID, *, now: datetime | None = None) -> CommissionBalance:
        """Totals per effective status."""
        now = now or utcnow()
        result = CommissionBalance(affiliate_id=affiliate_id)
        rows = self.session.scalars(
            select(Commission).where(Commission.affiliate_id == affiliate_id)
        )
        for commission in rows:
            status = commission_effective_status(commission, now)
            setattr(result, status, getattr(result, status) + commission.amount)
            result.counts[status] = result.counts.get(status, 0) + 1
            if status == CommissionStatus.AVAILABLE and commission.withdrawal_id is not None:
                result.reserved += commission.amount
        return result
