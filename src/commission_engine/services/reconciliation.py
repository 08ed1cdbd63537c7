"""Commission reconciliation - idempotent reprocessing of payments.

Finds payments whose settlement never completed and drives each one to a
settled state. Every item runs in its own savepoint so one failure never
aborts the batch, and the live settlement path may run concurrently: each
item re-reads its payment before deciding what to do.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from commission_engine.models import Payment
from commission_engine.services.settlement import SettlementEngine, SettlementOutcome

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 100


class ReprocessAction(str, Enum):
    """What reconciliation should do with a payment."""

    ALREADY_PROCESSED = "already_processed"
    HEAL = "heal"
    SETTLE = "settle"


class ReprocessStatus(str, Enum):
    """Reported outcome of one reprocessed payment."""

    ALREADY_PROCESSED = "already_processed"
    COMMISSIONS_FOUND = "commissions_found"
    REPROCESSED = "reprocessed"
    ERROR = "error"


@dataclass(frozen=True)
class PaymentSnapshot:
    """The facts reconciliation decides on."""

    commission_processed: bool
    commission_exempt: bool
    amount: Decimal
    existing_commissions: int


def decide_reprocess_action(snapshot: PaymentSnapshot) -> ReprocessAction:
    """Decide the action for a payment. Pure: no I/O."""
    if snapshot.commission_processed:
        return ReprocessAction.ALREADY_PROCESSED
    if snapshot.existing_commissions > 0:
        return ReprocessAction.HEAL
    return ReprocessAction.SETTLE


@dataclass
class ReprocessItem:
    """Outcome of reprocessing one payment."""

    payment_id: str
    status: ReprocessStatus
    message: str
    commissions_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "status": self.status.value,
            "message": self.message,
            "commissions_count": self.commissions_count,
        }


@dataclass
class ReprocessReport:
    """Result of a reprocessing run."""

    results: list[ReprocessItem] = field(default_factory=list)

    def _count(self, status: ReprocessStatus) -> int:
        return sum(1 for item in self.results if item.status == status)

    @property
    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.results),
            "already_processed": self._count(ReprocessStatus.ALREADY_PROCESSED),
            "commissions_found": self._count(ReprocessStatus.COMMISSIONS_FOUND),
            "reprocessed": self._count(ReprocessStatus.REPROCESSED),
            "errors": self._count(ReprocessStatus.ERROR),
        }

    @property
    def success(self) -> bool:
        """Whether every item completed without error."""
        return self._count(ReprocessStatus.ERROR) == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "results": [item.to_dict() for item in self.results],
        }


class ReconciliationService:
    """Reprocesses payments whose commission settlement is incomplete.

    Usage:
        service = ReconciliationService(session, engine)
        report = service.reprocess_all(limit=100)
        session.commit()
    """

    def __init__(self, session: Session, engine: SettlementEngine):
        self.session = session
        self.engine = engine

    def pending_payment_ids(self, limit: int = DEFAULT_BATCH_LIMIT) -> list[UUID]:
        """Unsettled, error-free, non-zero payments, newest first."""
        return list(
            self.session.scalars(
                select(Payment.id)
                .where(
                    Payment.commission_processed.is_(False),
                    Payment.commission_error.is_(None),
                    Payment.amount > 0,
                )
                .order_by(Payment.created_at.desc())
                .limit(limit)
            )
        )

    def reprocess_all(
        self, limit: int = DEFAULT_BATCH_LIMIT, *, now: datetime | None = None
    ) -> ReprocessReport:
        """Reprocess every pending payment, up to ``limit``."""
        payment_ids = self.pending_payment_ids(limit)
        logger.info("Reprocessing %d pending payment(s)", len(payment_ids))
        return self.reprocess_many(payment_ids, now=now)

    def reprocess_many(
        self, payment_ids: list[UUID | str], *, now: datetime | None = None
    ) -> ReprocessReport:
        """Reprocess specific payments regardless of their flags."""
        report = ReprocessReport()
        for payment_id in payment_ids:
            report.results.append(self.reprocess_one(payment_id, now=now))
        summary = report.summary
        logger.info(
            "Reprocessing finished: %d total, %d reprocessed, %d errors",
            summary["total"],
            summary["reprocessed"],
            summary["errors"],
        )
        return report

    def reprocess_one(
        self, payment_id: UUID | str, *, now: datetime | None = None
    ) -> ReprocessItem:
        """Reprocess a single payment inside its own savepoint."""
        try:
            key = payment_id if isinstance(payment_id, UUID) else UUID(str(payment_id))
        except ValueError:
            return ReprocessItem(
                payment_id=str(payment_id),
                status=ReprocessStatus.ERROR,
                message="Payment not found",
            )

        payment = self.session.get(Payment, key, populate_existing=True)
        if payment is None:
            return ReprocessItem(
                payment_id=str(payment_id),
                status=ReprocessStatus.ERROR,
                message="Payment not found",
            )

        snapshot = PaymentSnapshot(
            commission_processed=payment.commission_processed,
            commission_exempt=payment.commission_exempt,
            amount=payment.amount,
            existing_commissions=self.engine.existing_commission_count(payment.id),
        )
        action = decide_reprocess_action(snapshot)

        if action == ReprocessAction.ALREADY_PROCESSED:
            return ReprocessItem(
                payment_id=str(payment.id),
                status=ReprocessStatus.ALREADY_PROCESSED,
                message="Commissions already processed",
                commissions_count=payment.commissions_generated,
            )

        try:
            with self.session.begin_nested():
                result = self.engine.settle(payment, reprocess=True, now=now)
        except Exception as e:
            logger.exception("Reprocessing payment %s failed", payment.id)
            # The savepoint rollback expired the row; reload before annotating
            self.session.refresh(payment)
            payment.commission_error = str(e)
            self.session.flush()
            return ReprocessItem(
                payment_id=str(payment.id),
                status=ReprocessStatus.ERROR,
                message=str(e),
            )

        if result.outcome == SettlementOutcome.COMMISSIONS_FOUND:
            return ReprocessItem(
                payment_id=str(payment.id),
                status=ReprocessStatus.COMMISSIONS_FOUND,
                message="Commissions already existed; flag updated",
                commissions_count=payment.commissions_generated,
            )
        if result.outcome == SettlementOutcome.EXEMPT:
            return ReprocessItem(
                payment_id=str(payment.id),
                status=ReprocessStatus.REPROCESSED,
                message="Zero-amount payment marked exempt",
            )
        return ReprocessItem(
            payment_id=str(payment.id),
            status=ReprocessStatus.REPROCESSED,
            message=f"{result.commissions_created} commission(s) created",
            commissions_count=result.commissions_created,
        )
