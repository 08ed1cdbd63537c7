"""Withdrawal lifecycle: reservation of available commissions and payout."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from commission_engine.errors import CommissionEngineError
from commission_engine.models import Commission, Withdrawal, utcnow
from commission_engine.services.commission_status import (
    CommissionStatus,
    commission_effective_status,
    is_available_clause,
)
from commission_engine.services.withdrawal_state import WithdrawalStateMachine, WithdrawalStatus

logger = logging.getLogger(__name__)


class WithdrawalError(CommissionEngineError):
    """Base class for withdrawal errors."""


class WithdrawalNotFoundError(WithdrawalError):
    """Raised when a withdrawal does not exist."""

    def __init__(self, withdrawal_id: UUID | str):
        self.withdrawal_id = withdrawal_id
        super().__init__(f"Withdrawal {withdrawal_id} not found")


class WithdrawalValidationError(WithdrawalError):
    """Raised when a withdrawal request or action is incomplete."""


class CommissionUnavailableError(WithdrawalError):
    """Raised when requested commissions cannot be reserved."""

    def __init__(self, message: str, commission_ids: list[UUID] | None = None):
        self.commission_ids = commission_ids or []
        super().__init__(message)


class WithdrawalService:
    """Manages withdrawals and the commission reservations they hold.

    A commission is reserved when its ``withdrawal_id`` is set. The
    reservation is taken with a conditional update so two concurrent
    requests can never hold the same commission.
    """

    def __init__(self, session: Session):
        self.session = session

    def get(self, withdrawal_id: UUID) -> Withdrawal:
        withdrawal = self.session.get(Withdrawal, withdrawal_id)
        if withdrawal is None:
            raise WithdrawalNotFoundError(withdrawal_id)
        return withdrawal

    def list_for_affiliate(self, affiliate_id: UUID) -> list[Withdrawal]:
        return list(
            self.session.scalars(
                select(Withdrawal)
                .where(Withdrawal.affiliate_id == affiliate_id)
                .order_by(Withdrawal.requested_date.desc())
            )
        )

    def commissions_of(self, withdrawal_id: UUID) -> list[Commission]:
        return list(
            self.session.scalars(
                select(Commission)
                .where(Commission.withdrawal_id == withdrawal_id)
                .order_by(Commission.payment_date)
            )
        )

    def request(
        self,
        affiliate_id: UUID,
        commission_ids: list[UUID],
        pix_key: str,
        pix_type: str,
        *,
        now: datetime | None = None,
    ) -> Withdrawal:
        """Request a payout of available commissions.

        Raises:
            WithdrawalValidationError: If no commissions or payout key were
                given, or the commissions add up to nothing
            CommissionUnavailableError: If any commission cannot be reserved
        """
        now = now or utcnow()
        ids = list(dict.fromkeys(commission_ids))
        if not ids:
            raise WithdrawalValidationError("At least one commission is required")
        if not pix_key or not pix_key.strip() or not pix_type:
            raise WithdrawalValidationError("A payout key and key type are required")

        commissions = list(self.session.scalars(select(Commission).where(Commission.id.in_(ids))))
        found = {c.id for c in commissions}
        missing = [i for i in ids if i not in found]
        if missing:
            raise CommissionUnavailableError("Commissions not found", missing)

        unavailable = [
            c.id
            for c in commissions
            if c.affiliate_id != affiliate_id
            or c.withdrawal_id is not None
            or commission_effective_status(c, now) != CommissionStatus.AVAILABLE
        ]
        if unavailable:
            raise CommissionUnavailableError("Commissions are not available", unavailable)

        amount = sum((c.amount for c in commissions), Decimal("0"))
        if amount <= 0:
            raise WithdrawalValidationError("Withdrawal amount must be positive")
        withdrawal = Withdrawal(
            id=uuid4(),
            affiliate_id=affiliate_id,
            amount=amount,
            status=WithdrawalStatus.PENDING.value,
            pix_key=pix_key.strip(),
            pix_type=pix_type,
            commission_ids=[str(i) for i in ids],
            requested_date=now,
            payment_proof_urls=[],
        )

        with self.session.begin_nested():
            self.session.add(withdrawal)
            self.session.flush()
            result = self.session.execute(
                update(Commission)
                .where(
                    Commission.id.in_(ids),
                    Commission.affiliate_id == affiliate_id,
                    Commission.withdrawal_id.is_(None),
                    is_available_clause(now),
                )
                .values(withdrawal_id=withdrawal.id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != len(ids):
                # Lost the race to a concurrent request; the savepoint unwinds
                raise CommissionUnavailableError("Commissions were reserved concurrently", ids)

        for commission in commissions:
            self.session.expire(commission)
        logger.info(
            "Withdrawal %s requested by %s for %s (%d commissions)",
            withdrawal.id,
            affiliate_id,
            amount,
            len(ids),
        )
        return withdrawal

    def approve(
        self, withdrawal_id: UUID, approved_by: UUID | None = None, *, now: datetime | None = None
    ) -> Withdrawal:
        withdrawal = self.get(withdrawal_id)
        WithdrawalStateMachine.validate_transition(withdrawal.status, WithdrawalStatus.APPROVED)
        withdrawal.status = WithdrawalStatus.APPROVED.value
        withdrawal.approved_date = now or utcnow()
        withdrawal.approved_by = approved_by
        logger.info("Withdrawal %s approved", withdrawal_id)
        return withdrawal

    def mark_paid(
        self, withdrawal_id: UUID, proof_urls: list[str], *, now: datetime | None = None
    ) -> Withdrawal:
        """Record the payout; reserved commissions become withdrawn."""
        withdrawal = self.get(withdrawal_id)
        WithdrawalStateMachine.validate_transition(withdrawal.status, WithdrawalStatus.PAID)
        proofs = [url.strip() for url in proof_urls if url and url.strip()]
        if not proofs:
            raise WithdrawalValidationError("At least one payment proof is required")

        withdrawal.status = WithdrawalStatus.PAID.value
        withdrawal.paid_date = now or utcnow()
        withdrawal.payment_proof_urls = proofs
        self._set_commission_status(withdrawal.id, CommissionStatus.WITHDRAWN)
        logger.info("Withdrawal %s paid", withdrawal_id)
        return withdrawal

    def reject(self, withdrawal_id: UUID, reason: str) -> Withdrawal:
        """Reject a pending withdrawal and release its commissions."""
        withdrawal = self.get(withdrawal_id)
        WithdrawalStateMachine.validate_transition(withdrawal.status, WithdrawalStatus.REJECTED)
        if not reason or not reason.strip():
            raise WithdrawalValidationError("A rejection reason is required")

        withdrawal.status = WithdrawalStatus.REJECTED.value
        withdrawal.rejected_reason = reason.strip()
        if not WithdrawalStateMachine.holds_reservation(withdrawal.status):
            self._release(withdrawal.id)
        logger.info("Withdrawal %s rejected: %s", withdrawal_id, withdrawal.rejected_reason)
        return withdrawal

    def unapprove(self, withdrawal_id: UUID) -> Withdrawal:
        withdrawal = self.get(withdrawal_id)
        WithdrawalStateMachine.validate_transition(withdrawal.status, WithdrawalStatus.PENDING)
        withdrawal.status = WithdrawalStatus.PENDING.value
        withdrawal.approved_date = None
        withdrawal.approved_by = None
        logger.info("Withdrawal %s returned to pending", withdrawal_id)
        return withdrawal

    def revert_payment(self, withdrawal_id: UUID) -> Withdrawal:
        """Undo a payout. Commissions stay reserved by the withdrawal."""
        withdrawal = self.get(withdrawal_id)
        WithdrawalStateMachine.validate_transition(withdrawal.status, WithdrawalStatus.APPROVED)
        withdrawal.status = WithdrawalStatus.APPROVED.value
        withdrawal.paid_date = None
        withdrawal.payment_proof_urls = []
        self._set_commission_status(withdrawal.id, CommissionStatus.AVAILABLE)
        logger.info("Withdrawal %s payment reverted", withdrawal_id)
        return withdrawal

    def _release(self, withdrawal_id: UUID) -> None:
        self.session.execute(
            update(Commission)
            .where(Commission.withdrawal_id == withdrawal_id)
            .values(withdrawal_id=None)
        )
        logger.info("Released commissions held by withdrawal %s", withdrawal_id)

    def _set_commission_status(self, withdrawal_id: UUID, status: CommissionStatus) -> None:
        self.session.flush()
        self.session.execute(
            update(Commission)
            .where(Commission.withdrawal_id == withdrawal_id)
            .values(status=status.value)
        )

