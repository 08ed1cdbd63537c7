"""Withdrawal state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from commission_engine.errors import InvalidTransitionError


class WithdrawalStatus(str, Enum):
    """Withdrawal status values."""

    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"


class WithdrawalStateMachine:
    """State machine for withdrawal status transitions.

    Allowed transitions:
    - pending → approved
    - pending → rejected
    - approved → paid
    - approved → pending (unapprove)
    - paid → approved (revert payment)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        WithdrawalStatus.PENDING: [WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED],
        WithdrawalStatus.APPROVED: [WithdrawalStatus.PAID, WithdrawalStatus.PENDING],
        WithdrawalStatus.PAID: [WithdrawalStatus.APPROVED],
        WithdrawalStatus.REJECTED: [],  # Terminal state
    }

    # Statuses in which the withdrawal holds its commissions
    HOLDS_RESERVATION = {
        WithdrawalStatus.PENDING,
        WithdrawalStatus.APPROVED,
        WithdrawalStatus.PAID,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def holds_reservation(cls, status: str) -> bool:
        """Whether a withdrawal in ``status`` keeps its commissions reserved."""
        return status in cls.HOLDS_RESERVATION
