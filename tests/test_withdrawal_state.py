"""Tests for the withdrawal state machine."""

import pytest

from commission_engine.errors import InvalidTransitionError
from commission_engine.services.withdrawal_state import WithdrawalStateMachine, WithdrawalStatus


class TestWithdrawalStateMachine:
    """Test withdrawal status transitions."""

    def test_valid_transitions(self):
        """Test all valid transitions are allowed."""
        valid = [
            ("pending", "approved"),
            ("pending", "rejected"),
            ("approved", "paid"),
            ("approved", "pending"),
            ("paid", "approved"),
        ]
        for from_status, to_status in valid:
            assert WithdrawalStateMachine.can_transition(from_status, to_status) is True

    def test_invalid_transitions(self):
        """Test invalid transitions are rejected."""
        invalid = [
            ("pending", "paid"),
            ("approved", "rejected"),
            ("paid", "pending"),
            ("paid", "rejected"),
            ("rejected", "pending"),
            ("rejected", "approved"),
        ]
        for from_status, to_status in invalid:
            assert WithdrawalStateMachine.can_transition(from_status, to_status) is False

    def test_validate_transition_raises(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            WithdrawalStateMachine.validate_transition("pending", "paid")
        assert exc_info.value.from_status == "pending"
        assert exc_info.value.to_status == "paid"

    def test_rejected_is_terminal(self):
        for status in ("pending", "approved", "paid", "rejected"):
            assert WithdrawalStateMachine.can_transition(WithdrawalStatus.REJECTED, status) is False
        assert WithdrawalStateMachine.holds_reservation(WithdrawalStatus.REJECTED) is False

    def test_open_withdrawals_hold_reservations(self):
        for status in ("pending", "approved", "paid"):
            assert WithdrawalStateMachine.holds_reservation(status) is True
