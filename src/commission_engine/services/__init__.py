"""Commission engine services."""

from commission_engine.services.reconciliation import ReconciliationService
from commission_engine.services.settlement import (
    MissingPlanConfigError,
    SettlementEngine,
    SettlementError,
)
from commission_engine.services.subscription_state import SubscriptionStateMachine
from commission_engine.services.withdrawal_state import WithdrawalStateMachine, WithdrawalStatus
from commission_engine.services.withdrawals import WithdrawalService

__all__ = [
    "MissingPlanConfigError",
    "ReconciliationService",
    "SettlementEngine",
    "SettlementError",
    "SubscriptionStateMachine",
    "WithdrawalService",
    "WithdrawalStateMachine",
    "WithdrawalStatus",
]
