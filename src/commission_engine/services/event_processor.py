"""Dispatch of classified intents to their domain handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from commission_engine.ingestion.intents import (
    CheckoutCompleted,
    DomainIntent,
    InvoicePaid,
    InvoicePaymentFailed,
    PaymentMethodAttached,
    SubscriptionCanceled,
    SubscriptionCreated,
    SubscriptionUpdated,
    Unhandled,
)
from commission_engine.services.settlement import SettlementEngine, SettlementError
from commission_engine.services.subscription_state import SubscriptionService

logger = logging.getLogger(__name__)


@dataclass
class ProcessingOutcome:
    """What processing an intent did."""

    kind: str
    detail: str
    payment_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "detail": self.detail, "payment_id": self.payment_id}


class EventProcessor:
    """Applies a domain intent to subscriptions, payments and commissions.

    Settlement failures are captured on the payment's ``commission_error``
    for reconciliation and never fail the event itself. Anything else that
    goes wrong propagates to the caller.
    """

    def __init__(self, session: Session, settlement: SettlementEngine):
        self.session = session
        self.subscriptions = SubscriptionService(session)
        self.settlement = settlement

    def process(self, intent: DomainIntent, environment: str) -> ProcessingOutcome:
        kind = intent.kind.value

        if isinstance(intent, SubscriptionCreated):
            sub = self.subscriptions.apply_created(intent, environment)
            return ProcessingOutcome(kind, "applied" if sub else "skipped")

        if isinstance(intent, SubscriptionUpdated):
            sub = self.subscriptions.apply_updated(intent, environment)
            return ProcessingOutcome(kind, "applied" if sub else "skipped")

        if isinstance(intent, SubscriptionCanceled):
            sub = self.subscriptions.apply_canceled(intent)
            return ProcessingOutcome(kind, "applied" if sub else "skipped")

        if isinstance(intent, CheckoutCompleted):
            sub = self.subscriptions.apply_checkout_completed(intent, environment)
            return ProcessingOutcome(kind, "applied" if sub else "skipped")

        if isinstance(intent, InvoicePaymentFailed):
            sub = self.subscriptions.apply_payment_failed(intent)
            return ProcessingOutcome(kind, "applied" if sub else "skipped")

        if isinstance(intent, PaymentMethodAttached):
            count = self.subscriptions.apply_payment_method_attached(intent)
            return ProcessingOutcome(kind, f"{count} subscription(s) updated")

        if isinstance(intent, InvoicePaid):
            return self._invoice_paid(intent, environment)

        if isinstance(intent, Unhandled):
            logger.info("No handler for %s (%s)", intent.event_type, intent.event_id)
            return ProcessingOutcome(kind, "ignored")

        raise TypeError(f"Unknown intent {type(intent).__name__}")

    def _invoice_paid(self, intent: InvoicePaid, environment: str) -> ProcessingOutcome:
        payment = self.settlement.record_payment(intent, environment)
        try:
            with self.session.begin_nested():
                result = self.settlement.settle(payment)
        except SettlementError as e:
            logger.warning(
                "Settlement of payment %s failed: %s", payment.external_payment_id, e
            )
            self.session.refresh(payment)
            payment.commission_error = str(e)
            return ProcessingOutcome(
                intent.kind.value, f"settlement failed: {e}", payment_id=str(payment.id)
            )
        return ProcessingOutcome(
            intent.kind.value, result.outcome.value, payment_id=str(payment.id)
        )
