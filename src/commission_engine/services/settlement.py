"""Commission settlement: payments in, one commission per referral level out.

Settlement is idempotent per payment:
- ``payment.external_payment_id`` is unique, so a redelivered invoice maps
  to the same payment row
- commission rows exist for a payment, or they don't; the unique
  ``(payment_id, level)`` constraint backs the check-before-insert
- the whole commission set for a payment is written inside one savepoint
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from commission_engine.database import insert_if_absent
from commission_engine.errors import CommissionEngineError
from commission_engine.ingestion.intents import InvoicePaid
from commission_engine.models import (
    Commission,
    Payment,
    Plan,
    PlanCommissionLevel,
    Subscription,
    utcnow,
)
from commission_engine.services.commission_status import (
    CommissionStatus,
    available_date_for,
    reference_month,
)
from commission_engine.services.referral_chain import (
    DEFAULT_MAX_DEPTH,
    ChainLink,
    ReferralChainResolver,
)
from commission_engine.services.subscription_state import (
    SubscriptionStateMachine,
    from_unix,
    plan_for_price,
)

if TYPE_CHECKING:
    from commission_engine.services.environment import EnvironmentResolver

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
DEFAULT_MATURATION_DAYS = 7


class SettlementError(CommissionEngineError):
    """Raised when a payment cannot be settled."""


class MissingPlanConfigError(SettlementError):
    """Raised when a payment's plan or its commission levels are missing."""


class SettlementOutcome(str, Enum):
    """Outcome of a settlement attempt."""

    SETTLED = "settled"
    ALREADY_SETTLED = "already_settled"
    COMMISSIONS_FOUND = "commissions_found"
    EXEMPT = "exempt"


class AffiliateTier(str, Enum):
    FREE = "free"
    PRO = "pro"


@dataclass
class SettlementResult:
    """Result of settling one payment."""

    payment_id: UUID
    outcome: SettlementOutcome
    commissions_created: int = 0
    commission_ids: list[UUID] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment_id": str(self.payment_id),
            "outcome": self.outcome.value,
            "commissions_created": self.commissions_created,
            "commission_ids": [str(c) for c in self.commission_ids],
        }


def commission_type_for(billing_reason: str | None) -> str:
    """Commission type derived from the invoice billing reason."""
    if billing_reason == "subscription_create":
        return "first_sale"
    if billing_reason == "one_time_purchase":
        return "one_time_sale"
    return "renewal"


def commission_amount(amount: Decimal, percentage: Decimal) -> Decimal:
    """Share of ``amount`` for a percentage in percent units, half-up to cents."""
    return (Decimal(amount) * Decimal(percentage) / Decimal("100")).quantize(
        CENTS, rounding=ROUND_HALF_UP
    )


def select_level_config(
    configs: list[PlanCommissionLevel], level: int, tier: str
) -> PlanCommissionLevel | None:
    """Config row for a level, preferring the beneficiary's tier over tier-less rows."""
    fallback = None
    for config in configs:
        if config.level != level:
            continue
        if config.affiliate_tier == tier:
            return config
        if config.affiliate_tier is None and fallback is None:
            fallback = config
    return fallback


class SettlementEngine:
    """Records paid invoices and derives their commissions.

    The engine never commits: callers own the transaction boundary.
    """

    def __init__(
        self,
        session: Session,
        environment: EnvironmentResolver | None = None,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.session = session
        self.environment = environment
        self.chain_resolver = ReferralChainResolver(session, max_depth=max_depth)

    def maturation_days(self) -> int:
        if self.environment is None:
            return DEFAULT_MATURATION_DAYS
        return self.environment.maturation_days()

    # ------------------------------------------------------------------
    # Payment recording
    # ------------------------------------------------------------------

    def record_payment(self, intent: InvoicePaid, environment: str) -> Payment:
        """Insert the payment for a paid invoice if absent and return it."""
        invoice = intent.object
        external_payment_id = invoice.get("id") or intent.event_id
        external_subscription_id = intent.external_subscription_id

        subscription = None
        if external_subscription_id:
            subscription = self.session.scalar(
                select(Subscription).where(
                    Subscription.external_subscription_id == external_subscription_id
                )
            )

        correlation = intent.correlation
        plan_id = correlation.plan_id
        if plan_id is None:
            plan_id = plan_for_price(self.session, intent.price_id, environment)
        if plan_id is None and subscription is not None:
            plan_id = subscription.plan_id
        user_id = correlation.user_id or (subscription.user_id if subscription else None)

        transitions = invoice.get("status_transitions")
        paid_at = transitions.get("paid_at") if isinstance(transitions, dict) else None
        payment_date = (
            from_unix(paid_at)
            or from_unix(invoice.get("created"))
            or utcnow()
        )

        created = insert_if_absent(
            self.session,
            Payment,
            {
                "external_payment_id": external_payment_id,
                "external_subscription_id": external_subscription_id,
                "external_price_id": intent.price_id,
                "subscription_id": subscription.id if subscription else None,
                "user_id": user_id,
                "affiliate_id": correlation.affiliate_id,
                "plan_id": plan_id,
                "product_id": correlation.product_id,
                "amount": (Decimal(int(invoice.get("amount_paid") or 0)) / 100).quantize(CENTS),
                "currency": (invoice.get("currency") or "brl").lower(),
                "billing_reason": invoice.get("billing_reason"),
                "payment_date": payment_date,
                "commission_processed": False,
                "commissions_generated": 0,
                "commission_exempt": False,
                "environment": environment,
            },
            index_elements=["external_payment_id"],
        )
        payment = self.session.scalar(
            select(Payment).where(Payment.external_payment_id == external_payment_id)
        )
        if created:
            logger.info("Recorded payment %s (%s)", external_payment_id, payment.amount)
        return payment

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def existing_commission_count(self, payment_id: UUID) -> int:
        return self.session.scalar(
            select(func.count()).select_from(Commission).where(Commission.payment_id == payment_id)
        ) or 0

    def settle(
        self,
        payment: Payment,
        *,
        reprocess: bool = False,
        now: datetime | None = None,
    ) -> SettlementResult:
        """Settle a payment into commissions.

        Raises:
            MissingPlanConfigError: If the plan or its level configuration
                is missing. Nothing is written in that case.
        """
        now = now or utcnow()

        if payment.amount <= 0:
            payment.commission_processed = True
            payment.commission_exempt = True
            payment.commission_processed_at = now
            payment.commissions_generated = 0
            payment.commission_error = None
            logger.info("Payment %s is zero-amount; exempt", payment.external_payment_id)
            return SettlementResult(payment_id=payment.id, outcome=SettlementOutcome.EXEMPT)

        if payment.commission_processed and not reprocess:
            return SettlementResult(
                payment_id=payment.id, outcome=SettlementOutcome.ALREADY_SETTLED
            )

        existing = self.existing_commission_count(payment.id)
        if existing:
            self._mark_processed(payment, existing, now)
            return SettlementResult(
                payment_id=payment.id, outcome=SettlementOutcome.COMMISSIONS_FOUND
            )

        self._resolve_plan(payment)
        configs = self._level_configs(payment)
        chain = self.chain_resolver.resolve(payment.user_id, payment.affiliate_id)
        if not chain:
            logger.info("Payment %s has no referral chain", payment.external_payment_id)

        rows = self._build_commissions(payment, chain, configs)

        try:
            with self.session.begin_nested():
                self.session.add_all(rows)
        except IntegrityError:
            # Another writer settled this payment between the check and the insert
            logger.info(
                "Commissions for payment %s were written concurrently",
                payment.external_payment_id,
            )
            self._mark_processed(payment, self.existing_commission_count(payment.id), now)
            return SettlementResult(
                payment_id=payment.id, outcome=SettlementOutcome.COMMISSIONS_FOUND
            )

        self._mark_processed(payment, len(rows), now)
        logger.info(
            "Settled payment %s into %d commission(s)",
            payment.external_payment_id,
            len(rows),
        )
        return SettlementResult(
            payment_id=payment.id,
            outcome=SettlementOutcome.SETTLED,
            commissions_created=len(rows),
            commission_ids=[row.id for row in rows],
        )

    def _mark_processed(self, payment: Payment, count: int, now: datetime) -> None:
        payment.commission_processed = True
        payment.commission_processed_at = now
        payment.commissions_generated = count
        payment.commission_error = None

    def _resolve_plan(self, payment: Payment) -> None:
        """Fill in a missing plan from the price or the subscription.

        Runs on every attempt so a mapping added after the first failure is
        picked up on reprocess.
        """
        if payment.plan_id is not None and self.session.get(Plan, payment.plan_id) is not None:
            return

        plan_id = plan_for_price(self.session, payment.external_price_id, payment.environment)
        if plan_id is None:
            subscription = None
            if payment.subscription_id is not None:
                subscription = self.session.get(Subscription, payment.subscription_id)
            elif payment.external_subscription_id:
                subscription = self.session.scalar(
                    select(Subscription).where(
                        Subscription.external_subscription_id
                        == payment.external_subscription_id
                    )
                )
                if subscription is not None:
                    payment.subscription_id = subscription.id
            if subscription is not None:
                plan_id = subscription.plan_id

        if plan_id is not None and plan_id != payment.plan_id:
            logger.info(
                "Resolved plan %s for payment %s", plan_id, payment.external_payment_id
            )
            payment.plan_id = plan_id

    def _level_configs(self, payment: Payment) -> list[PlanCommissionLevel]:
        if payment.plan_id is None or self.session.get(Plan, payment.plan_id) is None:
            raise MissingPlanConfigError(
                f"missing plan mapping for payment {payment.external_payment_id}"
            )
        configs = list(
            self.session.scalars(
                select(PlanCommissionLevel).where(
                    PlanCommissionLevel.plan_id == payment.plan_id,
                    PlanCommissionLevel.is_active.is_(True),
                )
            )
        )
        if not configs:
            raise MissingPlanConfigError(
                f"missing plan mapping: plan {payment.plan_id} has no active commission levels"
            )
        return configs

    def affiliate_tier(self, affiliate_id: UUID) -> str:
        """``pro`` when the affiliate holds an entitled paid subscription."""
        paid = self.session.scalar(
            select(func.count())
            .select_from(Subscription)
            .join(Plan, Plan.id == Subscription.plan_id)
            .where(
                Subscription.user_id == affiliate_id,
                Subscription.status.in_(
                    [s.value for s in SubscriptionStateMachine.ENTITLED]
                ),
                Plan.is_free.is_(False),
            )
        )
        return AffiliateTier.PRO.value if paid else AffiliateTier.FREE.value

    def _build_commissions(
        self,
        payment: Payment,
        chain: list[ChainLink],
        configs: list[PlanCommissionLevel],
    ) -> list[Commission]:
        available_date = available_date_for(payment.payment_date, self.maturation_days())
        commission_type = commission_type_for(payment.billing_reason)

        rows: list[Commission] = []
        for link in chain:
            tier = self.affiliate_tier(link.affiliate_id)
            config = select_level_config(configs, link.level, tier)
            if config is None or not config.percentage:
                logger.info(
                    "No commission configured for level %d (%s) on plan %s; skipping",
                    link.level,
                    tier,
                    payment.plan_id,
                )
                continue
            rows.append(
                Commission(
                    id=uuid4(),
                    affiliate_id=link.affiliate_id,
                    payment_id=payment.id,
                    subscription_id=payment.subscription_id,
                    user_id=payment.user_id,
                    product_id=payment.product_id,
                    commission_type=commission_type,
                    level=link.level,
                    percentage=config.percentage,
                    amount=commission_amount(payment.amount, config.percentage),
                    status=CommissionStatus.PENDING.value,
                    payment_date=payment.payment_date,
                    available_date=available_date,
                    reference_month=reference_month(payment.payment_date),
                )
            )
        return rows
