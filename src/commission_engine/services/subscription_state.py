"""Subscription aggregate: status transitions and event application."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from commission_engine.database import insert_if_absent
from commission_engine.errors import InvalidTransitionError
from commission_engine.ingestion.intents import (
    CheckoutCompleted,
    InvoicePaymentFailed,
    PaymentMethodAttached,
    SubscriptionCanceled,
    SubscriptionCreated,
    SubscriptionUpdated,
    subscription_price_id,
)
from commission_engine.models import Plan, PlanIntegration, Subscription, utcnow

logger = logging.getLogger(__name__)


class SubscriptionStatus(str, Enum):
    """Subscription status values."""

    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    PAUSED = "paused"
    CANCELED = "canceled"


_LIVE = [
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.UNPAID,
    SubscriptionStatus.PAUSED,
    SubscriptionStatus.CANCELED,
]


class SubscriptionStateMachine:
    """State machine for subscription status transitions.

    The processor owns the lifecycle, so almost every move between live
    statuses is accepted. The exceptions:
    - canceled is terminal
    - incomplete_expired only follows incomplete and leads nowhere but canceled
    - nothing returns to incomplete once the first payment settled
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        SubscriptionStatus.INCOMPLETE: [
            SubscriptionStatus.INCOMPLETE_EXPIRED,
            *_LIVE,
        ],
        SubscriptionStatus.INCOMPLETE_EXPIRED: [SubscriptionStatus.CANCELED],
        SubscriptionStatus.TRIALING: _LIVE,
        SubscriptionStatus.ACTIVE: _LIVE,
        SubscriptionStatus.PAST_DUE: _LIVE,
        SubscriptionStatus.UNPAID: _LIVE,
        SubscriptionStatus.PAUSED: _LIVE,
        SubscriptionStatus.CANCELED: [],  # Terminal state
    }

    # Statuses that grant access (and make the holder a paying customer)
    ENTITLED = {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid. Same-status updates are no-ops."""
        if from_status == to_status:
            return True
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if to_status not in {s.value for s in SubscriptionStatus}:
            raise InvalidTransitionError(from_status, to_status, "unknown status")
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def is_entitled(cls, status: str) -> bool:
        return status in cls.ENTITLED


def from_unix(value: Any) -> datetime | None:
    """Unix seconds to an aware UTC datetime; zero and absent are None."""
    if value in (None, "", 0):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def plan_for_price(session: Session, price_id: str | None, environment: str) -> UUID | None:
    """Resolve an internal plan id from a processor price id."""
    if not price_id:
        return None
    return session.scalar(
        select(PlanIntegration.plan_id).where(
            PlanIntegration.external_price_id == price_id,
            PlanIntegration.environment == environment,
            PlanIntegration.is_active.is_(True),
        )
    )


def _customer_id(obj: dict[str, Any]) -> str | None:
    customer = obj.get("customer")
    if isinstance(customer, dict):
        return customer.get("id")
    return customer or None


class SubscriptionService:
    """Applies subscription-related intents to the subscription table.

    Every handler is idempotent: replaying an intent yields the same row.
    Missing correlation data is logged and the intent skipped; it is never
    an error.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_by_external_id(self, external_subscription_id: str) -> Subscription | None:
        return self.session.scalar(
            select(Subscription).where(
                Subscription.external_subscription_id == external_subscription_id
            )
        )

    def _plan_exists(self, plan_id: UUID) -> bool:
        return self.session.get(Plan, plan_id) is not None

    def _present_fields(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Subscription columns carried by a subscription object.

        Only keys present in the payload are returned so a partial update
        never nulls stored values.
        """
        fields: dict[str, Any] = {}
        if obj.get("status"):
            fields["status"] = obj["status"]
        for key, column in (
            ("current_period_start", "current_period_start"),
            ("current_period_end", "current_period_end"),
            ("trial_end", "trial_end"),
            ("cancel_at", "cancel_at"),
            ("canceled_at", "cancelled_at"),
        ):
            if key in obj and obj[key] is not None:
                fields[column] = from_unix(obj[key])
        if "cancel_at_period_end" in obj and obj["cancel_at_period_end"] is not None:
            fields["cancel_at_period_end"] = bool(obj["cancel_at_period_end"])
        customer_id = _customer_id(obj)
        if customer_id:
            fields["external_customer_id"] = customer_id
        price_id = subscription_price_id(obj)
        if price_id:
            fields["external_price_id"] = price_id
        return fields

    def _merge(self, subscription: Subscription, fields: dict[str, Any]) -> None:
        status = fields.pop("status", None)
        if status is not None and status != subscription.status:
            try:
                SubscriptionStateMachine.validate_transition(subscription.status, status)
            except InvalidTransitionError as e:
                logger.warning(
                    "Ignoring status change for subscription %s: %s",
                    subscription.external_subscription_id,
                    e,
                )
            else:
                subscription.status = status
        for column, value in fields.items():
            setattr(subscription, column, value)

    def apply_created(self, intent: SubscriptionCreated, environment: str) -> Subscription | None:
        """Create the subscription row, or merge into an existing one."""
        return self._upsert(intent, environment)

    def _upsert(
        self, intent: SubscriptionCreated | SubscriptionUpdated, environment: str
    ) -> Subscription | None:
        obj = intent.object
        external_id = intent.external_subscription_id
        user_id = intent.correlation.user_id
        plan_id = intent.correlation.plan_id or plan_for_price(
            self.session, subscription_price_id(obj), environment
        )

        if not external_id or user_id is None or plan_id is None:
            logger.warning(
                "Skipping %s: missing subscription id, user_id or plan_id", intent.event_id
            )
            return None
        if not self._plan_exists(plan_id):
            logger.warning("Skipping %s: plan %s does not exist", intent.event_id, plan_id)
            return None

        fields = self._present_fields(obj)
        values = {
            "user_id": user_id,
            "plan_id": plan_id,
            "external_subscription_id": external_id,
            "status": fields.get("status", SubscriptionStatus.INCOMPLETE.value),
            "environment": environment,
            **{k: v for k, v in fields.items() if k != "status"},
        }
        created = insert_if_absent(
            self.session, Subscription, values, index_elements=["external_subscription_id"]
        )
        subscription = self.get_by_external_id(external_id)
        if not created and subscription is not None:
            self._merge(subscription, fields)
        logger.info(
            "Subscription %s %s (status=%s)",
            external_id,
            "created" if created else "merged",
            subscription.status if subscription else None,
        )
        return subscription

    def apply_updated(self, intent: SubscriptionUpdated, environment: str) -> Subscription | None:
        """Merge present fields and detect plan changes."""
        external_id = intent.external_subscription_id
        subscription = self.get_by_external_id(external_id) if external_id else None
        if subscription is None:
            if external_id and intent.correlation.user_id is not None:
                # Arrived before its created event; the payload is the full object
                logger.info(
                    "Subscription %s not seen yet; creating it from %s",
                    external_id,
                    intent.event_id,
                )
                subscription = self._upsert(intent, environment)
                if subscription is not None and intent.cancellation_details:
                    subscription.cancellation_details = intent.cancellation_details
                return subscription
            logger.warning(
                "Skipping %s: unknown subscription %s", intent.event_id, external_id
            )
            return None

        fields = self._present_fields(intent.object)
        price_id = fields.get("external_price_id")
        if price_id and price_id != subscription.external_price_id:
            self._apply_plan_change(subscription, price_id, environment)
        self._merge(subscription, fields)

        details = intent.cancellation_details
        if details:
            subscription.cancellation_details = details
        return subscription

    def _apply_plan_change(
        self, subscription: Subscription, price_id: str, environment: str
    ) -> None:
        current_prices = set(
            self.session.scalars(
                select(PlanIntegration.external_price_id).where(
                    PlanIntegration.plan_id == subscription.plan_id,
                    PlanIntegration.is_active.is_(True),
                )
            )
        )
        if price_id in current_prices:
            return

        new_plan_id = plan_for_price(self.session, price_id, environment)
        if new_plan_id is None:
            logger.warning(
                "Plan change on %s to price %s has no plan mapping in %s; plan unchanged",
                subscription.external_subscription_id,
                price_id,
                environment,
            )
            return
        logger.info(
            "Subscription %s changed plan %s -> %s",
            subscription.external_subscription_id,
            subscription.plan_id,
            new_plan_id,
        )
        subscription.plan_id = new_plan_id

    def apply_canceled(self, intent: SubscriptionCanceled) -> Subscription | None:
        """Mark the subscription canceled."""
        external_id = intent.external_subscription_id
        subscription = self.get_by_external_id(external_id) if external_id else None
        if subscription is None:
            logger.warning(
                "Skipping %s: unknown subscription %s", intent.event_id, external_id
            )
            return None

        obj = intent.object
        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.cancelled_at = (
            from_unix(obj.get("canceled_at")) or from_unix(obj.get("ended_at")) or utcnow()
        )
        if intent.cancellation_details:
            subscription.cancellation_details = intent.cancellation_details
        return subscription

    def apply_checkout_completed(
        self, intent: CheckoutCompleted, environment: str
    ) -> Subscription | None:
        """Create the subscription from a completed checkout if absent."""
        obj = intent.object
        if obj.get("mode") not in (None, "subscription"):
            logger.info("Checkout %s is not a subscription checkout", intent.event_id)
            return None

        external_id = intent.external_subscription_id
        user_id = intent.correlation.user_id
        plan_id = intent.correlation.plan_id
        if not external_id or user_id is None or plan_id is None:
            logger.warning(
                "Skipping %s: missing subscription id, user_id or plan_id", intent.event_id
            )
            return None
        if not self._plan_exists(plan_id):
            logger.warning("Skipping %s: plan %s does not exist", intent.event_id, plan_id)
            return None

        paid = obj.get("payment_status") in ("paid", "no_payment_required")
        insert_if_absent(
            self.session,
            Subscription,
            {
                "user_id": user_id,
                "plan_id": plan_id,
                "external_subscription_id": external_id,
                "external_customer_id": _customer_id(obj),
                "status": (
                    SubscriptionStatus.ACTIVE.value if paid else SubscriptionStatus.INCOMPLETE.value
                ),
                "environment": environment,
            },
            index_elements=["external_subscription_id"],
        )
        return self.get_by_external_id(external_id)

    def apply_payment_failed(self, intent: InvoicePaymentFailed) -> Subscription | None:
        """Move an entitled subscription to past_due."""
        external_id = intent.external_subscription_id
        subscription = self.get_by_external_id(external_id) if external_id else None
        if subscription is None:
            logger.warning(
                "Payment failure %s for unknown subscription %s", intent.event_id, external_id
            )
            return None
        if SubscriptionStateMachine.is_entitled(subscription.status):
            subscription.status = SubscriptionStatus.PAST_DUE.value
            logger.info("Subscription %s is past due", external_id)
        return subscription

    def apply_payment_method_attached(self, intent: PaymentMethodAttached) -> int:
        """Store card details on the customer's subscriptions.

        Returns the number of subscriptions updated.
        """
        obj = intent.object
        customer_id = _customer_id(obj)
        card = obj.get("card")
        if not customer_id or not isinstance(card, dict):
            logger.info("Payment method %s carries no card for a customer", intent.event_id)
            return 0

        data = {
            "payment_method_id": obj.get("id"),
            "brand": card.get("brand"),
            "last4": card.get("last4"),
            "exp_month": card.get("exp_month"),
            "exp_year": card.get("exp_year"),
        }
        subscriptions = list(
            self.session.scalars(
                select(Subscription).where(Subscription.external_customer_id == customer_id)
            )
        )
        for subscription in subscriptions:
            subscription.payment_method_data = data
        return len(subscriptions)
