"""Domain intents derived from raw processor events.

Every inbound event maps to exactly one intent. Intents are:
- Immutable (frozen dataclasses)
- A closed set (``DomainIntent`` union)
- Carriers of the correlation metadata extracted from the payload
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union
from uuid import UUID


class IntentKind(str, Enum):
    """Intent tags."""

    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    INVOICE_PAID = "invoice_paid"
    INVOICE_PAYMENT_FAILED = "invoice_payment_failed"
    PAYMENT_METHOD_ATTACHED = "payment_method_attached"
    CHECKOUT_COMPLETED = "checkout_completed"
    UNHANDLED = "unhandled"


@dataclass(frozen=True)
class Correlation:
    """Correlation metadata carried by an event.

    Every field is optional: absence is handled by the consumer of the
    intent, never by the classifier.
    """

    user_id: UUID | None = None
    plan_id: UUID | None = None
    product_id: UUID | None = None
    affiliate_id: UUID | None = None
    email: str | None = None
    external_subscription_id: str | None = None


@dataclass(frozen=True)
class Intent:
    """Base class for all intents."""

    event_id: str
    event_type: str
    object: dict[str, Any] = field(default_factory=dict)
    correlation: Correlation = field(default_factory=Correlation)

    kind = IntentKind.UNHANDLED

    @property
    def external_subscription_id(self) -> str | None:
        """Processor subscription id referenced by the event, if any."""
        if self.object.get("object") == "subscription":
            return self.object.get("id")
        return self.correlation.external_subscription_id or object_id(
            self.object.get("subscription")
        )

    @property
    def cancellation_details(self) -> dict[str, Any] | None:
        """``{reason, comment, feedback}`` when the processor supplied any."""
        details = self.object.get("cancellation_details")
        if not isinstance(details, dict):
            return None
        triple = {key: details.get(key) for key in ("reason", "comment", "feedback")}
        if not any(triple.values()):
            return None
        return triple


def object_id(value: Any) -> str | None:
    """Expanded objects carry their id under ``id``; collapsed ones are the id."""
    if isinstance(value, dict):
        return value.get("id")
    if isinstance(value, str) and value:
        return value
    return None


@dataclass(frozen=True)
class SubscriptionCreated(Intent):
    kind = IntentKind.SUBSCRIPTION_CREATED


@dataclass(frozen=True)
class SubscriptionUpdated(Intent):
    kind = IntentKind.SUBSCRIPTION_UPDATED


@dataclass(frozen=True)
class SubscriptionCanceled(Intent):
    kind = IntentKind.SUBSCRIPTION_CANCELED


@dataclass(frozen=True)
class InvoicePaid(Intent):
    kind = IntentKind.INVOICE_PAID

    @property
    def price_id(self) -> str | None:
        """Price of the first invoice line."""
        return invoice_price_id(self.object)


@dataclass(frozen=True)
class InvoicePaymentFailed(Intent):
    kind = IntentKind.INVOICE_PAYMENT_FAILED


@dataclass(frozen=True)
class PaymentMethodAttached(Intent):
    kind = IntentKind.PAYMENT_METHOD_ATTACHED


@dataclass(frozen=True)
class CheckoutCompleted(Intent):
    kind = IntentKind.CHECKOUT_COMPLETED


@dataclass(frozen=True)
class Unhandled(Intent):
    kind = IntentKind.UNHANDLED


DomainIntent = Union[
    SubscriptionCreated,
    SubscriptionUpdated,
    SubscriptionCanceled,
    InvoicePaid,
    InvoicePaymentFailed,
    PaymentMethodAttached,
    CheckoutCompleted,
    Unhandled,
]


def invoice_price_id(invoice: dict[str, Any]) -> str | None:
    """Price id of the first line of an invoice, across payload versions."""
    lines = invoice.get("lines")
    data = lines.get("data") if isinstance(lines, dict) else None
    if not data:
        return None
    line = data[0] if isinstance(data[0], dict) else {}
    price = line.get("price")
    if isinstance(price, dict) and price.get("id"):
        return price["id"]
    pricing = line.get("pricing")
    if isinstance(pricing, dict):
        details = pricing.get("price_details")
        if isinstance(details, dict):
            return details.get("price")
    return None


def subscription_price_id(subscription: dict[str, Any]) -> str | None:
    """Price id of the first subscription item."""
    items = subscription.get("items")
    data = items.get("data") if isinstance(items, dict) else None
    if not data or not isinstance(data[0], dict):
        return None
    price = data[0].get("price")
    if isinstance(price, dict):
        return price.get("id")
    return None
