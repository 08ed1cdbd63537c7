"""Event classification and correlation metadata extraction.

Correlation metadata lives in different places depending on the event
family. Invoice-shaped events nest it under the subscription details of the
invoice (with a legacy alternate nesting); everything else carries it at
the object root. Newer invoices also move the subscription reference under
the subscription details. Extraction is an ordered list of locations per
family; each field takes the first non-empty value found.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID

from commission_engine.ingestion.intents import (
    CheckoutCompleted,
    Correlation,
    DomainIntent,
    InvoicePaid,
    InvoicePaymentFailed,
    PaymentMethodAttached,
    SubscriptionCanceled,
    SubscriptionCreated,
    SubscriptionUpdated,
    Unhandled,
    object_id,
)

logger = logging.getLogger(__name__)


class EventFamily(str, Enum):
    """Payload shape families."""

    INVOICE = "invoice"
    SUBSCRIPTION = "subscription"
    CHECKOUT = "checkout"
    PAYMENT_METHOD = "payment_method"
    OTHER = "other"


class MetadataLocation(Enum):
    """Containers (relative to ``data.object``) that may carry correlation data."""

    SUBSCRIPTION_DETAILS = ("subscription_details",)
    PARENT_SUBSCRIPTION_DETAILS = ("parent", "subscription_details")
    ROOT = ()


@dataclass(frozen=True)
class ExtractionStrategy:
    """Where a family keeps its metadata and its subscription reference."""

    metadata: tuple[MetadataLocation, ...]
    subscription: tuple[MetadataLocation, ...] = (MetadataLocation.ROOT,)


EXTRACTION_STRATEGIES: dict[EventFamily, ExtractionStrategy] = {
    EventFamily.INVOICE: ExtractionStrategy(
        metadata=(
            MetadataLocation.SUBSCRIPTION_DETAILS,
            MetadataLocation.PARENT_SUBSCRIPTION_DETAILS,
            MetadataLocation.ROOT,
        ),
        # Newer invoices drop the root ``subscription`` field
        subscription=(
            MetadataLocation.ROOT,
            MetadataLocation.PARENT_SUBSCRIPTION_DETAILS,
            MetadataLocation.SUBSCRIPTION_DETAILS,
        ),
    ),
    EventFamily.SUBSCRIPTION: ExtractionStrategy(metadata=(MetadataLocation.ROOT,)),
    EventFamily.CHECKOUT: ExtractionStrategy(metadata=(MetadataLocation.ROOT,)),
    EventFamily.PAYMENT_METHOD: ExtractionStrategy(metadata=(MetadataLocation.ROOT,)),
    EventFamily.OTHER: ExtractionStrategy(metadata=(MetadataLocation.ROOT,)),
}

# event type -> (intent class, payload family)
EVENT_TYPES: dict[str, tuple[type, EventFamily]] = {
    "customer.subscription.created": (SubscriptionCreated, EventFamily.SUBSCRIPTION),
    "customer.subscription.updated": (SubscriptionUpdated, EventFamily.SUBSCRIPTION),
    "customer.subscription.deleted": (SubscriptionCanceled, EventFamily.SUBSCRIPTION),
    "invoice.paid": (InvoicePaid, EventFamily.INVOICE),
    "invoice.payment_succeeded": (InvoicePaid, EventFamily.INVOICE),
    "invoice.payment_failed": (InvoicePaymentFailed, EventFamily.INVOICE),
    "payment_method.attached": (PaymentMethodAttached, EventFamily.PAYMENT_METHOD),
    "checkout.session.completed": (CheckoutCompleted, EventFamily.CHECKOUT),
}

EMAIL_PATHS: tuple[tuple[str, ...], ...] = (
    ("customer_email",),
    ("customer_details", "email"),
    ("billing_details", "email"),
    ("email",),
)


def family_for(event_type: str) -> EventFamily:
    """Payload family of an event type (unknown types fall back by prefix)."""
    if event_type in EVENT_TYPES:
        return EVENT_TYPES[event_type][1]
    if event_type.startswith("invoice."):
        return EventFamily.INVOICE
    if event_type.startswith("customer.subscription."):
        return EventFamily.SUBSCRIPTION
    return EventFamily.OTHER


def _dig(obj: Any, path: tuple[str, ...]) -> Any:
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def _parse_uuid(value: Any) -> UUID | None:
    if value is None or value == "":
        return None
    try:
        return UUID(str(value))
    except ValueError:
        logger.warning("Ignoring non-UUID correlation value %r", value)
        return None


def find_metadata(obj: dict[str, Any], family: EventFamily, key: str) -> Any:
    """First non-empty metadata value for ``key`` across the family's locations."""
    for location in EXTRACTION_STRATEGIES[family].metadata:
        metadata = _dig(obj, location.value + ("metadata",))
        if isinstance(metadata, dict):
            value = metadata.get(key)
            if value not in (None, ""):
                return value
    return None


def find_subscription_id(obj: dict[str, Any], family: EventFamily) -> str | None:
    """Processor subscription id, expanded or collapsed, from the first location holding one."""
    for location in EXTRACTION_STRATEGIES[family].subscription:
        found = object_id(_dig(obj, location.value + ("subscription",)))
        if found:
            return found
    return None


def extract_correlation(obj: dict[str, Any], family: EventFamily) -> Correlation:
    """Extract correlation metadata from an event object."""
    email = None
    for path in EMAIL_PATHS:
        value = _dig(obj, path)
        if isinstance(value, str) and value:
            email = value
            break
    if email is None:
        email = find_metadata(obj, family, "email")

    return Correlation(
        user_id=_parse_uuid(find_metadata(obj, family, "user_id")),
        plan_id=_parse_uuid(find_metadata(obj, family, "plan_id")),
        product_id=_parse_uuid(find_metadata(obj, family, "product_id")),
        affiliate_id=_parse_uuid(find_metadata(obj, family, "affiliate_id")),
        email=email,
        external_subscription_id=find_subscription_id(obj, family),
    )


def classify(event: dict[str, Any]) -> DomainIntent:
    """Map a raw processor event to its domain intent.

    ``event`` is the decoded webhook body (``id``, ``type``, ``data.object``).
    Unknown event types become ``Unhandled``.
    """
    event_id = str(event["id"])
    event_type = str(event["type"])
    obj = _dig(event, ("data", "object"))
    if not isinstance(obj, dict):
        obj = {}

    family = family_for(event_type)
    correlation = extract_correlation(obj, family)

    intent_cls, _ = EVENT_TYPES.get(event_type, (Unhandled, family))
    if intent_cls is Unhandled:
        logger.info("Unhandled event type %s (%s)", event_type, event_id)

    return intent_cls(
        event_id=event_id,
        event_type=event_type,
        object=obj,
        correlation=correlation,
    )
