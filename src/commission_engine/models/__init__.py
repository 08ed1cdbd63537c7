"""ORM models for the commission engine."""

from commission_engine.models.affiliates import AffiliateProfile, SubAffiliate
from commission_engine.models.base import Base, TimestampMixin, utcnow
from commission_engine.models.billing import (
    SUBSCRIPTION_STATUSES,
    AppSetting,
    Plan,
    PlanCommissionLevel,
    PlanIntegration,
    Subscription,
)
from commission_engine.models.commissions import Commission, Payment, Withdrawal
from commission_engine.models.events import PaymentEvent

__all__ = [
    "AffiliateProfile",
    "AppSetting",
    "Base",
    "Commission",
    "Payment",
    "PaymentEvent",
    "Plan",
    "PlanCommissionLevel",
    "PlanIntegration",
    "SUBSCRIPTION_STATUSES",
    "SubAffiliate",
    "Subscription",
    "TimestampMixin",
    "Withdrawal",
    "utcnow",
]
