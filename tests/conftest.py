"""Pytest fixtures for commission engine tests."""

from __future__ import annotations

import json
import time
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import pytest
import stripe
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from commission_engine.config import Settings
from commission_engine.models import (
    AffiliateProfile,
    AppSetting,
    Base,
    Commission,
    Payment,
    Plan,
    PlanCommissionLevel,
    PlanIntegration,
    SubAffiliate,
    Subscription,
)

# In-memory SQLite shared across threads (FastAPI runs sync routes in a pool)
TEST_DATABASE_URL = "sqlite://"
WEBHOOK_SECRET = "whsec_test_secret"
PAYMENT_DATE = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def _enable_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy own transaction boundaries so SAVEPOINT works on pysqlite."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Create a fresh test database per test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    _enable_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, class_=Session, expire_on_commit=False, autoflush=False)


@pytest.fixture
def session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    with session_factory() as session:
        yield session
        session.rollback()


@pytest.fixture
def settings() -> Settings:
    """Settings for the test environment."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        payment_environment="test",
        webhook_secret_test=WEBHOOK_SECRET,
        webhook_secret_production="whsec_production_secret",
        signature_tolerance_seconds=300,
        commission_maturation_days=7,
        max_commission_depth=5,
        reprocess_batch_limit=100,
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
    )


@pytest.fixture
def data() -> CommissionTestData:
    return CommissionTestData()


# =============================================================================
# Processor payload builders
# =============================================================================


def make_event(
    event_type: str, obj: dict[str, Any], event_id: str | None = None
) -> dict[str, Any]:
    """Wrap an object in a processor event envelope."""
    return {
        "id": event_id or f"evt_{uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def invoice_object(
    *,
    invoice_id: str | None = None,
    amount_paid: int = 10000,
    subscription_id: str | None = "sub_123",
    billing_reason: str = "subscription_create",
    metadata: dict[str, Any] | None = None,
    legacy_metadata: bool = False,
    paid_at: datetime = PAYMENT_DATE,
    price_id: str | None = None,
) -> dict[str, Any]:
    """A paid invoice with correlation metadata under the subscription details."""
    obj: dict[str, Any] = {
        "id": invoice_id or f"in_{uuid4().hex[:16]}",
        "object": "invoice",
        "amount_paid": amount_paid,
        "currency": "brl",
        "billing_reason": billing_reason,
        "subscription": subscription_id,
        "customer": "cus_123",
        "customer_email": "payer@example.com",
        "status_transitions": {"paid_at": int(paid_at.timestamp())},
        "lines": {"data": [{"price": {"id": price_id}}] if price_id else []},
    }
    if metadata is not None:
        if legacy_metadata:
            obj["parent"] = {"subscription_details": {"metadata": metadata}}
        else:
            obj["subscription_details"] = {"metadata": metadata}
    return obj


def subscription_object(
    *,
    subscription_id: str = "sub_123",
    status: str = "active",
    metadata: dict[str, Any] | None = None,
    price_id: str | None = None,
    **fields: Any,
) -> dict[str, Any]:
    obj: dict[str, Any] = {
        "id": subscription_id,
        "object": "subscription",
        "status": status,
        "customer": "cus_123",
        "metadata": metadata or {},
        **fields,
    }
    if price_id:
        obj["items"] = {"data": [{"price": {"id": price_id}}]}
    return obj


def build_signature_header(secret: str, payload: bytes, timestamp: int | None = None) -> str:
    """A processor-style ``t=...,v1=...`` header for ``payload``."""
    ts = int(time.time()) if timestamp is None else timestamp
    signature = stripe.WebhookSignature._compute_signature(f"{ts}.{payload.decode()}", secret)
    return f"t={ts},{stripe.WebhookSignature.EXPECTED_SCHEME}={signature}"


def signed_body(
    payload: dict[str, Any], secret: str = WEBHOOK_SECRET, timestamp: int | None = None
) -> tuple[bytes, str]:
    """Serialized body and a valid signature header for it."""
    body = json.dumps(payload).encode()
    return body, build_signature_header(secret, body, timestamp)


# =============================================================================
# Database test data
# =============================================================================


class CommissionTestData:
    """Test data generator for commission engine tests."""

    def create_affiliate(self, db: Session, name: str = "Affiliate") -> UUID:
        """Create an affiliate profile."""
        affiliate = AffiliateProfile(id=uuid4(), name=name)
        db.add(affiliate)
        db.flush()
        return affiliate.id

    def create_plan(
        self,
        db: Session,
        levels: dict[int, str] | None = None,
        *,
        tier_levels: dict[tuple[int, str], str] | None = None,
        is_free: bool = False,
        price_id: str | None = None,
        environment: str = "test",
    ) -> UUID:
        """Create a plan with tier-less level percentages (percent units)."""
        plan = Plan(id=uuid4(), name="Pro", price=Decimal("100.00"), is_free=is_free)
        db.add(plan)
        db.flush()
        for level, pct in (levels if levels is not None else {1: "10", 2: "5", 3: "2"}).items():
            db.add(
                PlanCommissionLevel(
                    id=uuid4(), plan_id=plan.id, level=level, percentage=Decimal(pct)
                )
            )
        for (level, tier), pct in (tier_levels or {}).items():
            db.add(
                PlanCommissionLevel(
                    id=uuid4(),
                    plan_id=plan.id,
                    level=level,
                    percentage=Decimal(pct),
                    affiliate_tier=tier,
                )
            )
        if price_id:
            db.add(
                PlanIntegration(
                    id=uuid4(),
                    plan_id=plan.id,
                    external_price_id=price_id,
                    environment=environment,
                )
            )
        db.flush()
        return plan.id

    def link(self, db: Session, parent_id: UUID, sub_id: UUID, level: int = 1) -> None:
        """Record that ``parent_id`` referred ``sub_id`` at ``level``."""
        db.add(
            SubAffiliate(
                id=uuid4(), parent_affiliate_id=parent_id, sub_affiliate_id=sub_id, level=level
            )
        )
        db.flush()

    def create_chain(self, db: Session, length: int) -> tuple[UUID, list[UUID]]:
        """Create a payer with ``length`` ancestors linked level by level.

        Returns (payer_id, ancestors nearest first).
        """
        payer = self.create_affiliate(db, "Payer")
        ancestors = [self.create_affiliate(db, f"Ancestor {i + 1}") for i in range(length)]
        child = payer
        for ancestor in ancestors:
            self.link(db, ancestor, child)
            child = ancestor
        return payer, ancestors

    def create_subscription(
        self,
        db: Session,
        user_id: UUID,
        plan_id: UUID,
        *,
        external_id: str | None = None,
        status: str = "active",
        external_price_id: str | None = None,
    ) -> Subscription:
        subscription = Subscription(
            id=uuid4(),
            user_id=user_id,
            plan_id=plan_id,
            external_subscription_id=external_id or f"sub_{uuid4().hex[:12]}",
            external_customer_id="cus_123",
            external_price_id=external_price_id,
            status=status,
            environment="test",
        )
        db.add(subscription)
        db.flush()
        return subscription

    def create_payment(
        self,
        db: Session,
        *,
        user_id: UUID | None,
        plan_id: UUID | None,
        amount: str = "100.00",
        affiliate_id: UUID | None = None,
        billing_reason: str = "subscription_create",
        commission_processed: bool = False,
        commission_error: str | None = None,
        payment_date: datetime = PAYMENT_DATE,
        created_at: datetime | None = None,
    ) -> Payment:
        payment = Payment(
            id=uuid4(),
            external_payment_id=f"in_{uuid4().hex[:16]}",
            user_id=user_id,
            plan_id=plan_id,
            affiliate_id=affiliate_id,
            amount=Decimal(amount),
            billing_reason=billing_reason,
            payment_date=payment_date,
            commission_processed=commission_processed,
            commission_error=commission_error,
            environment="test",
        )
        if created_at is not None:
            payment.created_at = created_at
        db.add(payment)
        db.flush()
        return payment

    def create_commission(
        self,
        db: Session,
        affiliate_id: UUID,
        *,
        amount: str = "10.00",
        status: str = "pending",
        available_date: datetime | None = None,
        payment: Payment | None = None,
        level: int = 1,
    ) -> Commission:
        """Create a commission (with its own payment unless one is given)."""
        if payment is None:
            payment = self.create_payment(db, user_id=uuid4(), plan_id=None, commission_processed=True)
        commission = Commission(
            id=uuid4(),
            affiliate_id=affiliate_id,
            payment_id=payment.id,
            commission_type="first_sale",
            level=level,
            percentage=Decimal("10"),
            amount=Decimal(amount),
            status=status,
            payment_date=payment.payment_date,
            available_date=available_date or payment.payment_date + timedelta(days=7),
        )
        db.add(commission)
        db.flush()
        return commission

    def set_app_setting(self, db: Session, key: str, value: str) -> None:
        db.merge(AppSetting(key=key, value=value))
        db.flush()
