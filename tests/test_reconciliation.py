"""Tests for commission reconciliation."""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from commission_engine.models import Commission
from commission_engine.services.reconciliation import (
    PaymentSnapshot,
    ReconciliationService,
    ReprocessAction,
    ReprocessStatus,
    decide_reprocess_action,
)
from commission_engine.services.settlement import SettlementEngine

from .conftest import PAYMENT_DATE


@pytest.fixture
def reconciliation(session):
    return ReconciliationService(session, SettlementEngine(session))


def commission_count(session, payment_id=None):
    query = select(func.count()).select_from(Commission)
    if payment_id is not None:
        query = query.where(Commission.payment_id == payment_id)
    return session.scalar(query)


class TestDecideReprocessAction:
    """The decision is a pure function of the payment snapshot."""

    def _snapshot(self, **overrides):
        values = {
            "commission_processed": False,
            "commission_exempt": False,
            "amount": Decimal("100.00"),
            "existing_commissions": 0,
        }
        values.update(overrides)
        return PaymentSnapshot(**values)

    def test_processed_payment_is_left_alone(self):
        snapshot = self._snapshot(commission_processed=True, existing_commissions=3)
        assert decide_reprocess_action(snapshot) == ReprocessAction.ALREADY_PROCESSED

    def test_existing_commissions_heal_the_flag(self):
        snapshot = self._snapshot(existing_commissions=2)
        assert decide_reprocess_action(snapshot) == ReprocessAction.HEAL

    def test_unsettled_payment_is_settled(self):
        assert decide_reprocess_action(self._snapshot()) == ReprocessAction.SETTLE


class TestReprocessOne:
    """Each of the four outcomes."""

    def test_already_processed(self, session, data, reconciliation):
        payer, _ = data.create_chain(session, 1)
        payment = data.create_payment(
            session, user_id=payer, plan_id=None, commission_processed=True
        )

        item = reconciliation.reprocess_one(payment.id)

        assert item.status == ReprocessStatus.ALREADY_PROCESSED
        assert commission_count(session, payment.id) == 0

    def test_commissions_found_sets_flag(self, session, data, reconciliation):
        payer, _ = data.create_chain(session, 2)
        plan_id = data.create_plan(session)
        payment = data.create_payment(session, user_id=payer, plan_id=plan_id)
        SettlementEngine(session).settle(payment)
        payment.commission_processed = False
        session.flush()

        item = reconciliation.reprocess_one(payment.id)

        assert item.status == ReprocessStatus.COMMISSIONS_FOUND
        assert item.message == "Commissions already existed; flag updated"
        assert item.commissions_count == 2
        assert payment.commission_processed is True
        assert commission_count(session, payment.id) == 2

    def test_reprocessed_creates_commissions(self, session, data, reconciliation):
        payer, _ = data.create_chain(session, 3)
        plan_id = data.create_plan(session)
        payment = data.create_payment(session, user_id=payer, plan_id=plan_id)

        item = reconciliation.reprocess_one(str(payment.id))

        assert item.status == ReprocessStatus.REPROCESSED
        assert item.message == "3 commission(s) created"
        assert item.commissions_count == 3
        assert payment.commission_processed is True

    def test_error_records_message_and_keeps_flag(self, session, data, reconciliation):
        payer, _ = data.create_chain(session, 1)
        payment = data.create_payment(session, user_id=payer, plan_id=None)

        item = reconciliation.reprocess_one(payment.id)

        assert item.status == ReprocessStatus.ERROR
        assert "missing plan mapping" in item.message
        assert payment.commission_processed is False
        assert payment.commission_error == item.message

    def test_error_recovers_through_subscription_plan(self, session, data, reconciliation):
        payer, _ = data.create_chain(session, 2)
        payment = data.create_payment(session, user_id=payer, plan_id=None)
        payment.external_subscription_id = "sub_late"
        session.flush()

        assert reconciliation.reprocess_one(payment.id).status == ReprocessStatus.ERROR

        plan_id = data.create_plan(session)
        subscription = data.create_subscription(session, payer, plan_id, external_id="sub_late")
        item = reconciliation.reprocess_one(payment.id)

        assert item.status == ReprocessStatus.REPROCESSED
        assert payment.plan_id == plan_id
        assert payment.subscription_id == subscription.id
        assert commission_count(session, payment.id) == 2

    def test_unknown_payment(self, reconciliation):
        item = reconciliation.reprocess_one(uuid4())
        assert item.status == ReprocessStatus.ERROR
        assert item.message == "Payment not found"

    def test_malformed_payment_id(self, reconciliation):
        item = reconciliation.reprocess_one("not-a-uuid")
        assert item.status == ReprocessStatus.ERROR
        assert item.payment_id == "not-a-uuid"

    def test_zero_amount_reported_as_reprocessed(self, session, data, reconciliation):
        payment = data.create_payment(session, user_id=uuid4(), plan_id=None, amount="0")

        item = reconciliation.reprocess_one(payment.id)

        assert item.status == ReprocessStatus.REPROCESSED
        assert payment.commission_exempt is True


class TestReprocessBatch:
    """Batch behaviour: per-item isolation, candidate selection, ordering."""

    def test_failure_in_batch_does_not_affect_siblings(self, session, data, reconciliation):
        payer, _ = data.create_chain(session, 2)
        plan_id = data.create_plan(session)
        payments = [
            data.create_payment(
                session, user_id=payer, plan_id=None if i == 46 else plan_id
            )
            for i in range(100)
        ]

        report = reconciliation.reprocess_many([p.id for p in payments])

        assert report.summary == {
            "total": 100,
            "already_processed": 0,
            "commissions_found": 0,
            "reprocessed": 99,
            "errors": 1,
        }
        assert report.success is False
        failed = payments[46]
        assert report.results[46].status == ReprocessStatus.ERROR
        assert failed.commission_processed is False
        assert failed.commission_error is not None
        assert commission_count(session, failed.id) == 0
        assert commission_count(session) == 99 * 2
        assert all(p.commission_processed for i, p in enumerate(payments) if i != 46)

    def test_running_twice_settles_nothing_new(self, session, data, reconciliation):
        payer, _ = data.create_chain(session, 2)
        plan_id = data.create_plan(session)
        for _ in range(3):
            data.create_payment(session, user_id=payer, plan_id=plan_id)

        first = reconciliation.reprocess_all()
        second = reconciliation.reprocess_all()

        assert first.summary["reprocessed"] == 3
        assert second.summary["total"] == 0
        assert commission_count(session) == 6

    def test_candidates_exclude_processed_errored_and_zero(self, session, data, reconciliation):
        plan_id = data.create_plan(session)
        eligible = data.create_payment(session, user_id=uuid4(), plan_id=plan_id)
        data.create_payment(session, user_id=uuid4(), plan_id=plan_id, commission_processed=True)
        data.create_payment(session, user_id=uuid4(), plan_id=plan_id, commission_error="boom")
        data.create_payment(session, user_id=uuid4(), plan_id=plan_id, amount="0")

        assert reconciliation.pending_payment_ids() == [eligible.id]

    def test_candidates_newest_first_and_limited(self, session, data, reconciliation):
        plan_id = data.create_plan(session)
        created = [
            data.create_payment(
                session,
                user_id=uuid4(),
                plan_id=plan_id,
                created_at=PAYMENT_DATE + timedelta(minutes=i),
            )
            for i in range(5)
        ]

        ids = reconciliation.pending_payment_ids(limit=3)

        assert ids == [created[4].id, created[3].id, created[2].id]

    def test_explicit_ids_include_errored_payments(self, session, data, reconciliation):
        payer, _ = data.create_chain(session, 1)
        plan_id = data.create_plan(session)
        payment = data.create_payment(
            session, user_id=payer, plan_id=plan_id, commission_error="earlier failure"
        )

        report = reconciliation.reprocess_many([payment.id])

        assert report.success is True
        assert payment.commission_processed is True
        assert payment.commission_error is None

    def test_report_dict(self, session, data, reconciliation):
        payment = data.create_payment(
            session, user_id=uuid4(), plan_id=None, commission_processed=True
        )

        report = reconciliation.reprocess_many([payment.id]).to_dict()

        assert report["summary"]["already_processed"] == 1
        assert report["results"][0]["status"] == "already_processed"
        assert report["results"][0]["payment_id"] == str(payment.id)
