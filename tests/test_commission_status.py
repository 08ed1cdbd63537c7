"""Tests for read-time commission status and balances."""

from datetime import timedelta
from decimal import Decimal

from commission_engine.services.commission_status import (
    CommissionQueryService,
    available_date_for,
    effective_status,
    reference_month,
)
from commission_engine.services.withdrawals import WithdrawalService

from .conftest import PAYMENT_DATE

NOW = PAYMENT_DATE + timedelta(days=10)


class TestEffectiveStatus:
    def test_pending_matures_on_available_date(self):
        available = available_date_for(PAYMENT_DATE, 7)
        assert effective_status("pending", available, available - timedelta(seconds=1)) == "pending"
        assert effective_status("pending", available, available) == "available"

    def test_terminal_statuses_unchanged(self):
        past = PAYMENT_DATE
        for status in ("available", "withdrawn", "cancelled"):
            assert effective_status(status, past, NOW) == status

    def test_reference_month(self):
        assert reference_month(PAYMENT_DATE).isoformat() == "2024-03-01"


class TestCommissionQueryService:
    def test_list_filters_by_effective_status(self, session, data):
        affiliate = data.create_affiliate(session)
        matured = data.create_commission(session, affiliate)
        fresh = data.create_commission(session, affiliate, available_date=NOW + timedelta(days=1))
        withdrawn = data.create_commission(session, affiliate, status="withdrawn")
        data.create_commission(session, data.create_affiliate(session))
        query = CommissionQueryService(session)

        everything = query.list_for_affiliate(affiliate, now=NOW)
        assert {c.id: status for c, status in everything} == {
            matured.id: "available",
            fresh.id: "pending",
            withdrawn.id: "withdrawn",
        }
        assert [c.id for c, _ in query.list_for_affiliate(affiliate, now=NOW, status="available")] == [
            matured.id
        ]
        assert [c.id for c, _ in query.list_for_affiliate(affiliate, now=NOW, status="pending")] == [
            fresh.id
        ]
        assert [
            c.id for c, _ in query.list_for_affiliate(affiliate, now=NOW, status="withdrawn")
        ] == [withdrawn.id]

    def test_list_pagination(self, session, data):
        affiliate = data.create_affiliate(session)
        for _ in range(5):
            data.create_commission(session, affiliate)

        page = CommissionQueryService(session).list_for_affiliate(
            affiliate, now=NOW, limit=2, offset=4
        )

        assert len(page) == 1

    def test_balance_by_effective_status(self, session, data):
        affiliate = data.create_affiliate(session)
        reserved = data.create_commission(session, affiliate, amount="10.00")
        data.create_commission(session, affiliate, amount="4.00")
        data.create_commission(
            session, affiliate, amount="3.00", available_date=NOW + timedelta(days=1)
        )
        data.create_commission(session, affiliate, amount="2.00", status="withdrawn")
        data.create_commission(session, affiliate, amount="1.00", status="cancelled")
        WithdrawalService(session).request(
            affiliate, [reserved.id], "payee@example.com", "email", now=NOW
        )

        balance = CommissionQueryService(session).balance(affiliate, now=NOW)

        assert balance.available == Decimal("14.00")
        assert balance.reserved == Decimal("10.00")
        assert balance.withdrawable == Decimal("4.00")
        assert balance.pending == Decimal("3.00")
        assert balance.withdrawn == Decimal("2.00")
        assert balance.cancelled == Decimal("1.00")
        assert balance.counts == {"available": 2, "pending": 1, "withdrawn": 1, "cancelled": 1}
        assert balance.to_dict()["withdrawable"] == "4.00"

    def test_empty_balance(self, session, data):
        balance = CommissionQueryService(session).balance(data.create_affiliate(session), now=NOW)
        assert balance.withdrawable == Decimal("0")
        assert balance.counts == {}
