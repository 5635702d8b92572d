"""Tests for party reconciliation."""

from datetime import date
from decimal import Decimal

import pytest

from daybook.models import (
    BalanceType,
    CanonicalTransaction,
    InvoiceAllocation,
    Party,
    Payment,
    PaymentStatus,
    PaymentType,
    TransactionKind,
)
from daybook.reconciliation import (
    PaidAmountPolicy,
    allocate_fifo,
    build_day_summary,
    filter_for_party,
    matches_party,
    party_balance,
    settle,
    summarize,
)

AS_OF = date(2024, 3, 15)


def txn(txn_id, kind=TransactionKind.SALE, amount="1000", paid="0", history=None, **kwargs):
    return CanonicalTransaction(
        id=txn_id,
        kind=kind,
        amount=Decimal(amount),
        reference=txn_id.upper(),
        paid_amount=Decimal(paid),
        history_paid=Decimal(history) if history is not None else None,
        **kwargs,
    )


def payment(payment_id, amount, ptype=PaymentType.PAYMENT_IN, party_id="p1", **kwargs):
    return Payment(
        id=payment_id,
        party_id=party_id,
        type=ptype,
        amount=Decimal(amount),
        status=PaymentStatus.COMPLETED,
        **kwargs,
    )


@pytest.fixture
def party():
    return Party(id="p1", name="Sharma Traders")


class TestMatchesParty:
    """Tests for party matching."""

    def test_any_alias_matches(self, party):
        record = txn("s1", party_id="old-id", party_refs=("old-id", "p1"))
        assert matches_party(record, party)

    def test_name_fallback_is_case_insensitive(self, party):
        record = txn("s1", party_name="  sharma   TRADERS ")
        assert matches_party(record, party)

    def test_other_party_does_not_match(self, party):
        record = txn("s1", party_id="p2", party_name="Someone Else")
        assert not matches_party(record, party)

    def test_record_counted_once_even_when_id_and_name_match(self, party):
        record = txn("s1", party_id="p1", party_refs=("p1",), party_name="Sharma Traders")
        assert filter_for_party([record], party) == [record]

    def test_cancelled_transactions_excluded(self, party):
        record = txn("s1", party_id="p1", stored_status="cancelled")
        assert filter_for_party([record], party) == []


class TestSummarize:
    """Tests for party summaries."""

    def test_totals_and_dues(self, party):
        transactions = [
            txn("s1", amount="10000", party_id="p1", date=date(2024, 1, 5)),
            txn("s2", amount="5000", party_id="p1", date=date(2024, 2, 1)),
            txn("b1", kind=TransactionKind.PURCHASE, amount="3000", party_id="p1"),
        ]
        payments = [
            payment("pay1", "4000"),
            payment("pay2", "1000", PaymentType.PAYMENT_OUT),
        ]

        summary = summarize(party, transactions, payments)

        assert summary.total_sales == Decimal("15000")
        assert summary.total_purchases == Decimal("3000")
        assert summary.total_sales_paid == Decimal("4000")
        assert summary.sales_due == Decimal("11000")
        assert summary.purchases_due == Decimal("2000")
        assert summary.net_balance == Decimal("9000")
        assert summary.balance_label == "To Receive"
        assert summary.payment_status == "outstanding"
        assert summary.transaction_count == 3
        assert summary.first_transaction_date == date(2024, 1, 5)
        assert summary.last_transaction_date == date(2024, 2, 1)
        assert summary.average_transaction == Decimal("6000")

    def test_cancelled_payments_never_count(self, party):
        transactions = [txn("s1", amount="1000", party_id="p1")]
        cancelled = payment("pay1", "1000")
        cancelled.status = PaymentStatus.CANCELLED

        summary = summarize(party, transactions, [cancelled])

        assert summary.total_sales_paid_from_payments == Decimal("0")
        assert summary.sales_due == Decimal("1000")

    def test_max_policy_takes_larger_source(self, party):
        transactions = [txn("s1", amount="1000", party_id="p1", history="600")]
        payments = [payment("pay1", "400")]

        summary = summarize(party, transactions, payments, PaidAmountPolicy.MAX)

        assert summary.total_sales_paid_from_payments == Decimal("400")
        assert summary.total_sales_paid_from_history == Decimal("600")
        assert summary.total_sales_paid == Decimal("600")

    def test_ledger_first_policy(self, party):
        transactions = [txn("s1", amount="1000", party_id="p1", history="600")]

        with_ledger = summarize(party, transactions, [payment("pay1", "400")], "ledger_first")
        without_ledger = summarize(party, transactions, [], "ledger_first")

        assert with_ledger.total_sales_paid == Decimal("400")
        assert without_ledger.total_sales_paid == Decimal("600")

    def test_overpaid_dues_clamp_to_zero(self, party):
        summary = summarize(party, [txn("s1", amount="100", party_id="p1")], [payment("p", "150")])
        assert summary.sales_due == Decimal("0")
        assert summary.payment_status == "clear"


class TestPartyBalance:
    """Tests for the running party balance."""

    def test_balance_formula(self):
        party = Party(id="p1", name="A", opening_balance=Decimal("500"))
        transactions = [
            txn("s1", amount="2000", party_id="p1"),
            txn("b1", kind=TransactionKind.PURCHASE, amount="700", party_id="p1"),
        ]
        payments = [
            payment("in1", "1000"),
            payment("out1", "200", PaymentType.PAYMENT_OUT),
        ]

        # 500 + 2000 - 700 - 1000 + 200
        assert party_balance(party, transactions, payments) == Decimal("1000")

    def test_credit_opening_balance_is_negative(self):
        party = Party(
            id="p1",
            name="A",
            opening_balance=Decimal("300"),
            opening_balance_type=BalanceType.CREDIT,
        )
        assert party_balance(party, [], []) == Decimal("-300")

    def test_negative_opening_balance_rejected(self):
        with pytest.raises(ValueError):
            Party(id="p1", name="A", opening_balance=Decimal("-1"))


class TestAllocation:
    """Tests for settlement and FIFO allocation."""

    def test_fifo_oldest_first(self):
        invoices = [
            txn("new", amount="500", date=date(2024, 3, 1)),
            txn("old", amount="300", paid="100", date=date(2024, 1, 1)),
            txn("undated", amount="1000"),
        ]

        result = allocate_fifo(invoices, Decimal("600"))

        assert [(a.invoice_id, a.allocated_amount) for a in result.allocations] == [
            ("old", Decimal("200")),
            ("new", Decimal("400")),
        ]
        assert result.allocated_total == Decimal("600")
        assert result.remaining_amount == Decimal("0")

    def test_fifo_never_exceeds_dues(self):
        invoices = [txn("a", amount="100"), txn("b", amount="50", paid="50")]

        result = allocate_fifo(invoices, Decimal("500"))

        assert [a.allocated_amount for a in result.allocations] == [Decimal("100")]
        assert result.remaining_amount == Decimal("400")

    def test_settle_adds_active_allocations(self):
        invoices = [txn("s1", amount="1000", paid="100")]
        active = payment("p1", "300", invoice_allocations=[InvoiceAllocation("s1", Decimal("300"))])
        cancelled = payment("p2", "200", invoice_allocations=[InvoiceAllocation("s1", Decimal("200"))])
        cancelled.status = PaymentStatus.CANCELLED

        assert settle(invoices, [active, cancelled]) == {"s1": Decimal("400")}

    def test_settle_applies_corrections_without_going_negative(self):
        invoices = [txn("s1", amount="1000", paid="400"), txn("s2", amount="500", paid="100")]

        paid = settle(invoices, [], {"s1": Decimal("-400"), "s2": Decimal("-300")})

        assert paid == {"s1": Decimal("0"), "s2": Decimal("0")}


class TestDaySummary:
    """Tests for the day summary."""

    def test_receivables_payables_and_cash(self):
        transactions = [
            txn("s1", amount="1000", due_date=date(2024, 3, 1)),
            txn("s2", amount="500", due_date=AS_OF),
            txn("s3", amount="200", paid="200"),
            txn("b1", kind=TransactionKind.PURCHASE, amount="800", due_date=date(2024, 3, 20)),
        ]
        payments = [
            payment("in", "250", payment_date=AS_OF),
            payment("out", "100", PaymentType.PAYMENT_OUT, payment_date=AS_OF),
            payment("old", "999", payment_date=date(2024, 3, 1)),
        ]

        summary = build_day_summary(transactions, payments, AS_OF)

        assert summary.total_receivables == Decimal("1500")
        assert summary.overdue_receivables == Decimal("1000")
        assert summary.due_today_receivables == Decimal("500")
        assert summary.receivables_count == 2
        assert summary.total_payables == Decimal("800")
        assert summary.net_position == Decimal("700")
        assert summary.total_cash_in == Decimal("250")
        assert summary.total_cash_out == Decimal("100")
        assert summary.net_cash_flow == Decimal("150")
