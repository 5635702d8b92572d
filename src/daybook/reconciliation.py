"""Per-party reconciliation of sales, purchases and payments.

Amounts paid against a party can be read from two places that do not always
agree: the payment ledger (payment-in / payment-out records) and the payment
history embedded in each sale or purchase. ``PaidAmountPolicy`` decides which
one is reported.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

import structlog

from daybook.aging import classify
from daybook.formatting import ZERO, to_date
from daybook.models import (
    AgingBucket,
    CanonicalTransaction,
    DaySummary,
    InvoiceAllocation,
    Party,
    PartySummary,
    Payment,
    PaymentType,
    TransactionKind,
)

logger = structlog.get_logger(__name__)


class PaidAmountPolicy(str, Enum):
    """How to reconcile the ledger total with embedded payment history."""

    MAX = "max"
    LEDGER_FIRST = "ledger_first"

    def choose(
        self, from_payments: Decimal, from_history: Decimal, ledger_has_entries: bool
    ) -> Decimal:
        if self is PaidAmountPolicy.MAX:
            return max(from_payments, from_history)
        return from_payments if ledger_has_entries else from_history


@dataclass
class AllocationResult:
    """Outcome of spreading a payment over open invoices."""

    allocations: list[InvoiceAllocation] = field(default_factory=list)
    allocated_total: Decimal = ZERO
    remaining_amount: Decimal = ZERO


def _normalize_name(name: str | None) -> str:
    return " ".join((name or "").split()).lower()


def _party_refs(record: CanonicalTransaction | Payment) -> tuple[str, ...]:
    if isinstance(record, CanonicalTransaction):
        if record.party_refs:
            return record.party_refs
        return (record.party_id,) if record.party_id else ()
    return (record.party_id,) if record.party_id else ()


def matches_party(record: CanonicalTransaction | Payment, party: Party) -> bool:
    """True when any id alias or, failing that, the name points at the party."""
    if party.id and party.id in _party_refs(record):
        return True
    name = _normalize_name(record.party_name)
    return bool(name) and name == _normalize_name(party.name)


def filter_for_party(
    transactions: Iterable[CanonicalTransaction], party: Party
) -> list[CanonicalTransaction]:
    """Live sales and purchases that belong to a party."""
    return [
        t
        for t in transactions
        if t.is_business and not t.is_cancelled and matches_party(t, party)
    ]


def payments_for_party(payments: Iterable[Payment], party: Party) -> list[Payment]:
    """Non-cancelled payments that belong to a party."""
    return [p for p in payments if p.is_active and matches_party(p, party)]


def settle(
    transactions: Iterable[CanonicalTransaction],
    payments: Iterable[Payment],
    adjustments: dict[str, Decimal] | None = None,
) -> dict[str, Decimal]:
    """Effective paid amount per sale/purchase id.

    Adds the invoice allocations of non-cancelled payments to the amount
    already recorded on each transaction. Only valid when the recorded
    amount does not yet include those payments. ``adjustments`` are signed
    per-invoice corrections, such as withdrawing a recorded payment that was
    cancelled since; the result never goes below zero.
    """
    adjustments = adjustments or {}
    allocated: dict[str, Decimal] = {}
    for payment in payments:
        if not payment.is_active:
            continue
        for allocation in payment.invoice_allocations:
            allocated[allocation.invoice_id] = (
                allocated.get(allocation.invoice_id, ZERO) + allocation.allocated_amount
            )
    return {
        t.id: max(ZERO, t.paid_amount + allocated.get(t.id, ZERO) + adjustments.get(t.id, ZERO))
        for t in transactions
        if t.is_business
    }


def allocate_fifo(
    transactions: Sequence[CanonicalTransaction],
    amount: Decimal,
    paid_amounts: dict[str, Decimal] | None = None,
) -> AllocationResult:
    """Allocate a payment to open invoices, oldest first.

    Whatever cannot be allocated is returned as ``remaining_amount`` (an
    advance on the party's account).
    """
    paid_amounts = paid_amounts or {}
    remaining = amount
    result = AllocationResult()

    ordered = sorted(
        transactions,
        key=lambda t: (t.date is None, t.date or date.max, t.id),
    )
    for txn in ordered:
        if remaining <= 0:
            break
        paid = paid_amounts.get(txn.id, txn.paid_amount)
        due = max(ZERO, txn.amount - paid)
        share = min(remaining, due)
        if share <= 0:
            continue
        result.allocations.append(
            InvoiceAllocation(
                invoice_id=txn.id,
                allocated_amount=share,
                invoice_number=txn.reference,
            )
        )
        remaining -= share

    result.allocated_total = amount - remaining
    result.remaining_amount = remaining
    return result


def party_balance(
    party: Party,
    transactions: Iterable[CanonicalTransaction],
    payments: Iterable[Payment],
) -> Decimal:
    """Current balance of a party; positive means the party owes the business.

    opening (signed) + sales - payments in + payments out - purchases
    """
    balance = party.signed_opening_balance
    for txn in filter_for_party(transactions, party):
        if txn.kind is TransactionKind.SALE:
            balance += txn.amount
        else:
            balance -= txn.amount
    for payment in payments_for_party(payments, party):
        if payment.type is PaymentType.PAYMENT_IN:
            balance -= payment.amount
        else:
            balance += payment.amount
    return balance


def _embedded_paid(txn: CanonicalTransaction) -> Decimal:
    return txn.history_paid if txn.history_paid is not None else txn.paid_amount


def summarize(
    party: Party,
    transactions: Iterable[CanonicalTransaction],
    payments: Iterable[Payment],
    policy: PaidAmountPolicy | str = PaidAmountPolicy.MAX,
) -> PartySummary:
    """Reconcile one party's sales, purchases and payments."""
    policy = PaidAmountPolicy(policy)
    transactions = list(transactions)
    payments = list(payments)
    party_txns = filter_for_party(transactions, party)
    party_payments = payments_for_party(payments, party)

    sales = [t for t in party_txns if t.kind is TransactionKind.SALE]
    purchases = [t for t in party_txns if t.kind is TransactionKind.PURCHASE]
    payments_in = [p for p in party_payments if p.type is PaymentType.PAYMENT_IN]
    payments_out = [p for p in party_payments if p.type is PaymentType.PAYMENT_OUT]

    sales_from_payments = sum((p.amount for p in payments_in), ZERO)
    sales_from_history = sum((_embedded_paid(s) for s in sales), ZERO)
    purchases_from_payments = sum((p.amount for p in payments_out), ZERO)
    purchases_from_history = sum((_embedded_paid(s) for s in purchases), ZERO)

    dated = sorted(t.date for t in party_txns if t.date is not None)

    summary = PartySummary(
        party_id=party.id,
        total_sales=sum((s.amount for s in sales), ZERO),
        total_purchases=sum((s.amount for s in purchases), ZERO),
        total_sales_paid=policy.choose(
            sales_from_payments, sales_from_history, bool(payments_in)
        ),
        total_purchases_paid=policy.choose(
            purchases_from_payments, purchases_from_history, bool(payments_out)
        ),
        total_sales_paid_from_payments=sales_from_payments,
        total_sales_paid_from_history=sales_from_history,
        total_purchases_paid_from_payments=purchases_from_payments,
        total_purchases_paid_from_history=purchases_from_history,
        current_balance=party_balance(party, transactions, payments),
        transaction_count=len(party_txns),
        first_transaction_date=dated[0] if dated else None,
        last_transaction_date=dated[-1] if dated else None,
    )

    if sales_from_payments != sales_from_history or (
        purchases_from_payments != purchases_from_history
    ):
        logger.debug(
            "paid_sources_disagree",
            party_id=party.id,
            policy=policy.value,
            sales_ledger=str(sales_from_payments),
            sales_history=str(sales_from_history),
            purchases_ledger=str(purchases_from_payments),
            purchases_history=str(purchases_from_history),
        )
    return summary


def build_day_summary(
    transactions: Iterable[CanonicalTransaction],
    payments: Iterable[Payment],
    as_of: date | datetime,
    paid_amounts: dict[str, Decimal] | None = None,
) -> DaySummary:
    """Receivables, payables and cash movement as of a day."""
    today = to_date(as_of)
    paid_amounts = paid_amounts or {}
    summary = DaySummary(as_of=today)

    for txn in transactions:
        if not txn.is_business or txn.is_cancelled:
            continue
        result = classify(txn, today, paid_amounts.get(txn.id))
        if result.pending_amount <= 0:
            continue
        overdue = result.bucket is AgingBucket.OVERDUE
        due_today = result.bucket is AgingBucket.DUE_TODAY
        if txn.kind is TransactionKind.SALE:
            summary.total_receivables += result.pending_amount
            summary.receivables_count += 1
            if overdue:
                summary.overdue_receivables += result.pending_amount
                summary.overdue_receivables_count += 1
            elif due_today:
                summary.due_today_receivables += result.pending_amount
                summary.due_today_receivables_count += 1
        else:
            summary.total_payables += result.pending_amount
            summary.payables_count += 1
            if overdue:
                summary.overdue_payables += result.pending_amount
                summary.overdue_payables_count += 1
            elif due_today:
                summary.due_today_payables += result.pending_amount
                summary.due_today_payables_count += 1

    for payment in payments:
        if not payment.is_active or to_date(payment.payment_date) != today:
            continue
        if payment.type is PaymentType.PAYMENT_IN:
            summary.total_cash_in += payment.amount
        else:
            summary.total_cash_out += payment.amount

    return summary
