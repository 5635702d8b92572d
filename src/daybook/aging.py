"""Outstanding amount and aging classification for sales and purchases."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from daybook.formatting import ZERO, to_date
from daybook.models import AgingBucket, CanonicalTransaction, TransactionStatus


@dataclass(frozen=True)
class Classification:
    """Derived status of one transaction as of a given day."""

    status: TransactionStatus
    bucket: AgingBucket
    pending_amount: Decimal
    paid_amount: Decimal
    days_overdue: int = 0

    @property
    def is_outstanding(self) -> bool:
        return self.pending_amount > 0


def pending_amount(amount: Decimal, paid_amount: Decimal) -> Decimal:
    """Outstanding amount, never negative."""
    return max(ZERO, amount - paid_amount)


def classify(
    transaction: CanonicalTransaction,
    as_of: date | datetime,
    paid_amount: Decimal | None = None,
) -> Classification:
    """Classify a sale or purchase as paid, pending, partial or overdue.

    The stored status on the record is ignored; status is always recomputed
    from amounts and the due date. Due dates are compared by date only.

    Args:
        transaction: Normalized sale or purchase.
        as_of: Reference day ("today").
        paid_amount: Effective paid amount when it differs from the one on
            the record, e.g. after applying payment allocations.
    """
    today = to_date(as_of)
    paid = transaction.paid_amount if paid_amount is None else paid_amount
    pending = pending_amount(transaction.amount, paid)

    if pending == 0:
        return Classification(
            status=TransactionStatus.PAID,
            bucket=AgingBucket.PAID,
            pending_amount=ZERO,
            paid_amount=paid,
        )

    due = transaction.due_date
    if due is not None and due < today:
        return Classification(
            status=TransactionStatus.OVERDUE,
            bucket=AgingBucket.OVERDUE,
            pending_amount=pending,
            paid_amount=paid,
            days_overdue=(today - due).days,
        )

    status = TransactionStatus.PARTIAL if paid > 0 else TransactionStatus.PENDING
    bucket = AgingBucket.DUE_TODAY if due == today else AgingBucket.PENDING
    return Classification(
        status=status,
        bucket=bucket,
        pending_amount=pending,
        paid_amount=paid,
    )


def _sort_key(
    transaction: CanonicalTransaction, classification: Classification
) -> tuple[int, int, date, str]:
    due = transaction.due_date
    # Missing due dates sort after every real date
    return (
        classification.bucket.priority,
        0 if due is not None else 1,
        due or date.max,
        transaction.id,
    )


def sort_for_display(
    transactions: Iterable[CanonicalTransaction],
    as_of: date | datetime,
    paid_amounts: dict[str, Decimal] | None = None,
) -> list[tuple[CanonicalTransaction, Classification]]:
    """Order transactions for outstanding lists.

    Overdue first, then due today, then pending, then paid; ties by
    ascending due date and then id. The sort is stable.
    """
    paid_amounts = paid_amounts or {}
    classified = [
        (txn, classify(txn, as_of, paid_amounts.get(txn.id)))
        for txn in transactions
    ]
    return sorted(classified, key=lambda pair: _sort_key(*pair))


def outstanding_by_bucket(
    transactions: Sequence[CanonicalTransaction],
    as_of: date | datetime,
    paid_amounts: dict[str, Decimal] | None = None,
) -> dict[AgingBucket, Decimal]:
    """Total pending amount per aging bucket."""
    paid_amounts = paid_amounts or {}
    totals = {bucket: ZERO for bucket in AgingBucket}
    for txn in transactions:
        result = classify(txn, as_of, paid_amounts.get(txn.id))
        totals[result.bucket] += result.pending_amount
    return totals
