"""Payment lifecycle for one company's books.

``PaymentBook`` keeps parties, sales, purchases, payments and bank accounts in
memory. Recording, editing and deleting a payment are the only operations that
change bank balances, and each goes through ``BankBalanceResolver``.

Payment states::

    created -> completed -> cancelled

A recorded payment is completed as soon as its bank effect has been applied.
Editing keeps it completed; deleting cancels it. Cancelled is terminal.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

import structlog

from daybook import aging, reconciliation
from daybook.bank import BankBalanceResolver
from daybook.config import get_settings
from daybook.errors import (
    InvalidTransitionError,
    MissingBankAccountError,
    NotFoundError,
    ValidationError,
)
from daybook.events import (
    AuditLog,
    bank_effect,
    payment_cancelled,
    payment_created,
    payment_edited,
)
from daybook.formatting import ZERO, money, parse_amount, parse_date, to_date
from daybook.models import (
    BankAccount,
    CanonicalTransaction,
    DaySummary,
    InvoiceAllocation,
    Party,
    PartySummary,
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    TransactionKind,
)
from daybook.reconciliation import PaidAmountPolicy

logger = structlog.get_logger(__name__)

DEFAULT_CANCEL_REASON = "Deleted by user"

NUMBER_PREFIXES = {
    PaymentType.PAYMENT_IN: "PAY-IN",
    PaymentType.PAYMENT_OUT: "PAY-OUT",
}

_NUMBER_PATTERN = re.compile(r"^(PAY-IN|PAY-OUT)-(\d+)$")

EDITABLE_FIELDS = frozenset(
    {
        "amount",
        "payment_method",
        "bank_account_id",
        "payment_date",
        "invoice_allocations",
        "reference",
        "notes",
    }
)


def _coerce_type(value: PaymentType | str) -> PaymentType:
    try:
        return PaymentType(value)
    except ValueError:
        raise ValidationError(errors=[f"Invalid payment type: {value}"]) from None


def coerce_allocations(entries: Iterable[Any] | None) -> list[InvoiceAllocation] | None:
    """Accept allocation objects or backend-style dicts."""
    if entries is None:
        return None
    result = []
    for entry in entries:
        if isinstance(entry, InvoiceAllocation):
            result.append(entry)
            continue
        if not isinstance(entry, dict):
            raise ValidationError(errors=["Invalid invoice allocation"])
        amount = parse_amount(
            entry.get("allocatedAmount", entry.get("allocated_amount"))
        )
        result.append(
            InvoiceAllocation(
                invoice_id=str(
                    entry.get("invoiceId") or entry.get("invoice_id") or ""
                ),
                allocated_amount=amount if amount is not None else ZERO,
                invoice_number=entry.get("invoiceNumber") or entry.get("invoice_number"),
            )
        )
    return result


def _withdraw(adjustments: dict[str, Decimal], payment: Payment) -> None:
    for allocation in payment.invoice_allocations:
        adjustments[allocation.invoice_id] = (
            adjustments.get(allocation.invoice_id, ZERO) - allocation.allocated_amount
        )


class PaymentBook:
    """In-memory books for a single company.

    Args:
        parties: Known customers and vendors.
        transactions: Normalized sales and purchases.
        payments: Payments already recorded by the backend. Their allocations
            are assumed to be included in each transaction's paid amount.
        bank_accounts: Accounts whose balances follow non-cash payments.
        audit: Audit log receiving lifecycle events.
        policy: Paid-amount reconciliation policy; defaults to settings.
    """

    def __init__(
        self,
        parties: Iterable[Party] = (),
        transactions: Iterable[CanonicalTransaction] = (),
        payments: Iterable[Payment] = (),
        bank_accounts: Iterable[BankAccount] = (),
        audit: AuditLog | None = None,
        policy: PaidAmountPolicy | str | None = None,
    ):
        self._parties: dict[str, Party] = {p.id: p for p in parties}
        self._transactions: dict[str, CanonicalTransaction] = {}
        self._payments: dict[str, Payment] = {}
        # Payments recorded here whose allocations are not yet reflected in
        # the stored paid amounts of their invoices.
        self._local_ids: set[str] = set()
        # Signed paid-amount corrections for loaded payments edited or
        # cancelled here, dropped once fresh invoices are loaded.
        self._adjustments: dict[str, Decimal] = {}
        self._sequence = {PaymentType.PAYMENT_IN: 0, PaymentType.PAYMENT_OUT: 0}
        self.bank = BankBalanceResolver(bank_accounts)
        self.audit = audit or AuditLog()
        self.policy = PaidAmountPolicy(policy or get_settings().paid_amount_policy)
        self._logger = logger.bind(component="payment_book")

        self.load_transactions(transactions)
        self.load_payments(payments)

    # -- loading -----------------------------------------------------------

    @property
    def parties(self) -> dict[str, Party]:
        return self._parties

    @property
    def transactions(self) -> list[CanonicalTransaction]:
        return list(self._transactions.values())

    @property
    def payments(self) -> list[Payment]:
        return list(self._payments.values())

    def add_party(self, party: Party) -> None:
        self._parties[party.id] = party

    def load_transactions(self, transactions: Iterable[CanonicalTransaction]) -> None:
        """Add or replace sales and purchases; payment records are loaded as payments."""
        for txn in transactions:
            if txn.kind is TransactionKind.PAYMENT:
                self.load_payments([Payment.from_canonical(txn)])
            else:
                self._transactions[txn.id] = txn
                self._adjustments.pop(txn.id, None)

    def load_payments(self, payments: Iterable[Payment]) -> None:
        for payment in payments:
            self._payments[payment.id] = payment
            self._local_ids.discard(payment.id)
            match = _NUMBER_PATTERN.match(payment.payment_number or "")
            if match:
                self._sequence[payment.type] = max(
                    self._sequence[payment.type], int(match.group(2))
                )

    def load_bank_accounts(self, accounts: Iterable[BankAccount]) -> None:
        self.bank.load_accounts(accounts)

    # -- lookups -----------------------------------------------------------

    def get_party(self, party_id: str) -> Party:
        party = self._parties.get(party_id)
        if party is None:
            raise NotFoundError("Party", party_id)
        return party

    def get_transaction(self, transaction_id: str) -> CanonicalTransaction:
        txn = self._transactions.get(transaction_id)
        if txn is None:
            raise NotFoundError("Transaction", transaction_id)
        return txn

    def get_payment(self, payment_id: str) -> Payment:
        payment = self._payments.get(payment_id)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        return payment

    def paid_amounts(self, exclude: str | None = None) -> dict[str, Decimal]:
        """Effective paid amount per sale/purchase, including local payments.

        ``exclude`` leaves one payment out, whether it was recorded here or
        loaded already settled into the invoices.
        """
        local = [
            p
            for pid, p in self._payments.items()
            if pid in self._local_ids and pid != exclude
        ]
        adjustments = dict(self._adjustments)
        loaded = self._payments.get(exclude) if exclude else None
        if loaded is not None and loaded.is_active and exclude not in self._local_ids:
            _withdraw(adjustments, loaded)
        return reconciliation.settle(self._transactions.values(), local, adjustments)

    def open_invoices(
        self, party_id: str, payment_type: PaymentType | str
    ) -> list[CanonicalTransaction]:
        """Sales (payment in) or purchases (payment out) of a party still owed."""
        party = self.get_party(party_id)
        kind = (
            TransactionKind.SALE
            if _coerce_type(payment_type) is PaymentType.PAYMENT_IN
            else TransactionKind.PURCHASE
        )
        paid = self.paid_amounts()
        return [
            t
            for t in reconciliation.filter_for_party(self._transactions.values(), party)
            if t.kind is kind and aging.pending_amount(t.amount, paid[t.id]) > 0
        ]

    # -- validation --------------------------------------------------------

    def validate_payment(
        self,
        party_id: str,
        payment_type: PaymentType | str,
        amount: Any,
        payment_method: PaymentMethod | str = PaymentMethod.CASH,
        bank_account_id: str | None = None,
        invoice_allocations: Iterable[Any] | None = None,
        payment_id: str | None = None,
    ) -> None:
        """Check a payment before anything is sent or changed.

        Explicit allocations must point at the party's own sales (payment in)
        or purchases (payment out) and may not exceed what is still due.
        ``payment_id`` names the payment being edited, so its current
        allocations do not count against the amount due.

        Raises:
            MissingBankAccountError: Non-cash payment without a bank account.
            ValidationError: Any other problem; ``errors`` lists all of them.
        """
        errors: list[str] = []

        ptype = _coerce_type(payment_type)
        if party_id not in self._parties:
            errors.append(f"Party not found: {party_id}")

        value = parse_amount(amount)
        if value is None or value <= 0:
            errors.append("Amount must be greater than zero")

        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            errors.append(f"Invalid payment method: {payment_method}")
        else:
            if not method.is_cash:
                if not bank_account_id:
                    raise MissingBankAccountError(method.value)
                if bank_account_id not in self.bank.accounts:
                    errors.append(f"Bank account not found: {bank_account_id}")

        allocations = coerce_allocations(invoice_allocations) or []
        per_invoice: dict[str, Decimal] = {}
        for allocation in allocations:
            if allocation.allocated_amount <= 0:
                errors.append(
                    f"Allocation for invoice {allocation.invoice_id} must be positive"
                )
            per_invoice[allocation.invoice_id] = (
                per_invoice.get(allocation.invoice_id, ZERO) + allocation.allocated_amount
            )
        if per_invoice:
            errors.extend(
                self._allocation_errors(party_id, ptype, per_invoice, payment_id)
            )
        allocated = sum((a.allocated_amount for a in allocations), ZERO)
        if value is not None and value > 0 and allocated > value:
            errors.append("Allocated amount exceeds payment amount")

        if errors:
            raise ValidationError(errors=errors)

    def _allocation_errors(
        self,
        party_id: str,
        payment_type: PaymentType,
        per_invoice: dict[str, Decimal],
        payment_id: str | None,
    ) -> list[str]:
        errors = []
        party = self._parties.get(party_id)
        kind = (
            TransactionKind.SALE
            if payment_type is PaymentType.PAYMENT_IN
            else TransactionKind.PURCHASE
        )
        paid = self.paid_amounts(exclude=payment_id)
        for invoice_id, total in per_invoice.items():
            txn = self._transactions.get(invoice_id)
            if txn is None:
                errors.append(f"Invoice not found: {invoice_id}")
                continue
            label = txn.reference or invoice_id
            if txn.kind is not kind:
                errors.append(f"Invoice {label} is not a {kind.value}")
                continue
            if party is not None and not reconciliation.matches_party(txn, party):
                errors.append(f"Invoice {label} does not belong to {party.name}")
                continue
            if txn.is_cancelled:
                errors.append(f"Invoice {label} is cancelled")
                continue
            due = aging.pending_amount(txn.amount, paid.get(txn.id, ZERO))
            if total > due:
                errors.append(f"Allocated amount exceeds amount due on invoice {label}")
        return errors

    # -- lifecycle ---------------------------------------------------------

    def _next_number(self, payment_type: PaymentType) -> str:
        self._sequence[payment_type] += 1
        return f"{NUMBER_PREFIXES[payment_type]}-{self._sequence[payment_type]:06d}"

    def _emit_bank_events(self, since: int) -> None:
        for effect in self.bank.history[since:]:
            self.audit.record(bank_effect(effect))

    def record_payment(
        self,
        party_id: str,
        payment_type: PaymentType | str,
        amount: Any,
        payment_method: PaymentMethod | str = PaymentMethod.CASH,
        bank_account_id: str | None = None,
        payment_date: date | str | None = None,
        invoice_allocations: Iterable[Any] | None = None,
        reference: str = "",
        notes: str = "",
        payment_id: str | None = None,
    ) -> Payment:
        """Record a payment in or out and apply its bank effect.

        Without explicit allocations the amount is spread over the party's
        open invoices oldest first; any excess stays unallocated as an advance.
        """
        self.validate_payment(
            party_id,
            payment_type,
            amount,
            payment_method,
            bank_account_id,
            invoice_allocations,
        )
        party = self._parties[party_id]
        ptype = PaymentType(payment_type)
        method = PaymentMethod(payment_method)
        value = money(parse_amount(amount))

        allocations = coerce_allocations(invoice_allocations)
        if allocations is None:
            result = reconciliation.allocate_fifo(
                self.open_invoices(party_id, ptype), value, self.paid_amounts()
            )
            allocations = result.allocations

        payment = Payment(
            id=payment_id or uuid4().hex[:24],
            party_id=party.id,
            party_name=party.name,
            type=ptype,
            amount=value,
            payment_method=method,
            payment_date=parse_date(payment_date) or date.today(),
            bank_account_id=None if method.is_cash else bank_account_id,
            invoice_allocations=allocations,
            reference=reference,
            notes=notes,
        )

        mark = len(self.bank.history)
        self.bank.apply_payment(payment)
        payment.status = PaymentStatus.COMPLETED
        payment.payment_number = self._next_number(ptype)
        self._payments[payment.id] = payment
        self._local_ids.add(payment.id)

        self.audit.record(payment_created(payment))
        self._emit_bank_events(mark)
        self._logger.info(
            "payment_recorded",
            payment_id=payment.id,
            payment_number=payment.payment_number,
            party_id=party.id,
            type=ptype.value,
            amount=str(value),
            method=method.value,
            allocations=len(allocations),
        )
        return payment

    def edit_payment(self, payment_id: str, **changes: Any) -> Payment:
        """Change a completed payment, moving its bank effect accordingly.

        The old effect is reversed and the new one applied as one operation;
        if the new effect fails the account is restored and the payment is
        left unchanged.

        Raises:
            InvalidTransitionError: The payment is cancelled.
            ValidationError: The edited payment is invalid.
            BankEffectError: The new bank effect could not be applied.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(
                errors=[f"Field cannot be edited: {name}" for name in sorted(unknown)]
            )

        old = self.get_payment(payment_id)
        if old.status is PaymentStatus.CANCELLED:
            raise InvalidTransitionError(
                payment_id, old.status.value, PaymentStatus.COMPLETED.value
            )

        amount = changes.get("amount", old.amount)
        method = changes.get("payment_method", old.payment_method)
        bank_account_id = changes.get("bank_account_id", old.bank_account_id)
        allocations = changes.get("invoice_allocations")
        self.validate_payment(
            old.party_id,
            old.type,
            amount,
            method,
            bank_account_id,
            allocations,
            payment_id=payment_id,
        )

        new = old.snapshot()
        new.amount = money(parse_amount(amount))
        new.payment_method = PaymentMethod(method)
        new.bank_account_id = None if new.payment_method.is_cash else bank_account_id
        if "payment_date" in changes:
            new.payment_date = parse_date(changes["payment_date"]) or old.payment_date
        new.reference = changes.get("reference", old.reference)
        new.notes = changes.get("notes", old.notes)

        if allocations is not None:
            new.invoice_allocations = coerce_allocations(allocations)
        elif new.allocated_total > new.amount:
            result = reconciliation.allocate_fifo(
                [self._transactions[a.invoice_id] for a in old.invoice_allocations
                 if a.invoice_id in self._transactions],
                new.amount,
                self.paid_amounts(exclude=payment_id),
            )
            new.invoice_allocations = result.allocations

        mark = len(self.bank.history)
        try:
            self.bank.edit_payment(old, new)
        finally:
            self._emit_bank_events(mark)

        new.status = PaymentStatus.COMPLETED
        if payment_id not in self._local_ids:
            _withdraw(self._adjustments, old)
            self._local_ids.add(payment_id)
        self._payments[payment_id] = new
        self.audit.record(payment_edited(old, new))
        self._logger.info(
            "payment_edited",
            payment_id=payment_id,
            amount=str(new.amount),
            method=new.payment_method.value,
        )
        return new

    def delete_payment(self, payment_id: str, reason: str | None = None) -> Payment:
        """Cancel a payment and reverse its bank effect.

        The record is kept with status ``cancelled`` so it stays auditable.
        """
        payment = self.get_payment(payment_id)
        if payment.status is PaymentStatus.CANCELLED:
            raise InvalidTransitionError(
                payment_id, payment.status.value, PaymentStatus.CANCELLED.value
            )

        reason = reason or DEFAULT_CANCEL_REASON
        mark = len(self.bank.history)
        self.bank.reverse_payment(payment)
        if payment_id not in self._local_ids:
            _withdraw(self._adjustments, payment)

        payment.status = PaymentStatus.CANCELLED
        payment.cancel_reason = reason
        payment.cancelled_at = datetime.now(timezone.utc)

        self.audit.record(payment_cancelled(payment, reason))
        self._emit_bank_events(mark)
        self._logger.info(
            "payment_cancelled",
            payment_id=payment_id,
            reason=reason,
            amount=str(payment.amount),
        )
        return payment

    # -- read side ---------------------------------------------------------

    def pending_amount(self, transaction_id: str) -> Decimal:
        txn = self.get_transaction(transaction_id)
        return aging.pending_amount(txn.amount, self.paid_amounts()[txn.id])

    def classify(
        self, transaction_id: str, as_of: date | datetime | None = None
    ) -> aging.Classification:
        txn = self.get_transaction(transaction_id)
        return aging.classify(
            txn, as_of or date.today(), self.paid_amounts()[txn.id]
        )

    def party_balance(self, party_id: str) -> Decimal:
        return reconciliation.party_balance(
            self.get_party(party_id), self._transactions.values(), self.payments
        )

    def summarize(self, party_id: str) -> PartySummary:
        return reconciliation.summarize(
            self.get_party(party_id),
            self._transactions.values(),
            self.payments,
            self.policy,
        )

    def day_summary(self, as_of: date | datetime | None = None) -> DaySummary:
        return reconciliation.build_day_summary(
            self._transactions.values(),
            self.payments,
            to_date(as_of or date.today()),
            self.paid_amounts(),
        )
