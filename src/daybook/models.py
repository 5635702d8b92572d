"""Domain records for parties, transactions, payments and bank accounts."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from daybook.formatting import ZERO, parse_amount


class PartyType(str, Enum):
    """Role of a party towards the business."""
    CUSTOMER = "customer"
    VENDOR = "vendor"
    SUPPLIER = "supplier"
    BOTH = "both"


class BalanceType(str, Enum):
    """Side of an opening balance. Debit means the party owes the business."""
    DEBIT = "debit"
    CREDIT = "credit"


class TransactionKind(str, Enum):
    SALE = "sale"
    PURCHASE = "purchase"
    PAYMENT = "payment"


class PaymentType(str, Enum):
    PAYMENT_IN = "payment_in"
    PAYMENT_OUT = "payment_out"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    CARD = "card"
    UPI = "upi"

    @property
    def is_cash(self) -> bool:
        return self is PaymentMethod.CASH


class PaymentStatus(str, Enum):
    """Payment lifecycle states. Cancelled is terminal."""
    CREATED = "created"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransactionStatus(str, Enum):
    """Derived settlement status of a sale or purchase."""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class AgingBucket(str, Enum):
    """Display bucket for outstanding lists, in priority order."""
    OVERDUE = "overdue"
    DUE_TODAY = "due_today"
    PENDING = "pending"
    PAID = "paid"

    @property
    def priority(self) -> int:
        return _BUCKET_PRIORITY[self]


_BUCKET_PRIORITY = {
    AgingBucket.OVERDUE: 0,
    AgingBucket.DUE_TODAY: 1,
    AgingBucket.PENDING: 2,
    AgingBucket.PAID: 3,
}


def balance_label(balance: Decimal) -> str:
    """Direction label for a party balance."""
    return "To Receive" if balance >= 0 else "To Pay"


@dataclass
class Party:
    """A customer, vendor or both."""

    id: str
    name: str
    party_type: PartyType = PartyType.CUSTOMER
    phone: str = ""
    email: str = ""
    opening_balance: Decimal = ZERO
    opening_balance_type: BalanceType = BalanceType.DEBIT

    def __post_init__(self) -> None:
        if self.opening_balance < 0:
            raise ValueError("Opening balance cannot be negative")

    @property
    def signed_opening_balance(self) -> Decimal:
        if self.opening_balance_type is BalanceType.CREDIT:
            return -self.opening_balance
        return self.opening_balance

    @property
    def is_customer(self) -> bool:
        return self.party_type in (PartyType.CUSTOMER, PartyType.BOTH)

    @property
    def is_vendor(self) -> bool:
        return self.party_type in (PartyType.VENDOR, PartyType.SUPPLIER, PartyType.BOTH)

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> Party:
        """Build a party from a backend record."""
        try:
            party_type = PartyType(raw.get("partyType") or "customer")
        except ValueError:
            party_type = PartyType.CUSTOMER
        try:
            balance_type = BalanceType(raw.get("openingBalanceType") or "debit")
        except ValueError:
            balance_type = BalanceType.DEBIT
        opening = parse_amount(raw.get("openingBalance")) or ZERO
        return cls(
            id=str(raw.get("_id") or raw.get("id") or ""),
            name=str(raw.get("name") or ""),
            party_type=party_type,
            phone=str(raw.get("phoneNumber") or raw.get("phone") or ""),
            email=str(raw.get("email") or ""),
            opening_balance=abs(opening),
            opening_balance_type=balance_type,
        )


@dataclass(frozen=True)
class InvoiceAllocation:
    """Share of a payment applied to one invoice or bill."""

    invoice_id: str
    allocated_amount: Decimal
    invoice_number: str | None = None


@dataclass(frozen=True)
class CanonicalTransaction:
    """One sale, purchase or payment in a single canonical shape."""

    id: str
    kind: TransactionKind
    amount: Decimal
    reference: str
    date: date | None = None
    party_id: str | None = None
    party_name: str = ""
    party_refs: tuple[str, ...] = ()
    paid_amount: Decimal = ZERO
    history_paid: Decimal | None = None
    due_date: date | None = None
    stored_status: str | None = None
    payment_type: PaymentType | None = None
    payment_method: PaymentMethod | None = None
    bank_account_id: str | None = None
    allocations: tuple[InvoiceAllocation, ...] = ()
    payment_number: str | None = None
    invalid: bool = False
    issues: tuple[str, ...] = ()

    @property
    def pending_amount(self) -> Decimal:
        return max(ZERO, self.amount - self.paid_amount)

    @property
    def has_valid_date(self) -> bool:
        return self.date is not None

    @property
    def is_business(self) -> bool:
        return self.kind in (TransactionKind.SALE, TransactionKind.PURCHASE)

    @property
    def is_cancelled(self) -> bool:
        return (self.stored_status or "").lower() in ("cancelled", "deleted", "draft")


@dataclass
class Payment:
    """A payment in or out, with its bank routing and invoice allocations."""

    id: str
    party_id: str
    type: PaymentType
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_date: date = field(default_factory=date.today)
    bank_account_id: str | None = None
    invoice_allocations: list[InvoiceAllocation] = field(default_factory=list)
    status: PaymentStatus = PaymentStatus.CREATED
    reference: str = ""
    notes: str = ""
    payment_number: str = ""
    party_name: str = ""
    cancel_reason: str | None = None
    cancelled_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status is not PaymentStatus.CANCELLED

    @property
    def allocated_total(self) -> Decimal:
        return sum((a.allocated_amount for a in self.invoice_allocations), ZERO)

    @property
    def unallocated_amount(self) -> Decimal:
        return max(ZERO, self.amount - self.allocated_total)

    @property
    def bank_delta(self) -> Decimal:
        """Signed change this payment makes to its bank account."""
        if self.payment_method.is_cash:
            return ZERO
        return self.amount if self.type is PaymentType.PAYMENT_IN else -self.amount

    def snapshot(self) -> Payment:
        """Independent copy holding the values as they are right now."""
        return replace(self, invoice_allocations=list(self.invoice_allocations))

    @classmethod
    def from_canonical(cls, record: CanonicalTransaction) -> Payment:
        """Build a payment from a normalized payment record."""
        if record.kind is not TransactionKind.PAYMENT:
            raise ValueError(f"Not a payment record: {record.kind.value}")
        status = PaymentStatus.COMPLETED
        if record.is_cancelled:
            status = PaymentStatus.CANCELLED
        method = record.payment_method
        if method is None:
            method = (
                PaymentMethod.BANK_TRANSFER if record.bank_account_id else PaymentMethod.CASH
            )
        return cls(
            id=record.id,
            party_id=record.party_id or "",
            party_name=record.party_name,
            type=record.payment_type or PaymentType.PAYMENT_IN,
            amount=record.amount,
            payment_method=method,
            payment_date=record.date or date.today(),
            bank_account_id=record.bank_account_id,
            invoice_allocations=list(record.allocations),
            status=status,
            reference=record.reference,
            payment_number=record.payment_number or "",
        )


@dataclass
class BankAccount:
    """A bank account whose balance follows non-cash payments."""

    id: str
    bank_name: str
    account_name: str = ""
    account_number: str = ""
    current_balance: Decimal = ZERO

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> BankAccount:
        balance = parse_amount(raw.get("currentBalance"))
        if balance is None:
            balance = parse_amount(raw.get("balance")) or ZERO
        return cls(
            id=str(raw.get("_id") or raw.get("id") or ""),
            bank_name=str(raw.get("bankName") or ""),
            account_name=str(raw.get("accountName") or ""),
            account_number=str(raw.get("accountNumber") or ""),
            current_balance=balance,
        )


@dataclass
class DaySummary:
    """Receivables and payables position for one day."""

    as_of: date | None = None
    total_receivables: Decimal = ZERO
    total_payables: Decimal = ZERO
    overdue_receivables: Decimal = ZERO
    overdue_payables: Decimal = ZERO
    due_today_receivables: Decimal = ZERO
    due_today_payables: Decimal = ZERO
    receivables_count: int = 0
    payables_count: int = 0
    overdue_receivables_count: int = 0
    overdue_payables_count: int = 0
    due_today_receivables_count: int = 0
    due_today_payables_count: int = 0
    total_cash_in: Decimal = ZERO
    total_cash_out: Decimal = ZERO

    @property
    def net_position(self) -> Decimal:
        return self.total_receivables - self.total_payables

    @property
    def total_overdue(self) -> Decimal:
        return self.overdue_receivables + self.overdue_payables

    @property
    def total_due_today(self) -> Decimal:
        return self.due_today_receivables + self.due_today_payables

    @property
    def net_cash_flow(self) -> Decimal:
        return self.total_cash_in - self.total_cash_out

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        result["as_of"] = self.as_of.isoformat() if self.as_of else None
        result["net_position"] = self.net_position
        result["total_overdue"] = self.total_overdue
        result["total_due_today"] = self.total_due_today
        result["net_cash_flow"] = self.net_cash_flow
        return result


@dataclass
class PartySummary:
    """Reconciled position of a single party."""

    party_id: str
    total_sales: Decimal = ZERO
    total_purchases: Decimal = ZERO
    total_sales_paid: Decimal = ZERO
    total_purchases_paid: Decimal = ZERO
    total_sales_paid_from_payments: Decimal = ZERO
    total_sales_paid_from_history: Decimal = ZERO
    total_purchases_paid_from_payments: Decimal = ZERO
    total_purchases_paid_from_history: Decimal = ZERO
    current_balance: Decimal = ZERO
    transaction_count: int = 0
    first_transaction_date: date | None = None
    last_transaction_date: date | None = None
    collection_efficiency: Decimal | None = None
    payment_efficiency: Decimal | None = None
    avg_collection_days: int | None = None
    avg_payment_days: int | None = None
    has_real_data: bool = True
    data_source: str = "local"
    api_errors: dict[str, str | None] = field(default_factory=dict)

    @property
    def sales_due(self) -> Decimal:
        return max(ZERO, self.total_sales - self.total_sales_paid)

    @property
    def purchases_due(self) -> Decimal:
        return max(ZERO, self.total_purchases - self.total_purchases_paid)

    @property
    def net_balance(self) -> Decimal:
        """Positive when the party owes the business."""
        return self.sales_due - self.purchases_due

    @property
    def average_transaction(self) -> Decimal:
        if not self.transaction_count:
            return ZERO
        return (self.total_sales + self.total_purchases) / self.transaction_count

    @property
    def payment_status(self) -> str:
        return "outstanding" if self.sales_due > 0 else "clear"

    @property
    def balance_label(self) -> str:
        return balance_label(self.net_balance)
