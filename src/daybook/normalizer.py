"""Normalize heterogeneous backend records into canonical transactions.

Sales, purchases and payments arrive in several shapes depending on which
endpoint produced them (``_id`` vs ``id``, ``totals.finalTotal`` vs
``finalTotal`` vs ``total``, ``supplier`` object vs ``supplierId`` vs
``supplierName``). Each canonical field is resolved through an ordered list
of candidate paths declared in ``FIELD_TABLES``: the first present and
acceptable value wins, otherwise the field falls back to its default.

Normalization never raises for bad data. A record whose amount cannot be
read is normalized to zero and flagged ``invalid`` so one bad record does
not abort a batch.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import structlog

from daybook.formatting import ZERO, parse_amount, parse_date
from daybook.models import (
    CanonicalTransaction,
    InvoiceAllocation,
    PaymentMethod,
    PaymentType,
    TransactionKind,
)

logger = structlog.get_logger(__name__)

_MISSING = object()

# Wrapper keys some endpoints put around the actual record
WRAPPER_KEYS = ("data", "bill", "purchase", "sale", "payment")

REFERENCE_PREFIXES = {
    TransactionKind.SALE: "SALE",
    TransactionKind.PURCHASE: "PUR",
    TransactionKind.PAYMENT: "PAY",
}

PAYMENT_TYPE_ALIASES = {
    "in": PaymentType.PAYMENT_IN,
    "payment_in": PaymentType.PAYMENT_IN,
    "pay-in": PaymentType.PAYMENT_IN,
    "out": PaymentType.PAYMENT_OUT,
    "payment_out": PaymentType.PAYMENT_OUT,
    "pay-out": PaymentType.PAYMENT_OUT,
}


def _present(value: Any) -> bool:
    return value is not None and value != ""


def _is_id(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return False
    return str(value).strip() != ""


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _is_list(value: Any) -> bool:
    return isinstance(value, list)


@dataclass(frozen=True)
class FieldRule:
    """Ordered candidate paths for one canonical field."""

    name: str
    paths: tuple[str, ...]
    accepts: Callable[[Any], bool] = _present


ID_RULE = FieldRule("id", ("_id", "id"), _is_id)

SALE_FIELDS: tuple[FieldRule, ...] = (
    ID_RULE,
    FieldRule(
        "party_id",
        (
            "customer._id",
            "customer.id",
            "customerId",
            "partyId",
            "party._id",
            "party.id",
            "customer",
            "party",
        ),
        _is_id,
    ),
    FieldRule("party_name", ("customer.name", "customerName", "partyName", "party.name"), _is_text),
    FieldRule("date", ("invoiceDate", "saleDate", "date", "createdAt")),
    FieldRule("amount", ("totals.finalTotal", "finalTotal", "total", "grandTotal", "amount")),
    FieldRule("paid_amount", ("payment.paidAmount", "paidAmount", "paymentReceived", "amountPaid")),
    FieldRule("due_date", ("payment.dueDate", "dueDate")),
    FieldRule("reference", ("invoiceNumber", "saleNumber", "reference"), _is_text),
    FieldRule("history", ("payment.paymentHistory", "paymentHistory", "payments"), _is_list),
    FieldRule("status", ("payment.status", "paymentStatus", "status"), _is_text),
)

PURCHASE_FIELDS: tuple[FieldRule, ...] = (
    ID_RULE,
    FieldRule(
        "party_id",
        (
            "supplier._id",
            "supplier.id",
            "supplierId",
            "partyId",
            "party._id",
            "party.id",
            "supplier",
            "party",
        ),
        _is_id,
    ),
    FieldRule("party_name", ("supplier.name", "supplierName", "partyName", "party.name"), _is_text),
    FieldRule("date", ("purchaseDate", "billDate", "invoiceDate", "date", "createdAt")),
    FieldRule("amount", ("totals.finalTotal", "finalTotal", "total", "grandTotal", "amount")),
    FieldRule(
        "paid_amount",
        ("payment.paidAmount", "paidAmount", "paymentReceived", "paymentAmount", "amountPaid"),
    ),
    FieldRule("due_date", ("payment.dueDate", "dueDate")),
    FieldRule(
        "reference",
        ("purchaseNumber", "billNumber", "supplierInvoiceNumber", "invoiceNumber", "reference"),
        _is_text,
    ),
    FieldRule("history", ("payment.paymentHistory", "paymentHistory", "payments"), _is_list),
    FieldRule("status", ("payment.status", "paymentStatus", "status"), _is_text),
)

PAYMENT_FIELDS: tuple[FieldRule, ...] = (
    ID_RULE,
    FieldRule(
        "party_id",
        ("party._id", "party.id", "partyId", "party", "customerId", "supplierId"),
        _is_id,
    ),
    FieldRule("party_name", ("partyName", "party.name"), _is_text),
    FieldRule("date", ("paymentDate", "date", "createdAt")),
    FieldRule("amount", ("amount", "totals.finalTotal", "total")),
    FieldRule("due_date", ("dueDate",)),
    FieldRule("reference", ("paymentNumber", "reference"), _is_text),
    FieldRule("payment_number", ("paymentNumber", "number"), _is_text),
    FieldRule("payment_type", ("type", "paymentType"), _is_text),
    FieldRule("payment_method", ("paymentMethod", "method"), _is_text),
    FieldRule(
        "bank_account_id",
        ("bankAccountId", "bankAccount._id", "bankAccount.id", "bankAccount"),
        _is_id,
    ),
    FieldRule(
        "allocations",
        ("invoiceAllocations", "allocations", "purchaseInvoiceAllocations"),
        _is_list,
    ),
    FieldRule("status", ("status",), _is_text),
)

FIELD_TABLES: dict[TransactionKind, tuple[FieldRule, ...]] = {
    TransactionKind.SALE: SALE_FIELDS,
    TransactionKind.PURCHASE: PURCHASE_FIELDS,
    TransactionKind.PAYMENT: PAYMENT_FIELDS,
}

ALLOCATION_ID_PATHS = ("invoiceId", "purchaseInvoiceId", "saleId", "invoice._id", "invoice.id")
ALLOCATION_AMOUNT_PATHS = ("allocatedAmount", "allocationAmount", "amount")


def lookup(raw: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts; _MISSING when absent."""
    current = raw
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return _MISSING if current is None else current


def resolve(raw: dict[str, Any], rule: FieldRule) -> tuple[Any, str | None]:
    """Return the winning value and the path it came from."""
    for path in rule.paths:
        value = lookup(raw, path)
        if value is _MISSING:
            continue
        if rule.accepts(value):
            return value, path
    return None, None


def resolve_all(raw: dict[str, Any], rule: FieldRule) -> list[Any]:
    """Every acceptable value for a rule, in precedence order, deduplicated."""
    found: list[Any] = []
    for path in rule.paths:
        value = lookup(raw, path)
        if value is _MISSING or not rule.accepts(value):
            continue
        if value not in found:
            found.append(value)
    return found


def unwrap_record(raw: dict[str, Any]) -> dict[str, Any]:
    """Peel response wrappers such as ``{"data": {...}}`` or ``{"bill": {...}}``."""
    record = raw
    while isinstance(record, dict) and not _is_id(record.get("_id") or record.get("id")):
        inner = next(
            (record[key] for key in WRAPPER_KEYS if isinstance(record.get(key), dict)),
            None,
        )
        if inner is None:
            break
        record = inner
    return record


def _synthetic_id(raw: dict[str, Any]) -> str:
    payload = json.dumps(raw, sort_keys=True, default=str)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()[:24]


def synthesize_reference(kind: TransactionKind, record_id: str) -> str:
    """Fallback reference such as ``SALE-1a2b3c4d``."""
    return f"{REFERENCE_PREFIXES[kind]}-{record_id[-8:]}"


def _history_total(entries: list[Any]) -> Decimal:
    total = ZERO
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        if str(entry.get("status") or "").lower() in ("cancelled", "deleted"):
            continue
        amount = parse_amount(entry.get("amount"))
        if amount is not None and amount > 0:
            total += amount
    return total


def _allocations(entries: list[Any]) -> tuple[InvoiceAllocation, ...]:
    result: list[InvoiceAllocation] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        invoice_id = next(
            (v for v in (lookup(entry, p) for p in ALLOCATION_ID_PATHS) if _is_id(v)),
            None,
        )
        amount = next(
            (
                a
                for a in (parse_amount(lookup(entry, p)) for p in ALLOCATION_AMOUNT_PATHS)
                if a is not None
            ),
            None,
        )
        if invoice_id is None or amount is None or amount <= 0:
            continue
        number = entry.get("invoiceNumber")
        result.append(
            InvoiceAllocation(
                invoice_id=str(invoice_id),
                allocated_amount=amount,
                invoice_number=str(number) if number else None,
            )
        )
    return tuple(result)


def normalize(raw: dict[str, Any], kind: TransactionKind | str) -> CanonicalTransaction:
    """Map one raw sale, purchase or payment record to a CanonicalTransaction."""
    if not isinstance(raw, dict):
        raise TypeError(f"Expected a mapping, got {type(raw).__name__}")
    kind = TransactionKind(kind)
    record = unwrap_record(raw)
    table = {rule.name: rule for rule in FIELD_TABLES[kind]}
    issues: list[str] = []

    def value(name: str) -> Any:
        return resolve(record, table[name])[0]

    record_id = value("id")
    if record_id is None:
        record_id = _synthetic_id(record)
        issues.append("missing_id")
    record_id = str(record_id)

    raw_amount = value("amount")
    amount = parse_amount(raw_amount) if raw_amount is not None else ZERO
    if amount is None:
        amount = ZERO
        issues.append("invalid_amount")
    elif amount < 0:
        amount = ZERO
        issues.append("negative_amount")

    raw_date = value("date")
    txn_date = parse_date(raw_date)
    if txn_date is None:
        issues.append("invalid_date")

    due_date = parse_date(value("due_date"))

    history_paid: Decimal | None = None
    paid_amount = ZERO
    if "history" in table:
        history = value("history")
        if history is not None:
            history_paid = _history_total(history)
        paid = parse_amount(value("paid_amount"))
        if paid is not None:
            paid_amount = max(ZERO, paid)
        elif history_paid is not None:
            paid_amount = history_paid

    party_refs = tuple(str(ref) for ref in resolve_all(record, table["party_id"]))
    party_name = value("party_name") or ""

    reference = value("reference")
    if reference is None:
        reference = synthesize_reference(kind, record_id)

    payment_type: PaymentType | None = None
    payment_method: PaymentMethod | None = None
    bank_account_id: str | None = None
    payment_number: str | None = None
    allocations: tuple[InvoiceAllocation, ...] = ()
    if kind is TransactionKind.PAYMENT:
        payment_type = PAYMENT_TYPE_ALIASES.get(str(value("payment_type")).lower())
        if payment_type is None:
            issues.append("unknown_payment_type")
        method = value("payment_method")
        if method is not None:
            try:
                payment_method = PaymentMethod(str(method).lower())
            except ValueError:
                issues.append("unknown_payment_method")
        bank = value("bank_account_id")
        bank_account_id = str(bank) if bank is not None else None
        allocations = _allocations(value("allocations") or [])
        number = value("payment_number")
        payment_number = str(number) if number is not None else None

    status = value("status")
    return CanonicalTransaction(
        id=record_id,
        kind=kind,
        amount=amount,
        reference=str(reference),
        date=txn_date,
        party_id=party_refs[0] if party_refs else None,
        party_name=str(party_name).strip(),
        party_refs=party_refs,
        paid_amount=paid_amount,
        history_paid=history_paid,
        due_date=due_date,
        stored_status=str(status) if status is not None else None,
        payment_type=payment_type,
        payment_method=payment_method,
        bank_account_id=bank_account_id,
        allocations=allocations,
        payment_number=payment_number,
        invalid=any(issue in ("invalid_amount", "negative_amount") for issue in issues),
        issues=tuple(issues),
    )


def normalize_many(
    raws: Iterable[Any], kind: TransactionKind | str
) -> list[CanonicalTransaction]:
    """Normalize a batch; records that are not mappings are skipped and logged."""
    kind = TransactionKind(kind)
    results: list[CanonicalTransaction] = []
    skipped = 0
    for raw in raws:
        if not isinstance(raw, dict):
            skipped += 1
            continue
        results.append(normalize(raw, kind))

    invalid = sum(1 for r in results if r.invalid)
    if skipped or invalid:
        logger.warning(
            "normalize_batch_issues",
            kind=kind.value,
            records=len(results),
            invalid=invalid,
            skipped=skipped,
        )
    return results
