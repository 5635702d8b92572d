"""Loading summaries from the backend and running payment writes.

Parallel fetches use an all-settle policy: every request runs to completion
and a failed section is replaced by local data instead of failing the whole
view. Writes are followed by a refresh of the affected data, started only
after the write has completed.
"""

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import structlog

from daybook.clients.backend import BackendAPIClient, PaymentReceipt
from daybook.errors import (
    DaybookError,
    InvalidTransitionError,
    PartialDataError,
    ValidationError,
    user_message,
)
from daybook.events import AuditLog, error_event, partial_data, sync_warning
from daybook.formatting import ZERO, format_date_for_api, parse_amount, parse_date, to_date
from daybook.models import (
    BankAccount,
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
from daybook.normalizer import lookup, normalize_many
from daybook.payments import (
    DEFAULT_CANCEL_REASON,
    EDITABLE_FIELDS,
    PaymentBook,
    coerce_allocations,
)
from daybook.reconciliation import PaidAmountPolicy, summarize

logger = structlog.get_logger(__name__)

DAY_SECTIONS = ("sales_summary", "purchase_summary", "sales_efficiency", "purchase_efficiency")
PARTY_SECTIONS = ("sales", "purchases", "payments", "payment_summary")


async def gather_settled(calls: dict[str, Awaitable[Any]]) -> tuple[dict[str, Any], dict[str, str]]:
    """Run named awaitables concurrently and split results from failures.

    No call is cancelled when another fails. Failures map the section name
    to a user-facing message.
    """
    names = list(calls)
    outcomes = await asyncio.gather(*calls.values(), return_exceptions=True)
    results: dict[str, Any] = {}
    failures: dict[str, str] = {}
    for name, outcome in zip(names, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            failures[name] = user_message(outcome)
            logger.warning("summary_section_failed", section=name, error=failures[name])
        else:
            results[name] = outcome
    return results, failures


def _first_amount(payload: dict[str, Any], *paths: str) -> Decimal | None:
    """First non-zero amount found along ``paths``.

    Zero counts as missing, matching the backend's habit of reporting 0 for
    totals it did not compute.
    """
    for path in paths:
        value = parse_amount(lookup(payload, path))
        if value:
            return value
    return None


def _first_count(payload: dict[str, Any], *paths: str) -> int | None:
    value = _first_amount(payload, *paths)
    return int(value) if value is not None else None


@dataclass
class DayBookSummary:
    """Day book position with per-section provenance."""

    summary: DaySummary
    collection_efficiency: Decimal | None = None
    payment_efficiency: Decimal | None = None
    avg_collection_days: int | None = None
    avg_payment_days: int | None = None
    api_errors: dict[str, str | None] = field(default_factory=dict)
    has_real_data: bool = True
    data_source: str = "services"
    partial: PartialDataError | None = None

    @property
    def is_partial(self) -> bool:
        return self.partial is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.summary.to_dict(),
            "collection_efficiency": self.collection_efficiency,
            "payment_efficiency": self.payment_efficiency,
            "avg_collection_days": self.avg_collection_days,
            "avg_payment_days": self.avg_payment_days,
            "api_errors": dict(self.api_errors),
            "has_real_data": self.has_real_data,
            "data_source": self.data_source,
        }


class DashboardLoader:
    """Builds summaries from several backend endpoints at once."""

    def __init__(
        self,
        client: BackendAPIClient,
        audit: AuditLog | None = None,
        policy: PaidAmountPolicy | str | None = None,
    ):
        self.client = client
        self.audit = audit or AuditLog()
        self.policy = policy
        self._logger = logger.bind(component="dashboard_loader")

    def _record_partial(self, failures: dict[str, str]) -> PartialDataError | None:
        if not failures:
            return None
        self.audit.record(partial_data(failures))
        return PartialDataError(failures)

    async def load_day_summary(
        self,
        as_of: date | datetime | None = None,
        fallback: DaySummary | None = None,
    ) -> DayBookSummary:
        """Receivables and payables for a day from the analytics endpoints.

        Sections that fail keep the values from ``fallback``; the result is
        still returned and carries a ``PartialDataError`` describing them.
        """
        today = to_date(as_of or date.today())
        fallback = fallback or DaySummary(as_of=today)
        day = format_date_for_api(today)

        results, failures = await gather_settled(
            {
                "sales_summary": self.client.get_sales_payment_summary(day, day),
                "purchase_summary": self.client.get_purchase_payment_summary(day, day),
                "sales_efficiency": self.client.get_collection_efficiency(),
                "purchase_efficiency": self.client.get_payment_efficiency(),
            }
        )

        sales = results.get("sales_summary") or {}
        purchases = results.get("purchase_summary") or {}
        sales_eff = results.get("sales_efficiency") or {}
        purchase_eff = results.get("purchase_efficiency") or {}

        def pick(payload: dict[str, Any], local: Decimal, *paths: str) -> Decimal:
            value = _first_amount(payload, *paths)
            return local if value is None else value

        def pick_count(payload: dict[str, Any], local: int, *paths: str) -> int:
            value = _first_count(payload, *paths)
            return local if value is None else value

        summary = DaySummary(
            as_of=today,
            total_receivables=pick(
                sales, fallback.total_receivables, "totalPending", "summary.totalPending"
            ),
            overdue_receivables=pick(
                sales, fallback.overdue_receivables, "totalOverdue", "summary.overdueAmount"
            ),
            due_today_receivables=pick(
                sales,
                fallback.due_today_receivables,
                "dueTodayAmount",
                "summary.dueTodayAmount",
            ),
            receivables_count=pick_count(
                sales, fallback.receivables_count, "totalInvoices", "summary.totalInvoices"
            ),
            overdue_receivables_count=pick_count(
                sales,
                fallback.overdue_receivables_count,
                "overdueCount",
                "summary.overdueCount",
            ),
            due_today_receivables_count=pick_count(
                sales,
                fallback.due_today_receivables_count,
                "dueTodayCount",
                "summary.dueTodayCount",
            ),
            total_payables=pick(
                purchases, fallback.total_payables, "totalPending", "summary.totalPending"
            ),
            overdue_payables=pick(
                purchases, fallback.overdue_payables, "totalOverdue", "summary.overdueAmount"
            ),
            due_today_payables=pick(
                purchases,
                fallback.due_today_payables,
                "dueTodayAmount",
                "summary.dueTodayAmount",
            ),
            payables_count=pick_count(
                purchases, fallback.payables_count, "totalInvoices", "summary.totalInvoices"
            ),
            overdue_payables_count=pick_count(
                purchases,
                fallback.overdue_payables_count,
                "overdueCount",
                "summary.overdueCount",
            ),
            due_today_payables_count=pick_count(
                purchases,
                fallback.due_today_payables_count,
                "dueTodayCount",
                "summary.dueTodayCount",
            ),
            total_cash_in=fallback.total_cash_in,
            total_cash_out=fallback.total_cash_out,
        )

        partial = self._record_partial(failures)
        report = DayBookSummary(
            summary=summary,
            collection_efficiency=_first_amount(sales_eff, "collectionRate", "efficiency"),
            payment_efficiency=_first_amount(purchase_eff, "paymentRate", "efficiency"),
            avg_collection_days=_first_count(sales_eff, "avgCollectionDays", "averageDays"),
            avg_payment_days=_first_count(purchase_eff, "avgPaymentDays", "averageDays"),
            api_errors={name: failures.get(name) for name in DAY_SECTIONS},
            has_real_data=not failures,
            data_source="fallback" if failures else "services",
            partial=partial,
        )
        self._logger.info(
            "day_summary_loaded",
            as_of=day,
            data_source=report.data_source,
            failed_sections=sorted(failures),
        )
        return report

    async def load_party_summary(self, party: Party | str) -> PartySummary:
        """Reconcile one party from its sales, purchases and payments."""
        if isinstance(party, str):
            party = Party.from_api(await self.client.get_party(party))

        results, failures = await gather_settled(
            {
                "sales": self.client.list_sales(party_id=party.id),
                "purchases": self.client.list_purchases(party_id=party.id),
                "payments": self.client.list_payments(party_id=party.id),
                "payment_summary": self.client.get_party_payment_summary(party.id),
            }
        )

        transactions = []
        if "sales" in results:
            transactions += normalize_many(results["sales"].items, TransactionKind.SALE)
        if "purchases" in results:
            transactions += normalize_many(results["purchases"].items, TransactionKind.PURCHASE)
        payments = []
        if "payments" in results:
            payments = [
                Payment.from_canonical(record)
                for record in normalize_many(results["payments"].items, TransactionKind.PAYMENT)
            ]

        policy = PaidAmountPolicy(self.policy) if self.policy else PaidAmountPolicy.MAX
        summary = summarize(party, transactions, payments, policy)

        stats = results.get("payment_summary") or {}
        summary.collection_efficiency = _first_amount(
            stats, "collectionEfficiency", "collectionRate", "efficiency"
        )
        summary.payment_efficiency = _first_amount(stats, "paymentEfficiency", "paymentRate")
        summary.avg_collection_days = _first_count(
            stats, "avgCollectionDays", "averageDays"
        )
        summary.avg_payment_days = _first_count(stats, "avgPaymentDays")

        self._record_partial(failures)
        summary.api_errors = {name: failures.get(name) for name in PARTY_SECTIONS}
        summary.has_real_data = not failures
        summary.data_source = "fallback" if failures else "services"
        self._logger.info(
            "party_summary_loaded",
            party_id=party.id,
            data_source=summary.data_source,
            failed_sections=sorted(failures),
        )
        return summary


@dataclass
class WorkflowResult:
    """Outcome of a payment write as shown to the user."""

    success: bool
    message: str
    payment: Payment | None = None
    receipt: PaymentReceipt | None = None
    error: Exception | None = None
    refresh_errors: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class PaymentWorkflow:
    """Validate, write, apply and refresh a payment change.

    Validation happens locally first; an invalid payment never reaches the
    backend. Once the backend accepts a write the result is a success: the
    change is mirrored in the book where possible (anything that cannot be
    mirrored becomes a warning), then party transactions, the payment
    summary and bank accounts are fetched again concurrently.
    """

    def __init__(
        self,
        client: BackendAPIClient,
        book: PaymentBook,
        audit: AuditLog | None = None,
    ):
        self.client = client
        self.book = book
        self.audit = audit or book.audit
        self.payment_summary: dict[str, Any] = {}
        self._logger = logger.bind(component="payment_workflow")

    def _failed(self, action: str, exc: Exception) -> WorkflowResult:
        message = user_message(exc)
        self._logger.error(f"{action}_failed", error=message, error_type=type(exc).__name__)
        self.audit.record(error_event(message, {"action": action}))
        return WorkflowResult(success=False, message=message, error=exc)

    def _warn(self, action: str, message: str, warnings: list[str], **details: Any) -> None:
        self._logger.warning(f"{action}_not_mirrored", warning=message, **details)
        self.audit.record(sync_warning(message, {"action": action, **details}))
        warnings.append(message)

    def _known_allocations(
        self, receipt: PaymentReceipt, warnings: list[str]
    ) -> list[InvoiceAllocation]:
        """Receipt allocations whose invoices are loaded in the book."""
        loaded = {t.id for t in self.book.transactions}
        known = []
        for allocation in receipt.allocations:
            if allocation.invoice_id in loaded:
                known.append(allocation)
                continue
            label = allocation.invoice_id or allocation.invoice_number or "unknown"
            self._warn(
                "payment_create",
                f"Allocation to invoice {label} is not loaded locally",
                warnings,
                payment_id=receipt.payment_id,
                allocated_amount=str(allocation.allocated_amount),
            )
        return known

    async def refresh(self, party_id: str) -> dict[str, str]:
        """Fetch the party's transactions, payment summary and bank accounts."""
        results, failures = await gather_settled(
            {
                "sales": self.client.list_sales(party_id=party_id),
                "purchases": self.client.list_purchases(party_id=party_id),
                "payment_summary": self.client.get_party_payment_summary(party_id),
                "bank_accounts": self.client.list_bank_accounts(),
            }
        )

        if "sales" in results and "purchases" in results:
            self.book.load_transactions(
                normalize_many(results["sales"].items, TransactionKind.SALE)
                + normalize_many(results["purchases"].items, TransactionKind.PURCHASE)
            )
            # Fresh paid amounts already include this party's payments.
            self.book.load_payments(
                p for p in self.book.payments if p.party_id == party_id
            )
        if "payment_summary" in results:
            self.payment_summary = results["payment_summary"]
        if "bank_accounts" in results:
            self.book.load_bank_accounts(
                BankAccount.from_api(raw) for raw in results["bank_accounts"]
            )
        if failures:
            self.audit.record(partial_data(failures))
        return failures

    @staticmethod
    def _payment_body(payment: Payment) -> dict[str, Any]:
        body: dict[str, Any] = {
            "partyId": payment.party_id,
            "partyName": payment.party_name,
            "amount": str(payment.amount),
            "paymentMethod": payment.payment_method.value,
            "paymentDate": format_date_for_api(payment.payment_date),
            "reference": payment.reference,
            "notes": payment.notes,
        }
        if payment.bank_account_id:
            body["bankAccountId"] = payment.bank_account_id
        if payment.invoice_allocations:
            body["invoiceAllocations"] = [
                {
                    "invoiceId": a.invoice_id,
                    "allocatedAmount": str(a.allocated_amount),
                    "invoiceNumber": a.invoice_number,
                }
                for a in payment.invoice_allocations
            ]
        return body

    async def create_payment(
        self,
        party_id: str,
        payment_type: PaymentType | str,
        amount: Any,
        payment_method: PaymentMethod | str = PaymentMethod.CASH,
        bank_account_id: str | None = None,
        payment_date: date | str | None = None,
        invoice_allocations: list[Any] | None = None,
        reference: str = "",
        notes: str = "",
    ) -> WorkflowResult:
        try:
            self.book.validate_payment(
                party_id,
                payment_type,
                amount,
                payment_method,
                bank_account_id,
                invoice_allocations,
            )
            party = self.book.get_party(party_id)
            method = PaymentMethod(payment_method)
            draft = Payment(
                id="",
                party_id=party.id,
                party_name=party.name,
                type=PaymentType(payment_type),
                amount=parse_amount(amount) or ZERO,
                payment_method=method,
                payment_date=parse_date(payment_date) or date.today(),
                bank_account_id=None if method.is_cash else bank_account_id,
                invoice_allocations=coerce_allocations(invoice_allocations) or [],
                reference=reference,
                notes=notes,
            )
            body = self._payment_body(draft)

            if draft.type is PaymentType.PAYMENT_IN:
                receipt = await self.client.create_payment_in(body)
            else:
                receipt = await self.client.create_payment_out(body)
        except (DaybookError, ValueError) as exc:
            return self._failed("payment_create", exc)

        warnings: list[str] = []
        allocations = (
            self._known_allocations(receipt, warnings)
            if receipt.allocations
            else invoice_allocations
        )
        payment = None
        try:
            payment = self.book.record_payment(
                party_id,
                draft.type,
                draft.amount,
                draft.payment_method,
                bank_account_id,
                draft.payment_date,
                allocations,
                reference,
                notes,
                payment_id=receipt.payment_id or None,
            )
            if receipt.payment.get("paymentNumber"):
                payment.payment_number = receipt.payment["paymentNumber"]
        except DaybookError as exc:
            self._warn(
                "payment_create", user_message(exc), warnings, payment_id=receipt.payment_id
            )

        refresh_errors = await self.refresh(party_id)
        return WorkflowResult(
            success=True,
            message="Payment recorded successfully",
            payment=payment,
            receipt=receipt,
            refresh_errors=refresh_errors,
            warnings=warnings,
        )

    async def edit_payment(self, payment_id: str, **changes: Any) -> WorkflowResult:
        try:
            unknown = set(changes) - EDITABLE_FIELDS
            if unknown:
                raise ValidationError(
                    errors=[f"Field cannot be edited: {name}" for name in sorted(unknown)]
                )
            current = self.book.get_payment(payment_id)
            if current.status is PaymentStatus.CANCELLED:
                raise InvalidTransitionError(
                    payment_id, current.status.value, PaymentStatus.COMPLETED.value
                )
            self.book.validate_payment(
                current.party_id,
                current.type,
                changes.get("amount", current.amount),
                changes.get("payment_method", current.payment_method),
                changes.get("bank_account_id", current.bank_account_id),
                changes.get("invoice_allocations"),
                payment_id=payment_id,
            )
            preview = current.snapshot()
            preview.amount = parse_amount(changes.get("amount", current.amount)) or ZERO
            preview.payment_method = PaymentMethod(
                changes.get("payment_method", current.payment_method)
            )
            preview.bank_account_id = (
                None
                if preview.payment_method.is_cash
                else changes.get("bank_account_id", current.bank_account_id)
            )
            preview.reference = changes.get("reference", current.reference)
            preview.notes = changes.get("notes", current.notes)
            if "payment_date" in changes:
                preview.payment_date = (
                    parse_date(changes["payment_date"]) or current.payment_date
                )
            if "invoice_allocations" in changes:
                preview.invoice_allocations = (
                    coerce_allocations(changes["invoice_allocations"]) or []
                )

            receipt = await self.client.update_payment(payment_id, self._payment_body(preview))
        except (DaybookError, ValueError) as exc:
            return self._failed("payment_edit", exc)

        warnings: list[str] = []
        try:
            payment = self.book.edit_payment(payment_id, **changes)
        except DaybookError as exc:
            payment = current
            self._warn("payment_edit", user_message(exc), warnings, payment_id=payment_id)

        refresh_errors = await self.refresh(payment.party_id)
        return WorkflowResult(
            success=True,
            message="Payment updated successfully",
            payment=payment,
            receipt=receipt,
            refresh_errors=refresh_errors,
            warnings=warnings,
        )

    async def delete_payment(self, payment_id: str, reason: str | None = None) -> WorkflowResult:
        try:
            current = self.book.get_payment(payment_id)
            if current.status is PaymentStatus.CANCELLED:
                raise InvalidTransitionError(
                    payment_id, current.status.value, PaymentStatus.CANCELLED.value
                )
            await self.client.cancel_payment(payment_id, reason or DEFAULT_CANCEL_REASON)
        except DaybookError as exc:
            return self._failed("payment_delete", exc)

        warnings: list[str] = []
        try:
            payment = self.book.delete_payment(payment_id, reason)
        except DaybookError as exc:
            payment = current
            self._warn("payment_delete", user_message(exc), warnings, payment_id=payment_id)

        refresh_errors = await self.refresh(payment.party_id)
        return WorkflowResult(
            success=True,
            message="Payment deleted successfully",
            payment=payment,
            refresh_errors=refresh_errors,
            warnings=warnings,
        )
