"""Tests for summary loading and the payment workflow."""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from daybook.clients.backend import BackendAPIClient, Page, PaymentReceipt
from daybook.dashboard import DashboardLoader, PaymentWorkflow, gather_settled
from daybook.errors import BackendAPIError, BankEffectError, PartialDataError
from daybook.events import AuditLog, EventType
from daybook.models import DaySummary, Payment, PaymentStatus
from daybook.normalizer import normalize

SALE_ID = "65f0c2a1b4e8d9f0sale0001"


@pytest.fixture
def client():
    """Backend client with every endpoint mocked."""
    return AsyncMock(spec=BackendAPIClient)


async def _value(value):
    return value


async def _fail(message):
    raise BackendAPIError(message, status_code=500)


class TestGatherSettled:
    """Tests for the all-settle fetch."""

    @pytest.mark.asyncio
    async def test_failures_do_not_cancel_others(self):
        results, failures = await gather_settled(
            {"a": _value(1), "b": _fail("boom"), "c": _value(3)}
        )

        assert results == {"a": 1, "c": 3}
        assert failures == {"b": "boom"}


class TestDaySummary:
    """Tests for loading the day summary."""

    @pytest.mark.asyncio
    async def test_all_sections_live(self, client, today):
        client.get_sales_payment_summary.return_value = {
            "totalPending": 5000,
            "totalOverdue": 2000,
            "totalInvoices": 4,
        }
        client.get_purchase_payment_summary.return_value = {
            "summary": {"totalPending": 1200, "overdueAmount": 300}
        }
        client.get_collection_efficiency.return_value = {"collectionRate": 82.5}
        client.get_payment_efficiency.return_value = {"efficiency": 90, "averageDays": 12}

        report = await DashboardLoader(client).load_day_summary(today)

        assert report.summary.total_receivables == Decimal("5000")
        assert report.summary.overdue_receivables == Decimal("2000")
        assert report.summary.receivables_count == 4
        assert report.summary.total_payables == Decimal("1200")
        assert report.summary.overdue_payables == Decimal("300")
        assert report.collection_efficiency == Decimal("82.5")
        assert report.payment_efficiency == Decimal("90")
        assert report.avg_payment_days == 12
        assert report.has_real_data
        assert report.data_source == "services"
        assert not report.is_partial
        assert all(message is None for message in report.api_errors.values())
        client.get_sales_payment_summary.assert_awaited_once_with("2024-03-15", "2024-03-15")

    @pytest.mark.asyncio
    async def test_e_failed_receivables_fall_back(self, client, today):
        client.get_sales_payment_summary.side_effect = BackendAPIError(
            "Server error. Please try again later.", status_code=500
        )
        client.get_purchase_payment_summary.return_value = {"totalPending": 900}
        client.get_collection_efficiency.return_value = {}
        client.get_payment_efficiency.return_value = {}
        fallback = DaySummary(
            as_of=today,
            total_receivables=Decimal("1500"),
            overdue_receivables=Decimal("1000"),
            total_payables=Decimal("800"),
            total_cash_in=Decimal("250"),
        )
        audit = AuditLog()

        report = await DashboardLoader(client, audit).load_day_summary(today, fallback)

        assert report.summary.total_receivables == Decimal("1500")
        assert report.summary.overdue_receivables == Decimal("1000")
        assert report.summary.total_payables == Decimal("900")
        assert report.summary.total_cash_in == Decimal("250")
        assert report.api_errors["sales_summary"] == "Server error. Please try again later."
        assert report.api_errors["purchase_summary"] is None
        assert report.data_source == "fallback"
        assert not report.has_real_data
        assert isinstance(report.partial, PartialDataError)
        assert report.partial.sections == ["sales_summary"]
        assert audit.events_of(EventType.DATA_PARTIAL)

    @pytest.mark.asyncio
    async def test_zero_from_api_uses_fallback(self, client, today):
        client.get_sales_payment_summary.return_value = {"totalPending": 0}
        client.get_purchase_payment_summary.return_value = {}
        client.get_collection_efficiency.return_value = {}
        client.get_payment_efficiency.return_value = {}
        fallback = DaySummary(total_receivables=Decimal("700"))

        report = await DashboardLoader(client).load_day_summary(today, fallback)

        assert report.summary.total_receivables == Decimal("700")
        assert report.data_source == "services"


class TestPartySummary:
    """Tests for loading a party summary."""

    @pytest.mark.asyncio
    async def test_partial_party_summary(self, client, raw_sale, raw_payment):
        client.get_party.return_value = {"_id": "party-1", "name": "Sharma Traders"}
        client.list_sales.return_value = Page.from_payload([raw_sale], "sales")
        client.list_purchases.side_effect = BackendAPIError("Server error.", status_code=500)
        client.list_payments.return_value = Page.from_payload([raw_payment], "payments")
        client.get_party_payment_summary.return_value = {"collectionEfficiency": 40}

        summary = await DashboardLoader(client, policy="max").load_party_summary("party-1")

        assert summary.total_sales == Decimal("10000")
        assert summary.total_sales_paid == Decimal("4000")
        assert summary.sales_due == Decimal("6000")
        assert summary.total_purchases == Decimal("0")
        assert summary.collection_efficiency == Decimal("40")
        assert summary.api_errors["purchases"] == "Server error."
        assert summary.api_errors["sales"] is None
        assert summary.data_source == "fallback"
        assert not summary.has_real_data


class TestPaymentWorkflow:
    """Tests for validate, write, apply and refresh."""

    @pytest.fixture
    def workflow(self, client, book, raw_sale, raw_purchase):
        client.list_sales.return_value = Page.from_payload([raw_sale], "sales")
        client.list_purchases.return_value = Page.from_payload([raw_purchase], "purchases")
        client.get_party_payment_summary.return_value = {"totalPaid": 0}
        client.list_bank_accounts.return_value = [{"_id": "B1", "bankName": "State Bank"}]
        return PaymentWorkflow(client, book)

    @pytest.mark.asyncio
    async def test_invalid_payment_never_reaches_backend(self, workflow, client):
        result = await workflow.create_payment("party-1", "payment_in", 0)

        assert not result.success
        assert "Amount must be greater than zero" in result.message
        client.create_payment_in.assert_not_called()
        client.list_sales.assert_not_called()
        assert workflow.audit.events_of(EventType.ERROR)

    @pytest.mark.asyncio
    async def test_missing_bank_account(self, workflow, client):
        result = await workflow.create_payment("party-1", "payment_in", 100, "upi")

        assert not result.success
        client.create_payment_in.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_then_refresh(self, workflow, client, book, raw_sale):
        client.create_payment_in.return_value = PaymentReceipt.from_payload(
            {
                "payment": {"_id": "pay-9", "paymentNumber": "PAY-IN-000009"},
                "invoiceAllocations": [{"invoiceId": SALE_ID, "allocatedAmount": 4000}],
            }
        )
        refreshed_sale = {**raw_sale, "payment": {**raw_sale["payment"], "paidAmount": 4000}}
        client.list_sales.return_value = Page.from_payload([refreshed_sale], "sales")

        result = await workflow.create_payment(
            "party-1", "payment_in", 4000, "bank_transfer", "B1", date(2024, 3, 15)
        )

        assert result.success
        assert result.payment.id == "pay-9"
        assert result.payment.payment_number == "PAY-IN-000009"
        assert result.refresh_errors == {}
        body = client.create_payment_in.call_args.args[0]
        assert body["bankAccountId"] == "B1"
        assert body["paymentDate"] == "2024-03-15"
        # Refreshed paid amounts already include the new payment
        assert book.pending_amount(SALE_ID) == Decimal("6000")
        names = [call[0] for call in client.mock_calls]
        assert names.index("create_payment_in") < names.index("list_sales")

    @pytest.mark.asyncio
    async def test_backend_rejection(self, workflow, client, book):
        client.create_payment_in.side_effect = BackendAPIError(
            "Amount is required", status_code=400
        )

        result = await workflow.create_payment("party-1", "payment_in", 100)

        assert not result.success
        assert result.message == "Amount is required"
        assert book.payments == []
        client.list_sales.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_failures_are_reported(self, workflow, client):
        client.create_payment_out.return_value = PaymentReceipt.from_payload(
            {"payment": {"_id": "pay-10"}}
        )
        client.list_bank_accounts.side_effect = BackendAPIError("Server error.", status_code=500)

        result = await workflow.create_payment("party-2", "payment_out", 100)

        assert result.success
        assert result.refresh_errors == {"bank_accounts": "Server error."}
        assert workflow.audit.events_of(EventType.DATA_PARTIAL)

    @pytest.mark.asyncio
    async def test_delete(self, workflow, client, book):
        payment = book.record_payment("party-1", "payment_in", 100)
        client.cancel_payment.return_value = {"status": "cancelled"}

        result = await workflow.delete_payment(payment.id)

        assert result.success
        assert result.payment.status is PaymentStatus.CANCELLED
        client.cancel_payment.assert_awaited_once_with(payment.id, "Deleted by user")

    @pytest.mark.asyncio
    async def test_delete_cancelled_payment(self, workflow, client, book):
        payment = book.record_payment("party-1", "payment_in", 100)
        book.delete_payment(payment.id)

        result = await workflow.delete_payment(payment.id)

        assert not result.success
        client.cancel_payment.assert_not_called()

    @pytest.mark.asyncio
    async def test_edit(self, workflow, client, book):
        payment = book.record_payment(
            "party-1", "payment_in", 500, "bank_transfer", bank_account_id="B1"
        )
        client.update_payment.return_value = PaymentReceipt.from_payload(
            {"payment": {"_id": payment.id}}
        )

        result = await workflow.edit_payment(payment.id, payment_method="cash", bank_account_id=None)

        assert result.success
        body = client.update_payment.call_args.args[1]
        assert body["paymentMethod"] == "cash"
        assert "bankAccountId" not in body
        assert book.bank.balance("B1") == Decimal("0")
        assert body["amount"] == "500.00"

    @pytest.mark.asyncio
    async def test_edit_sends_payment_id_for_due_check(self, workflow, client, book):
        payment = book.record_payment(
            "party-1",
            "payment_in",
            8000,
            invoice_allocations=[{"invoiceId": SALE_ID, "allocatedAmount": 8000}],
        )
        client.update_payment.return_value = PaymentReceipt.from_payload(
            {"payment": {"_id": payment.id}}
        )

        result = await workflow.edit_payment(
            payment.id,
            amount=10000,
            invoice_allocations=[{"invoiceId": SALE_ID, "allocatedAmount": 10000}],
        )

        assert result.success
        assert result.warnings == []
        assert result.payment.allocated_total == Decimal("10000")

    @pytest.mark.asyncio
    async def test_edit_rejects_unknown_fields_before_write(self, workflow, client, book):
        payment = book.record_payment("party-1", "payment_in", 100)

        result = await workflow.edit_payment(payment.id, party_id="party-2")

        assert not result.success
        client.update_payment.assert_not_called()


class TestWorkflowAfterBackendWrite:
    """A write the backend accepted is reported as done even if the book lags."""

    @pytest.fixture
    def workflow(self, client, book, raw_sale, raw_purchase):
        client.list_sales.return_value = Page.from_payload([raw_sale], "sales")
        client.list_purchases.return_value = Page.from_payload([raw_purchase], "purchases")
        client.get_party_payment_summary.return_value = {}
        client.list_bank_accounts.return_value = [{"_id": "B1", "bankName": "State Bank"}]
        return PaymentWorkflow(client, book)

    @pytest.mark.asyncio
    async def test_allocation_to_unloaded_invoice(self, workflow, client, book):
        client.create_payment_in.return_value = PaymentReceipt.from_payload(
            {
                "payment": {"_id": "pay-11", "paymentNumber": "PAY-IN-000011"},
                "invoiceAllocations": [
                    {"invoiceId": "older-invoice-not-loaded", "allocatedAmount": 300},
                    {"invoiceId": SALE_ID, "allocatedAmount": 200},
                ],
            }
        )

        result = await workflow.create_payment("party-1", "payment_in", 500)

        assert result.success
        assert result.warnings == [
            "Allocation to invoice older-invoice-not-loaded is not loaded locally"
        ]
        assert [(a.invoice_id, a.allocated_amount) for a in result.payment.invoice_allocations] == [
            (SALE_ID, Decimal("200"))
        ]
        client.list_sales.assert_awaited_once()
        assert workflow.audit.events_of(EventType.SYNC_WARNING)
        assert not workflow.audit.events_of(EventType.ERROR)

    @pytest.mark.asyncio
    async def test_local_record_failure_still_refreshes(self, workflow, client, book):
        client.create_payment_in.return_value = PaymentReceipt.from_payload(
            {"payment": {"_id": "pay-12"}}
        )

        with patch.object(
            book, "record_payment", side_effect=BankEffectError("Bank account not found: B1")
        ):
            result = await workflow.create_payment("party-1", "payment_in", 100)

        assert result.success
        assert result.payment is None
        assert result.warnings == ["Bank account not found: B1"]
        client.list_sales.assert_awaited_once()
        client.list_bank_accounts.assert_awaited_once()
        event = workflow.audit.events_of(EventType.SYNC_WARNING)[0]
        assert event.data["details"]["action"] == "payment_create"

    @pytest.mark.asyncio
    async def test_local_edit_failure_keeps_stored_payment(self, workflow, client, book):
        payment = book.record_payment(
            "party-1", "payment_in", 500, "bank_transfer", bank_account_id="B1"
        )
        client.update_payment.return_value = PaymentReceipt.from_payload(
            {"payment": {"_id": payment.id}}
        )

        with patch.object(
            book,
            "edit_payment",
            side_effect=BankEffectError("Could not apply edited payment", rolled_back=True),
        ):
            result = await workflow.edit_payment(payment.id, amount=300)

        assert result.success
        assert result.payment is payment
        assert result.warnings == ["Could not apply edited payment"]
        client.list_sales.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_loaded_payment(self, workflow, client, book, raw_sale, raw_payment):
        settled = {**raw_sale, "payment": {**raw_sale["payment"], "paidAmount": 4000}}
        book.load_transactions([normalize(settled, "sale")])
        book.load_payments([Payment.from_canonical(normalize(raw_payment, "payment"))])
        book.bank.accounts["B1"].current_balance = Decimal("4000")
        client.list_bank_accounts.return_value = [
            {"_id": "B1", "bankName": "State Bank", "currentBalance": 0}
        ]

        result = await workflow.delete_payment(raw_payment["_id"])

        assert result.success
        assert result.warnings == []
        assert book.pending_amount(SALE_ID) == Decimal("10000")
        assert book.bank.balance("B1") == Decimal("0")
