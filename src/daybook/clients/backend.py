"""Async client for the accounting backend's REST API.

Responses arrive in a ``{success, data, message}`` envelope. The client
unwraps it, turns rejections into ``BackendAPIError`` and leaves record
normalization to ``daybook.normalizer``.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

import httpx
import structlog

from daybook.config import get_settings
from daybook.errors import BackendAPIError, NotFoundError
from daybook.formatting import ZERO, format_date_for_api, parse_amount
from daybook.models import InvoiceAllocation

logger = structlog.get_logger(__name__)

STATUS_MESSAGES = {
    401: "Authentication required. Please login again.",
    403: "Access denied. You do not have permission for this operation.",
    404: "Payment or resource not found.",
    500: "Server error. Please try again later.",
}

BAD_REQUEST_MESSAGE = "Invalid payment data. Please check all required fields."


@dataclass
class Page:
    """One page of a paginated list response."""

    items: list[dict[str, Any]] = field(default_factory=list)
    current_page: int = 1
    total_pages: int = 1
    total_records: int = 0

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages

    @classmethod
    def from_payload(cls, payload: Any, key: str) -> "Page":
        """Build a page from ``{key: [...], pagination: {...}}`` or a bare list."""
        if isinstance(payload, list):
            return cls(items=payload, total_records=len(payload))
        if not isinstance(payload, dict):
            return cls()
        items = payload.get(key)
        if not isinstance(items, list):
            items = payload.get("items") if isinstance(payload.get("items"), list) else []
        pagination = payload.get("pagination") or {}
        return cls(
            items=[i for i in items if isinstance(i, dict)],
            current_page=int(pagination.get("currentPage") or 1),
            total_pages=int(pagination.get("totalPages") or 1),
            total_records=int(pagination.get("totalRecords") or len(items)),
        )


@dataclass
class PaymentReceipt:
    """What the backend reports after creating or updating a payment."""

    payment: dict[str, Any]
    bank_transaction_created: bool = False
    bank_transaction: dict[str, Any] | None = None
    invoices_updated: int = 0
    allocations: list[InvoiceAllocation] = field(default_factory=list)
    remaining_amount: Decimal = ZERO
    party_balance: Decimal | None = None

    @property
    def payment_id(self) -> str:
        return str(self.payment.get("_id") or self.payment.get("id") or "")

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "PaymentReceipt":
        payment = data.get("payment")
        if not isinstance(payment, dict):
            payment = data
        allocations = []
        for entry in data.get("invoiceAllocations") or data.get("allocations") or []:
            if not isinstance(entry, dict):
                continue
            amount = parse_amount(entry.get("allocatedAmount"))
            allocations.append(
                InvoiceAllocation(
                    invoice_id=str(entry.get("invoiceId") or entry.get("_id") or ""),
                    allocated_amount=amount if amount is not None else ZERO,
                    invoice_number=entry.get("invoiceNumber"),
                )
            )
        bank_transaction = data.get("bankTransaction")
        invoices_updated = data.get("totalInvoicesUpdated", data.get("invoicesUpdated"))
        return cls(
            payment=payment,
            bank_transaction_created=bool(
                data.get("bankTransactionCreated", bank_transaction is not None)
            ),
            bank_transaction=bank_transaction if isinstance(bank_transaction, dict) else None,
            invoices_updated=int(invoices_updated or 0),
            allocations=allocations,
            remaining_amount=parse_amount(data.get("remainingAmount")) or ZERO,
            party_balance=parse_amount(data.get("partyBalance")),
        )


def _error_message(status_code: int, body: Any) -> str | None:
    """User-facing message for a failed response."""
    body = body if isinstance(body, dict) else {}
    if status_code == 400:
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            return ", ".join(
                str(e.get("message") if isinstance(e, dict) else e) for e in errors
            )
        return body.get("error") or body.get("message") or BAD_REQUEST_MESSAGE
    if status_code in STATUS_MESSAGES:
        return STATUS_MESSAGES[status_code]
    return body.get("message") or body.get("error")


class BackendAPIClient:
    """Async client for sales, purchases, payments and bank accounts."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        company_id: str | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.api_url).rstrip("/")
        if token is None and settings.api_token is not None:
            token = settings.api_token.get_secret_value()
        self._token = token
        self.company_id = company_id or settings.company_id
        self._timeout = timeout or settings.timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "BackendAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _scoped(self, params: dict[str, Any] | None = None) -> dict[str, Any]:
        params = {k: v for k, v in (params or {}).items() if v is not None}
        if self.company_id and "companyId" not in params:
            params["companyId"] = self.company_id
        return params

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and return the unwrapped ``data`` payload."""
        client = await self._get_client()

        try:
            response = await client.request(
                method=method,
                url=path,
                params=self._scoped(params),
                json=json,
                headers=self._get_headers(),
            )
        except httpx.RequestError as e:
            logger.error("backend_request_failed", method=method, path=path, error=str(e))
            raise BackendAPIError(f"Request failed: {e}") from e

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {"message": response.text[:500] if response.text else None}

        if response.status_code >= 400:
            message = _error_message(response.status_code, body)
            logger.warning(
                "backend_request_rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                message=message,
            )
            if response.status_code == 404:
                raise NotFoundError("Resource", path, message=message)
            raise BackendAPIError(
                message, status_code=response.status_code, details=body
            )

        if isinstance(body, dict) and "success" in body:
            if not body["success"]:
                raise BackendAPIError(
                    body.get("message") or body.get("error"),
                    status_code=response.status_code,
                    details=body,
                )
            return body.get("data", {})
        return body

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Make GET request."""
        return await self._request("GET", path, params=params)

    async def post(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Make POST request."""
        return await self._request("POST", path, params=params, json=json)

    async def put(self, path: str, json: dict[str, Any] | None = None) -> Any:
        """Make PUT request."""
        return await self._request("PUT", path, json=json)

    async def patch(self, path: str, json: dict[str, Any] | None = None) -> Any:
        """Make PATCH request."""
        return await self._request("PATCH", path, json=json)

    @staticmethod
    def _as_dict(result: Any) -> dict[str, Any]:
        return result if isinstance(result, dict) else {}

    @staticmethod
    def _date_range(
        date_from: date | str | None, date_to: date | str | None
    ) -> dict[str, str | None]:
        return {
            "dateFrom": format_date_for_api(date_from) if date_from else None,
            "dateTo": format_date_for_api(date_to) if date_to else None,
        }

    # === Parties ===

    async def list_parties(self, page: int = 1, limit: int = 100) -> Page:
        result = await self.get(
            f"/companies/{self.company_id}/parties",
            params={"page": page, "limit": limit},
        )
        return Page.from_payload(result, "parties")

    async def get_party(self, party_id: str) -> dict[str, Any]:
        result = await self.get(f"/companies/{self.company_id}/parties/{party_id}")
        return self._as_dict(result)

    # === Sales and purchases ===

    async def list_sales(
        self,
        page: int = 1,
        limit: int = 100,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
        party_id: str | None = None,
    ) -> Page:
        result = await self.get(
            "/sales",
            params={
                "page": page,
                "limit": limit,
                "customer": party_id,
                **self._date_range(date_from, date_to),
            },
        )
        return Page.from_payload(result, "sales")

    async def list_purchases(
        self,
        page: int = 1,
        limit: int = 100,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
        party_id: str | None = None,
    ) -> Page:
        result = await self.get(
            "/purchases",
            params={
                "page": page,
                "limit": limit,
                "supplier": party_id,
                **self._date_range(date_from, date_to),
            },
        )
        return Page.from_payload(result, "purchases")

    async def get_sales_payment_summary(
        self, date_from: date | str | None = None, date_to: date | str | None = None
    ) -> dict[str, Any]:
        """Receivables totals including overdue and due-today amounts."""
        result = await self.get(
            "/sales/payment-summary-overdue", params=self._date_range(date_from, date_to)
        )
        return self._as_dict(result)

    async def get_purchase_payment_summary(
        self, date_from: date | str | None = None, date_to: date | str | None = None
    ) -> dict[str, Any]:
        """Payables totals including overdue and due-today amounts."""
        result = await self.get(
            "/purchases/payment-summary-overdue",
            params=self._date_range(date_from, date_to),
        )
        return self._as_dict(result)

    async def get_collection_efficiency(self) -> dict[str, Any]:
        result = await self.get("/sales/reports/summary")
        return self._as_dict(result)

    async def get_payment_efficiency(self) -> dict[str, Any]:
        result = await self.get("/purchases/reports/summary")
        return self._as_dict(result)

    # === Payments ===

    async def list_payments(
        self,
        party_id: str | None = None,
        page: int = 1,
        limit: int = 100,
        payment_type: str | None = None,
    ) -> Page:
        result = await self.get(
            "/payments",
            params={
                "partyId": party_id,
                "page": page,
                "limit": limit,
                "type": payment_type,
            },
        )
        return Page.from_payload(result, "payments")

    async def get_party_payment_summary(self, party_id: str) -> dict[str, Any]:
        result = await self.get(f"/payments/party/{party_id}/summary")
        return self._as_dict(result)

    async def get_pending_invoices(self, party_id: str) -> list[dict[str, Any]]:
        result = await self.get(f"/payments/pending-invoices/{party_id}")
        if isinstance(result, dict):
            result = result.get("invoices") or result.get("items") or []
        return [i for i in result if isinstance(i, dict)] if isinstance(result, list) else []

    async def create_payment_in(self, data: dict[str, Any]) -> PaymentReceipt:
        """Record money received from a customer."""
        result = await self.post("/payments/pay-in", json=self._payment_body(data, "in"))
        receipt = PaymentReceipt.from_payload(self._as_dict(result))
        logger.info(
            "payment_in_created",
            payment_id=receipt.payment_id,
            invoices_updated=receipt.invoices_updated,
        )
        return receipt

    async def create_payment_out(self, data: dict[str, Any]) -> PaymentReceipt:
        """Record money paid to a supplier."""
        result = await self.post("/payments/pay-out", json=self._payment_body(data, "out"))
        receipt = PaymentReceipt.from_payload(self._as_dict(result))
        logger.info(
            "payment_out_created",
            payment_id=receipt.payment_id,
            invoices_updated=receipt.invoices_updated,
        )
        return receipt

    async def update_payment(self, payment_id: str, data: dict[str, Any]) -> PaymentReceipt:
        result = await self.put(f"/payments/{payment_id}", json=data)
        return PaymentReceipt.from_payload(self._as_dict(result))

    async def cancel_payment(self, payment_id: str, reason: str) -> dict[str, Any]:
        """Soft-delete a payment; the backend reverses its bank transaction."""
        result = await self.patch(f"/payments/{payment_id}/cancel", json={"reason": reason})
        return self._as_dict(result)

    def _payment_body(self, data: dict[str, Any], direction: str) -> dict[str, Any]:
        body = {
            "type": direction,
            "companyId": self.company_id,
            "status": "completed",
            "paymentDate": format_date_for_api(data.get("paymentDate")),
            **data,
        }
        if "partyId" in body:
            body.setdefault("party", body["partyId"])
        if "amount" in body:
            body["amount"] = str(body["amount"])
        return body

    # === Bank accounts ===

    async def list_bank_accounts(self) -> list[dict[str, Any]]:
        result = await self.get("/bank-accounts")
        if isinstance(result, dict):
            result = result.get("bankAccounts") or result.get("accounts") or []
        return [a for a in result if isinstance(a, dict)] if isinstance(result, list) else []
