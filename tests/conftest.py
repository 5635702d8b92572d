"""Pytest configuration and fixtures."""

import os
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("DAYBOOK_API_URL", "http://localhost:5000/api")
os.environ.setdefault("DAYBOOK_API_TOKEN", "test-token")
os.environ.setdefault("DAYBOOK_COMPANY_ID", "company-1")
os.environ.setdefault("DAYBOOK_PAID_AMOUNT_POLICY", "max")

from daybook.events import AuditLog  # noqa: E402
from daybook.models import BankAccount, Party, PartyType  # noqa: E402
from daybook.normalizer import normalize  # noqa: E402
from daybook.payments import PaymentBook  # noqa: E402

TODAY = date(2024, 3, 15)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx AsyncClient."""
    client = AsyncMock()
    client.request = AsyncMock()
    client.aclose = AsyncMock()
    return client


def make_response(status_code=200, body=None):
    """Build a MagicMock that looks like an httpx.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.content = b"{}" if body is not None else b""
    response.json.return_value = body
    response.text = ""
    return response


@pytest.fixture
def customer():
    return Party(id="party-1", name="Sharma Traders", party_type=PartyType.CUSTOMER)


@pytest.fixture
def supplier():
    return Party(id="party-2", name="Gupta Supplies", party_type=PartyType.SUPPLIER)


@pytest.fixture
def bank_account():
    return BankAccount(id="B1", bank_name="State Bank", current_balance=Decimal("0"))


@pytest.fixture
def raw_sale():
    """Sale as returned by the sales list endpoint."""
    return {
        "_id": "65f0c2a1b4e8d9f0sale0001",
        "invoiceNumber": "INV-0001",
        "invoiceDate": (TODAY - timedelta(days=10)).isoformat(),
        "customer": {"_id": "party-1", "name": "Sharma Traders"},
        "totals": {"finalTotal": 10000},
        "payment": {
            "paidAmount": 0,
            "dueDate": (TODAY - timedelta(days=5)).isoformat(),
            "paymentHistory": [],
        },
        "status": "completed",
    }


@pytest.fixture
def raw_purchase():
    """Purchase with a flat shape and a supplier id."""
    return {
        "id": "65f0c2a1b4e8d9f0purc0001",
        "purchaseNumber": "PUR-0001",
        "purchaseDate": (TODAY - timedelta(days=3)).isoformat(),
        "supplierId": "party-2",
        "supplierName": "Gupta Supplies",
        "finalTotal": "10,000.00",
        "dueDate": (TODAY + timedelta(days=7)).isoformat(),
    }


@pytest.fixture
def raw_payment():
    """Payment-in record as returned by the payments endpoint."""
    return {
        "_id": "65f0c2a1b4e8d9f0paym0001",
        "paymentNumber": "PAY-IN-000007",
        "type": "in",
        "party": "party-1",
        "partyName": "Sharma Traders",
        "amount": 4000,
        "paymentMethod": "bank_transfer",
        "bankAccountId": "B1",
        "paymentDate": TODAY.isoformat(),
        "status": "completed",
        "invoiceAllocations": [
            {"invoiceId": "65f0c2a1b4e8d9f0sale0001", "allocatedAmount": 4000}
        ],
    }


@pytest.fixture
def book(customer, supplier, bank_account, raw_sale, raw_purchase):
    """Books with one overdue sale, one purchase and an empty bank account."""
    return PaymentBook(
        parties=[customer, supplier],
        transactions=[normalize(raw_sale, "sale"), normalize(raw_purchase, "purchase")],
        bank_accounts=[bank_account],
        audit=AuditLog(),
        policy="max",
    )
