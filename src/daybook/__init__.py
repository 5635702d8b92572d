"""Daybook - reconciliation core for sales, purchases, payments and bank balances."""

__version__ = "0.1.0"

from daybook.aging import Classification, classify, sort_for_display
from daybook.bank import BankBalanceResolver, BankEffect
from daybook.clients import BackendAPIClient, Page, PaymentReceipt
from daybook.config import configure_logging, get_settings
from daybook.dashboard import DashboardLoader, DayBookSummary, PaymentWorkflow
from daybook.debounce import Debouncer
from daybook.errors import (
    BackendAPIError,
    BankEffectError,
    DaybookError,
    InvalidTransitionError,
    MissingBankAccountError,
    NotFoundError,
    PartialDataError,
    ValidationError,
    user_message,
)
from daybook.events import AuditLog
from daybook.models import (
    BankAccount,
    CanonicalTransaction,
    DaySummary,
    Party,
    PartySummary,
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    TransactionKind,
)
from daybook.normalizer import normalize, normalize_many
from daybook.payments import PaymentBook
from daybook.reconciliation import PaidAmountPolicy, summarize

__all__ = [
    # Version
    "__version__",
    # Normalizing and classifying
    "normalize",
    "normalize_many",
    "classify",
    "sort_for_display",
    "Classification",
    # Reconciliation
    "summarize",
    "PaidAmountPolicy",
    "PaymentBook",
    "BankBalanceResolver",
    "BankEffect",
    "AuditLog",
    # Models
    "BankAccount",
    "CanonicalTransaction",
    "DaySummary",
    "Party",
    "PartySummary",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "PaymentType",
    "TransactionKind",
    # Backend
    "BackendAPIClient",
    "Page",
    "PaymentReceipt",
    "DashboardLoader",
    "DayBookSummary",
    "PaymentWorkflow",
    "Debouncer",
    # Errors
    "DaybookError",
    "ValidationError",
    "MissingBankAccountError",
    "NotFoundError",
    "BankEffectError",
    "InvalidTransitionError",
    "PartialDataError",
    "BackendAPIError",
    "user_message",
    # Config
    "get_settings",
    "configure_logging",
]
