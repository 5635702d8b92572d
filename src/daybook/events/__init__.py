"""Audit events for payment and bank balance changes."""

from daybook.events.audit import AuditLog
from daybook.events.types import (
    AuditEvent,
    BankEvent,
    EventType,
    PaymentEvent,
    bank_effect,
    error_event,
    partial_data,
    payment_cancelled,
    payment_created,
    payment_edited,
    sync_warning,
)

__all__ = [
    "AuditLog",
    "AuditEvent",
    "BankEvent",
    "EventType",
    "PaymentEvent",
    "bank_effect",
    "error_event",
    "partial_data",
    "payment_cancelled",
    "payment_created",
    "payment_edited",
    "sync_warning",
]
