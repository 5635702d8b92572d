"""Audit event definitions for the payment lifecycle.

Every payment creation, edit, cancellation and bank balance change produces
an event so money-affecting operations leave a trail.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventType(str, Enum):
    """Types of audit events."""

    # Payment lifecycle
    PAYMENT_CREATED = "payment.created"
    PAYMENT_EDITED = "payment.edited"
    PAYMENT_CANCELLED = "payment.cancelled"

    # Bank balance effects
    BANK_EFFECT_APPLIED = "bank.effect_applied"
    BANK_EFFECT_REVERSED = "bank.effect_reversed"
    BANK_EFFECT_ROLLED_BACK = "bank.effect_rolled_back"

    # Data loading
    DATA_PARTIAL = "data.partial"
    SYNC_WARNING = "sync.warning"

    # Errors
    ERROR = "error"


@dataclass
class AuditEvent:
    """Base event structure for all audit events."""

    event_type: EventType
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: UUID = field(default_factory=uuid4)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to a JSON-friendly dictionary."""
        return {
            "id": str(self.event_id),
            "type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


@dataclass
class PaymentEvent(AuditEvent):
    """Event for a payment lifecycle step."""

    payment_id: str = ""
    party_id: str = ""
    payment_type: str = ""
    amount: Decimal = Decimal("0")
    payment_method: str = ""
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base["payment"] = {
            "id": self.payment_id,
            "party_id": self.party_id,
            "type": self.payment_type,
            "amount": str(self.amount),
            "method": self.payment_method,
            "reason": self.reason,
        }
        return base


@dataclass
class BankEvent(AuditEvent):
    """Event for a bank balance change."""

    payment_id: str = ""
    bank_account_id: str = ""
    delta: Decimal = Decimal("0")
    balance_after: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base["bank"] = {
            "payment_id": self.payment_id,
            "account_id": self.bank_account_id,
            "delta": str(self.delta),
            "balance_after": str(self.balance_after),
        }
        return base


# Factory functions for creating events


def _payment_fields(payment: Any) -> dict[str, Any]:
    return {
        "payment_id": payment.id,
        "party_id": payment.party_id,
        "payment_type": payment.type.value,
        "amount": payment.amount,
        "payment_method": payment.payment_method.value,
    }


def payment_created(payment: Any) -> PaymentEvent:
    """Create a payment created event."""
    return PaymentEvent(
        event_type=EventType.PAYMENT_CREATED,
        data={
            "payment_number": payment.payment_number,
            "allocations": len(payment.invoice_allocations),
        },
        **_payment_fields(payment),
    )


def payment_edited(old: Any, new: Any) -> PaymentEvent:
    """Create a payment edited event recording what changed."""
    changes = {
        name: {"from": str(getattr(old, name)), "to": str(getattr(new, name))}
        for name in ("amount", "payment_method", "bank_account_id", "payment_date")
        if getattr(old, name) != getattr(new, name)
    }
    return PaymentEvent(
        event_type=EventType.PAYMENT_EDITED,
        data={"changes": changes},
        **_payment_fields(new),
    )


def payment_cancelled(payment: Any, reason: str) -> PaymentEvent:
    """Create a payment cancelled event."""
    return PaymentEvent(
        event_type=EventType.PAYMENT_CANCELLED,
        reason=reason,
        **_payment_fields(payment),
    )


_BANK_EVENT_TYPES = {
    "apply": EventType.BANK_EFFECT_APPLIED,
    "reverse": EventType.BANK_EFFECT_REVERSED,
    "rollback": EventType.BANK_EFFECT_ROLLED_BACK,
}


def bank_effect(effect: Any) -> BankEvent:
    """Create an event from a posted bank effect."""
    return BankEvent(
        event_type=_BANK_EVENT_TYPES[effect.kind.value],
        payment_id=effect.payment_id,
        bank_account_id=effect.bank_account_id,
        delta=effect.delta,
        balance_after=effect.balance_after,
    )


def partial_data(failures: dict[str, str]) -> AuditEvent:
    """Create an event noting that some summary sections are unavailable."""
    return AuditEvent(
        event_type=EventType.DATA_PARTIAL,
        data={"failures": dict(failures)},
    )


def error_event(message: str, details: dict[str, Any] | None = None) -> AuditEvent:
    """Create an error event."""
    return AuditEvent(
        event_type=EventType.ERROR,
        data={"message": message, "details": details or {}},
    )


def sync_warning(message: str, details: dict[str, Any] | None = None) -> AuditEvent:
    """Create an event for a backend write that could not be mirrored locally."""
    return AuditEvent(
        event_type=EventType.SYNC_WARNING,
        data={"message": message, "details": details or {}},
    )
