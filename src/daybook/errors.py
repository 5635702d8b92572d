"""Error taxonomy for reconciliation and payment handling."""

from typing import Any

DEFAULT_ERROR_MESSAGE = "Operation failed"


class DaybookError(Exception):
    """Base exception for daybook errors."""

    def __init__(self, message: str | None = None, details: Any = None):
        message = message or DEFAULT_ERROR_MESSAGE
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(DaybookError):
    """Bad input rejected before any network call or state change."""

    def __init__(self, message: str | None = None, errors: list[str] | None = None):
        self.errors = list(errors or ([message] if message else []))
        if message is None and self.errors:
            message = "Payment validation failed: " + ", ".join(self.errors)
        super().__init__(message, details=self.errors)


class MissingBankAccountError(ValidationError):
    """A non-cash payment was submitted without a bank account."""

    def __init__(self, payment_method: str):
        super().__init__(
            f"Bank account is required for {payment_method} payments"
        )
        self.payment_method = payment_method


class NotFoundError(DaybookError):
    """A party, transaction, payment or bank account does not exist."""

    def __init__(self, entity: str, entity_id: Any, message: str | None = None):
        super().__init__(message or f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class BankEffectError(DaybookError):
    """Applying or reversing a bank balance change failed."""

    def __init__(
        self,
        message: str,
        payment_id: str | None = None,
        rolled_back: bool = False,
    ):
        super().__init__(message)
        self.payment_id = payment_id
        self.rolled_back = rolled_back


class InvalidTransitionError(DaybookError):
    """A payment lifecycle transition is not allowed."""

    def __init__(self, payment_id: str, current: str, target: str):
        super().__init__(f"Cannot move payment {payment_id} from {current} to {target}")
        self.payment_id = payment_id
        self.current = current
        self.target = target


class PartialDataError(DaybookError):
    """Some of several parallel fetches failed while the others succeeded.

    This error is attached to results, not raised: the caller renders the
    available subset and shows that it is partial.
    """

    def __init__(self, failures: dict[str, str]):
        sections = ", ".join(sorted(failures))
        super().__init__(f"Partial data: {sections} unavailable", details=failures)
        self.failures = dict(failures)

    @property
    def sections(self) -> list[str]:
        return sorted(self.failures)


class BackendAPIError(DaybookError):
    """Error returned by (or while talking to) the REST backend."""

    def __init__(
        self,
        message: str | None = None,
        status_code: int | None = None,
        details: Any = None,
    ):
        super().__init__(message, details=details)
        self.status_code = status_code


def user_message(exc: BaseException | None) -> str:
    """Convert any error into a user-facing message.

    Errors without a usable message become ``"Operation failed"`` rather than
    an empty or ``None`` string.
    """
    if exc is None:
        return DEFAULT_ERROR_MESSAGE
    message = getattr(exc, "message", None) or str(exc)
    if not message or message == "None":
        return DEFAULT_ERROR_MESSAGE
    return message
