"""Bank balance effects of payments.

Every change to a bank account balance goes through ``BankBalanceResolver``.
Cash payments never touch a bank account; any other method moves the
payment amount into (payment in) or out of (payment out) the linked account.
Reversals always use the payment as it was recorded, never edited values.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

import structlog

from daybook.errors import (
    BankEffectError,
    DaybookError,
    MissingBankAccountError,
    user_message,
)
from daybook.models import BankAccount, Payment

logger = structlog.get_logger(__name__)


class EffectKind(str, Enum):
    APPLY = "apply"
    REVERSE = "reverse"
    ROLLBACK = "rollback"


@dataclass(frozen=True)
class BankEffect:
    """One balance change made on behalf of a payment."""

    kind: EffectKind
    payment_id: str
    bank_account_id: str
    delta: Decimal
    balance_before: Decimal
    balance_after: Decimal


class BankBalanceResolver:
    """Applies and reverses payment effects on bank account balances."""

    def __init__(self, accounts: Iterable[BankAccount] = ()):
        self._accounts: dict[str, BankAccount] = {a.id: a for a in accounts}
        self._history: list[BankEffect] = []
        self._logger = logger.bind(component="bank_resolver")

    @property
    def accounts(self) -> dict[str, BankAccount]:
        return self._accounts

    @property
    def history(self) -> list[BankEffect]:
        return list(self._history)

    def add_account(self, account: BankAccount) -> None:
        self._accounts[account.id] = account

    def load_accounts(self, accounts: Iterable[BankAccount]) -> None:
        """Replace local account state with freshly fetched accounts."""
        self._accounts = {a.id: a for a in accounts}

    def balance(self, account_id: str) -> Decimal:
        account = self._accounts.get(account_id)
        if account is None:
            raise BankEffectError(f"Bank account not found: {account_id}")
        return account.current_balance

    def _target(self, payment: Payment) -> BankAccount | None:
        if payment.payment_method.is_cash:
            return None
        if not payment.bank_account_id:
            raise MissingBankAccountError(payment.payment_method.value)
        account = self._accounts.get(payment.bank_account_id)
        if account is None:
            raise BankEffectError(
                f"Bank account not found: {payment.bank_account_id}",
                payment_id=payment.id,
            )
        return account

    def _post(
        self, account: BankAccount, payment: Payment, delta: Decimal, kind: EffectKind
    ) -> BankEffect:
        before = account.current_balance
        account.current_balance = before + delta
        effect = BankEffect(
            kind=kind,
            payment_id=payment.id,
            bank_account_id=account.id,
            delta=delta,
            balance_before=before,
            balance_after=account.current_balance,
        )
        self._history.append(effect)
        self._logger.info(
            "bank_effect_posted",
            kind=kind.value,
            payment_id=payment.id,
            bank_account_id=account.id,
            delta=str(delta),
            balance_after=str(account.current_balance),
        )
        return effect

    def apply_payment(self, payment: Payment) -> BankEffect | None:
        """Apply a payment's effect. Returns None for cash payments.

        Raises:
            MissingBankAccountError: Non-cash payment without a bank account.
            BankEffectError: The referenced account does not exist.
        """
        account = self._target(payment)
        if account is None:
            return None
        return self._post(account, payment, payment.bank_delta, EffectKind.APPLY)

    def reverse_payment(self, payment: Payment) -> BankEffect | None:
        """Undo exactly what ``apply_payment`` did for the same payment."""
        account = self._target(payment)
        if account is None:
            return None
        return self._post(account, payment, -payment.bank_delta, EffectKind.REVERSE)

    def edit_payment(
        self, old: Payment, new: Payment
    ) -> tuple[BankEffect | None, BankEffect | None]:
        """Reverse the old effect and apply the new one as a single operation.

        If the new effect cannot be applied, the old effect is re-applied so
        the account is left as it was before the edit.

        Raises:
            BankEffectError: The new effect failed; ``rolled_back`` is True.
        """
        reversed_effect = self.reverse_payment(old)
        try:
            applied = self.apply_payment(new)
        except DaybookError as exc:
            account = self._accounts.get(old.bank_account_id or "")
            if reversed_effect is not None and account is not None:
                self._post(account, old, old.bank_delta, EffectKind.ROLLBACK)
            self._logger.error(
                "bank_edit_rolled_back",
                payment_id=old.id,
                error=user_message(exc),
            )
            raise BankEffectError(
                f"Could not apply edited payment: {user_message(exc)}",
                payment_id=old.id,
                rolled_back=True,
            ) from exc
        return reversed_effect, applied
