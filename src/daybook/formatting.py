"""Currency and date helpers shared by the reconciliation modules."""

from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from daybook.config import get_settings

RUPEE = "₹"
ZERO = Decimal("0")
CENT = Decimal("0.01")


def parse_amount(value: Any) -> Decimal | None:
    """Coerce a raw amount into a Decimal, or None when it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        result = Decimal(str(value))
        return result if result.is_finite() else None
    if isinstance(value, str):
        cleaned = value.strip().replace(RUPEE, "").replace(",", "").replace(" ", "")
        if not cleaned:
            return None
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            return None
        return result if result.is_finite() else None
    return None


def to_date(value: date | datetime) -> date:
    """Drop the time of day, if any."""
    if isinstance(value, datetime):
        return value.date()
    return value


def parse_date(value: Any) -> date | None:
    """Parse a date, datetime or ISO string; None when it cannot be read."""
    if isinstance(value, (date, datetime)):
        return to_date(value)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def days_between(start: date | datetime, end: date | datetime) -> int:
    """Whole days from start to end, ignoring time of day."""
    return (to_date(end) - to_date(start)).days


def format_date_for_api(value: date | datetime | str | None = None) -> str:
    """Format a date as YYYY-MM-DD, defaulting to today."""
    if value is None:
        return date.today().isoformat()
    if isinstance(value, str):
        return value
    return to_date(value).isoformat()


def _group_indian(digits: str) -> str:
    # 12345678 -> 1,23,45,678
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups: list[str] = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


CURRENCY_SYMBOLS = {"INR": RUPEE, "USD": "$", "EUR": "€", "GBP": "£"}


def _group_western(digits: str) -> str:
    return f"{int(digits):,}"


def format_currency(amount: Any, decimals: int = 2, currency: str | None = None) -> str:
    """Format an amount in the configured currency.

    INR uses Indian digit grouping (1,23,456); other currencies group by
    thousands. Codes without a known symbol are written as a prefix, for
    example ``AED 1,200.00``. Dashboard cards use ``decimals=0``; ledger
    tables use the default of 2. Unparseable amounts render as zero.
    """
    code = (currency or get_settings().currency).upper()
    symbol = CURRENCY_SYMBOLS.get(code, f"{code} ")
    group = _group_indian if code == "INR" else _group_western

    value = parse_amount(amount) or ZERO
    quantum = Decimal(1).scaleb(-decimals)
    rounded = value.quantize(quantum, rounding=ROUND_HALF_UP)
    sign = "-" if rounded < 0 else ""
    text = f"{abs(rounded):.{decimals}f}"
    integer, _, fraction = text.partition(".")
    grouped = group(integer)
    if fraction:
        grouped = f"{grouped}.{fraction}"
    return f"{sign}{symbol}{grouped}"


def money(value: Decimal) -> Decimal:
    """Round a monetary value to paise."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
