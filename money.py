from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from config import get_settings

# DECIMAL(10,2): 99,999,999.99
MAX_AMOUNT_CENTS = 9_999_999_999


def parse_amount(value: str) -> int:
    """Parse a user-entered amount into non-negative integer cents.

    Accepts "45.50", "45,50", "$45.50" and "1 234.50". Sub-cent input is
    rounded half up to the nearest cent.
    """
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if not clean:
        raise ValueError("Amount is required")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    if amount * 100 > MAX_AMOUNT_CENTS:
        raise ValueError(f"Amount must not exceed {format_currency(MAX_AMOUNT_CENTS)}")
    try:
        cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if cents < 0:
        raise ValueError("Amount must be positive")
    return cents


def format_currency(cents: int, symbol: Optional[str] = None) -> str:
    if symbol is None:
        symbol = get_settings().currency_symbol
    return f"{symbol}{cents / 100:,.2f}"
