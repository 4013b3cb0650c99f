from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    clean = value.strip().replace("R$", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def to_cents(value: Union[int, float, str]) -> int:
    """Convert an amount in currency units (as sent by forms or the assistant)."""
    if isinstance(value, str):
        return parse_amount(value)
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    cents = int(
        (Decimal(str(value)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    )
    if cents < 0:
        raise ValueError("Amount must be positive")
    return cents


def format_currency(cents: Union[int, float], *, hidden: bool = False) -> str:
    if hidden:
        return "••••••"
    formatted = f"{cents / 100:,.2f}"
    # 1,234.56 -> 1.234,56
    return formatted.replace(",", "_").replace(".", ",").replace("_", ".")
