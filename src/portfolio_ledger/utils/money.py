"""Money helpers for deterministic rounding and parsing."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


ZERO = Decimal("0")
QUANTITY_STEP = Decimal("0.00000001")
UNIT_PRICE_STEP = QUANTITY_STEP

# ISO 4217 currencies quoted with three minor digits.
THREE_DECIMAL_CURRENCIES = frozenset({"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"})


def to_decimal(value: float | int | str | Decimal | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def parse_decimal(value: object) -> Decimal | None:
    """Parse a statement amount such as ``-$1,502.50``, ``(12.00)`` or ``1.5E-4``.

    Returns None for blanks, ``-`` placeholders and anything non-numeric.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    text = (
        str(value)
        .strip()
        .replace('"', "")
        .replace(",", "")
        .replace("$", "")
        .replace("US", "")
        .strip()
    )
    if text in {"", "-", "--", "N/A", "n/a"}:
        return None
    if text.startswith("(") and text.endswith(")"):
        text = f"-{text[1:-1]}"
    if text.startswith("+"):
        text = text[1:]
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def currency_places(currency: str | None) -> int:
    return 3 if (currency or "").upper() in THREE_DECIMAL_CURRENCIES else 2


def money_step(currency: str | None) -> Decimal:
    return Decimal(1).scaleb(-currency_places(currency))


def balance_epsilon(currency: str | None) -> Decimal:
    """Smallest balance difference treated as real for ``currency``."""
    return money_step(currency)


def round_money(value: float | int | str | Decimal | None, currency: str | None = None) -> Decimal:
    return to_decimal(value).quantize(money_step(currency), rounding=ROUND_HALF_UP)


def round_quantity(value: float | int | str | Decimal | None) -> Decimal:
    return to_decimal(value).quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)


def round_unit_price(value: float | int | str | Decimal | None) -> Decimal:
    return to_decimal(value).quantize(UNIT_PRICE_STEP, rounding=ROUND_HALF_UP)


def round_whole(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
