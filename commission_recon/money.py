"""Currency parsing and integer-cent conversion.

All allocation and aggregation math runs on integer cents. Decimal values only
appear where amounts enter (statement rows, registry fields) or leave
(JSON payloads, dispute explanations).
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")
ONE_CENT = Decimal("0.01")

_CURRENCY_NOISE = re.compile(r"[\s$€£,]")


def parse_currency(value: Any) -> Decimal:
    """Parse a carrier-formatted amount into an exact Decimal.

    Accepts numbers, ``"$1,234.56"``, accounting negatives ``"(12.50)"`` and
    trailing-minus ``"12.50-"``. Blank values parse as zero.
    """
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValueError(f"not a currency amount: {value!r}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value))

    text = str(value).strip()
    if not text:
        return ZERO

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]
    text = _CURRENCY_NOISE.sub("", text)
    if text.endswith("-"):
        negative = True
        text = text[:-1]
    if text.startswith("-"):
        negative = True
        text = text[1:]
    elif text.startswith("+"):
        text = text[1:]
    if not text:
        return ZERO

    try:
        amount = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"unparseable currency amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"unparseable currency amount: {value!r}")
    return -amount if negative else amount


def to_cents(value: Any) -> int:
    """Round an amount to whole cents, half away from zero."""
    amount = parse_currency(value)
    return int((amount * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return Decimal(cents).scaleb(-2).quantize(ONE_CENT)


def cents_to_float(cents: int) -> float:
    return float(from_cents(cents))


def percent_of(cents: int, pct: Decimal) -> int:
    """Share of ``cents`` at ``pct`` percent, rounded to the nearest cent."""
    share = Decimal(cents) * pct / 100
    # Half cents round away from zero in both directions: -2.5 -> -3.
    return int(share.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}${from_cents(abs(cents)):,.2f}"


def parse_percent(value: Any) -> Decimal | None:
    """Expected compensation percentage as a fraction (``"15%"`` -> 0.15).

    Numeric inputs are taken as already-fractional; text is read as a whole
    percentage.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return parse_currency(value)
    digits = re.sub(r"[^0-9.]", "", str(value))
    if not digits:
        return None
    try:
        return Decimal(digits) / 100
    except InvalidOperation:
        return None
