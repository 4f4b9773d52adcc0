"""
Formatters utility.

Rounding rules for aggregate results: money to 6 decimals, ratios to 2.
Division by a zero denominator yields zero.
"""

from decimal import ROUND_HALF_UP, Decimal

from levelnet.config.constants import MONEY_QUANT, RATIO_QUANT


ZERO = Decimal("0")


def round_money(value: Decimal | int | None) -> Decimal:
    """Round monetary value to 6 decimals."""
    if value is None:
        return ZERO.quantize(MONEY_QUANT)
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def round_ratio(value: Decimal | int | None) -> Decimal:
    """Round ratio / percentage to 2 decimals."""
    if value is None:
        return ZERO.quantize(RATIO_QUANT)
    return Decimal(value).quantize(RATIO_QUANT, rounding=ROUND_HALF_UP)


def safe_divide(numerator: Decimal | int, denominator: Decimal | int) -> Decimal:
    """Divide, returning zero for a zero denominator."""
    if not denominator:
        return ZERO
    return Decimal(numerator) / Decimal(denominator)


def percentage(part: Decimal | int, whole: Decimal | int) -> Decimal:
    """part / whole * 100, rounded to 2 decimals; zero when whole is zero."""
    return round_ratio(safe_divide(part, whole) * 100)
