"""Integer arithmetic utilities for ISK amounts.

All amounts, prices and balances are stored as int ISK cents (scale 2).
No float in accounting paths. Decimal is only used at the API boundary to
parse/format 2-decimal ISK strings.
"""

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from fractions import Fraction

_CENT = Decimal("0.01")


def isk_to_cents(value: Decimal | int | float | str) -> int:
    """Parse an ISK amount into cents, rounding half-up to the cent.

    Raises ValueError for non-finite or unparseable values.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid ISK amount: {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"Non-finite ISK amount: {value!r}")
    try:
        dec = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid ISK amount: {value!r}") from None
    if not dec.is_finite():
        raise ValueError(f"Non-finite ISK amount: {value!r}")
    return int((dec * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def cents_to_isk(cents: int) -> Decimal:
    """120050 -> Decimal('1200.50')."""
    return (Decimal(cents) / 100).quantize(_CENT)


def format_isk(cents: int) -> str:
    """Plain 2-decimal string used in API payloads: 560000 -> '5600.00'."""
    return str(cents_to_isk(cents))


def cents_to_display(cents: int) -> str:
    """Human display string: 560000 -> '5,600.00 ISK', -1200 -> '-12.00 ISK'."""
    sign = "-" if cents < 0 else ""
    abs_cents = abs(cents)
    return f"{sign}{abs_cents // 100:,}.{abs_cents % 100:02d} ISK"


def calc_fee(value_cents: int, rate_bps: int) -> int:
    """Fee with ceiling division (market never under-charges).

    fee = ceil(value * rate_bps / 10000)
    """
    if value_cents <= 0 or rate_bps == 0:
        return 0
    return (value_cents * rate_bps + 9999) // 10000


def round_half_up(value: Fraction | int) -> int:
    """Round an exact rational cent amount to whole cents, ties away from zero."""
    frac = Fraction(value)
    if frac >= 0:
        return math.floor(frac + Fraction(1, 2))
    return -math.floor(-frac + Fraction(1, 2))


def prorate(total_cents: int, part: int, whole: int) -> int:
    """total * part / whole, rounded half-up. Used to carry cost basis for a partial quantity."""
    if whole <= 0:
        return 0
    return round_half_up(Fraction(total_cents * part, whole))


def unit_cost_cents(total_cents: int, units: int) -> Fraction:
    """Exact per-unit cost in cents (0 when no units)."""
    if units <= 0:
        return Fraction(0)
    return Fraction(total_cents, units)


def format_unit_cost(cost_cents: Fraction) -> str:
    """Exact per-unit cents -> ISK string with 4 decimals: Fraction(560) -> '5.6000'."""
    isk = Decimal(cost_cents.numerator) / Decimal(cost_cents.denominator) / 100
    return str(isk.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP))
