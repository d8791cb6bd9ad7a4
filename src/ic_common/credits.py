"""Fixed-point arithmetic for credit amounts.

Credits are Decimal quantized to 2 places (NUMERIC(12, 2) in PostgreSQL).
Usage billing produces half credits (15 s = 2.5 credits), so plain ints
are not enough and floats are never used for balances.
"""

from decimal import ROUND_HALF_UP, Decimal

CREDIT_QUANTUM = Decimal("0.01")
ZERO = Decimal("0.00")

# deducted + refunded must match blocked within this tolerance
SETTLEMENT_TOLERANCE = Decimal("0.01")


def to_credits(value: Decimal | int | float | str) -> Decimal:
    """Coerce a number to a 2-place credit Decimal. Floats go through str() first."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CREDIT_QUANTUM, rounding=ROUND_HALF_UP)


def credits_equal(a: Decimal, b: Decimal) -> bool:
    """True when two amounts differ by less than the settlement tolerance."""
    return abs(to_credits(a) - to_credits(b)) < SETTLEMENT_TOLERANCE


def credits_to_display(credits: Decimal) -> str:
    """Render credits without trailing zeros: 22.50 -> '22.5', 50.00 -> '50'."""
    normalized = to_credits(credits).normalize()
    # normalize() turns 50 into 5E+1
    return f"{normalized:f}"
