from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal("0.000")
_Q3 = Decimal("0.001")

def q3(x) -> Decimal:
    # use string to avoid float binary artifacts; HALF_UP rounds away from zero
    return Decimal(str(x)).quantize(_Q3, rounding=ROUND_HALF_UP)

def ratio3(num: Decimal, denom: Decimal) -> float:
    """num/denom rounded to 3 places, 0 when denom is 0."""
    if denom == 0:
        return 0.0
    return float(q3(Decimal(num) / Decimal(denom)))

def money(x) -> Decimal:
    return Decimal(str(x)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
