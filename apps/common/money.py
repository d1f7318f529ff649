from decimal import ROUND_DOWN, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value):
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT)


def floor_to_cents(value):
    return Decimal(value).quantize(CENT, rounding=ROUND_DOWN)
