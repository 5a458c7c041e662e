from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal("0.00")
MONEY_TOLERANCE = Decimal("0.01")


def quantize_money(value: Decimal | float | int | str | None) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def exceeds(amount: Decimal, limit: Decimal) -> bool:
    """True when ``amount`` is above ``limit`` by more than the rounding tolerance."""
    return quantize_money(amount) - quantize_money(limit) > MONEY_TOLERANCE


def is_settled(amount: Decimal) -> bool:
    return quantize_money(amount) <= MONEY_TOLERANCE
