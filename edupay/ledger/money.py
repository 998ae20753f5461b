"""Decimal helpers for ledger amounts. Allocation arithmetic runs on whole currency units."""

from decimal import Decimal, InvalidOperation

ZERO = Decimal("0")


def to_decimal(val) -> Decimal:
    if val is None:
        return ZERO
    return val if isinstance(val, Decimal) else Decimal(str(val))


def is_whole_units(amount: Decimal, unit: Decimal) -> bool:
    try:
        return (to_decimal(amount) % unit) == 0
    except InvalidOperation:
        # Quotient wider than the decimal context precision
        return False


def to_units(amount: Decimal, unit: Decimal) -> int:
    """Amount as an integer count of currency units. Raises ValueError for fractional units."""
    amount = to_decimal(amount)
    if not is_whole_units(amount, unit):
        raise ValueError(f"{amount} is not a whole multiple of {unit}")
    return int(amount / unit)


def from_units(units: int, unit: Decimal) -> Decimal:
    return unit * units
