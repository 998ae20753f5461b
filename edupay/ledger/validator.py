"""
Payment admissibility against a ledger snapshot.
Pure: nothing is written and the error is returned, not raised.
"""

from decimal import Decimal
from typing import Optional

from edupay.core.enums import InstallmentStatus
from edupay.core.exceptions import (
    AmountExceedsBalance,
    InstallmentLocked,
    InvalidAmount,
    NoOutstandingBalance,
    ValidationError,
)

from .money import is_whole_units, to_decimal


def first_open_installment(installments):
    """First installment by order that is not completed, or None."""
    for installment in sorted(installments, key=lambda i: i.installment_order):
        if installment.status != InstallmentStatus.completed.value:
            return installment
    return None


def validate_payment(ledger, amount: Decimal, unit: Decimal = Decimal("1")) -> Optional[ValidationError]:
    """
    Checks, in order:
    - ledger has an outstanding balance
    - amount is positive
    - amount does not exceed the balance
    - amount is a whole number of currency units
    - the installment that would receive the money is unlocked
    """
    balance = to_decimal(ledger.balance)
    amount = to_decimal(amount)

    if balance <= 0:
        return NoOutstandingBalance()
    if amount <= 0:
        return InvalidAmount()
    if amount > balance:
        return AmountExceedsBalance(amount, balance)
    if not is_whole_units(amount, unit):
        return InvalidAmount(f"Payment amount must be a whole multiple of {unit}")

    current = first_open_installment(ledger.installments or [])
    if current is not None and not current.is_unlocked:
        return InstallmentLocked(current.name)
    return None
