"""
Installment and fee-category state transitions.

Installments: not_started -> in_progress -> completed. `overdue` is set by the deadline
sweep on any non-completed installment and cleared when it completes. Completing an
installment unlocks the next one; is_unlocked never goes back to False. The only way
out of `completed` is reopen_installment(), used by payment reversal.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from edupay.core.enums import CategoryStatus, InstallmentStatus, LedgerPaymentStatus
from edupay.core.exceptions import LedgerInvariantError

from .allocation import Allocation
from .money import ZERO, to_decimal


def _ordered(installments) -> list:
    return sorted(installments, key=lambda i: i.installment_order)


# --- Installments ---
def apply_installment_payment(installment, amount: Decimal, now: datetime) -> bool:
    """Add amount to an installment. Returns True when this payment completed it."""
    installment.amount_paid = to_decimal(installment.amount_paid) + to_decimal(amount)
    return settle_installment(installment, now)


def settle_installment(installment, now: datetime) -> bool:
    """Move to completed once amount_paid covers amount_due. Returns True on the transition."""
    if installment.status == InstallmentStatus.completed.value:
        return False
    paid = to_decimal(installment.amount_paid)
    if paid >= to_decimal(installment.amount_due):
        installment.status = InstallmentStatus.completed.value
        installment.completed_at = now
        return True
    if paid > 0 and installment.status == InstallmentStatus.not_started.value:
        installment.status = InstallmentStatus.in_progress.value
    return False


def propagate_unlocks(installments) -> List:
    """Unlock the successor of every completed installment. Returns the newly unlocked ones."""
    ordered = _ordered(installments)
    unlocked = []
    if ordered and not ordered[0].is_unlocked:
        ordered[0].is_unlocked = True
        unlocked.append(ordered[0])
    for previous, installment in zip(ordered, ordered[1:]):
        if previous.status == InstallmentStatus.completed.value and not installment.is_unlocked:
            installment.is_unlocked = True
            unlocked.append(installment)
    return unlocked


def apply_installment_allocations(installments, allocations: Iterable[Allocation], now: datetime) -> None:
    by_id = {str(i.id): i for i in installments}
    for allocation in allocations:
        apply_installment_payment(by_id[allocation.target_id], allocation.amount, now)
    propagate_unlocks(installments)


def reopen_installment(installment, amount: Decimal, today: date) -> None:
    """Remove a reversed allocation. Status falls back by amount and deadline; the unlock flag stays."""
    installment.amount_paid = to_decimal(installment.amount_paid) - to_decimal(amount)
    paid = to_decimal(installment.amount_paid)
    if paid >= to_decimal(installment.amount_due):
        return
    installment.completed_at = None
    if installment.deadline is not None and installment.deadline < today:
        installment.status = InstallmentStatus.overdue.value
    elif paid > 0:
        installment.status = InstallmentStatus.in_progress.value
    else:
        installment.status = InstallmentStatus.not_started.value


def mark_overdue_installments(installments, today: date) -> List:
    """Flag non-completed installments whose deadline has passed. Returns the newly flagged ones."""
    flagged = []
    for installment in _ordered(installments):
        if installment.status in (InstallmentStatus.completed.value, InstallmentStatus.overdue.value):
            continue
        if installment.deadline is not None and installment.deadline < today:
            installment.status = InstallmentStatus.overdue.value
            flagged.append(installment)
    return flagged


def reduce_installment_dues(installments, amount: Decimal, now: datetime) -> Decimal:
    """
    Take a fee reduction off the latest unpaid installment amounts first.
    amount_due never drops below amount_paid. Returns the part that could not be taken off.
    """
    remaining = to_decimal(amount)
    for installment in reversed(_ordered(installments)):
        if remaining <= 0:
            break
        reducible = to_decimal(installment.amount_due) - to_decimal(installment.amount_paid)
        if reducible <= 0:
            continue
        cut = min(remaining, reducible)
        installment.amount_due = to_decimal(installment.amount_due) - cut
        remaining -= cut
        settle_installment(installment, now)
    propagate_unlocks(installments)
    return remaining


def current_installment_order(installments) -> Optional[int]:
    """Order of the first non-completed installment, or the last order when all are done."""
    ordered = _ordered(installments)
    if not ordered:
        return None
    for installment in ordered:
        if installment.status != InstallmentStatus.completed.value:
            return installment.installment_order
    return ordered[-1].installment_order


# --- Categories ---
def category_status(amount_due: Decimal, amount_paid: Decimal) -> str:
    if amount_paid >= amount_due:
        return CategoryStatus.paid.value
    if amount_paid <= 0:
        return CategoryStatus.unpaid.value
    return CategoryStatus.partial.value


def _refresh_category(category) -> None:
    due = to_decimal(category.amount_due)
    paid = to_decimal(category.amount_paid)
    category.balance = max(ZERO, due - paid)
    category.status = category_status(due, paid)


def apply_category_allocations(categories, allocations: Iterable[Allocation], now: datetime) -> None:
    by_id = {c.category_id: c for c in categories}
    for allocation in allocations:
        category = by_id[allocation.target_id]
        category.amount_paid = to_decimal(category.amount_paid) + allocation.amount
        category.last_payment_date = now
        _refresh_category(category)


def reverse_category_payment(category, amount: Decimal) -> None:
    category.amount_paid = to_decimal(category.amount_paid) - to_decimal(amount)
    _refresh_category(category)


def reduce_category_dues(categories, amount: Decimal) -> Decimal:
    """Fee reduction off the lowest-priority categories first. Returns what could not be taken off."""
    remaining = to_decimal(amount)
    for category in sorted(categories, key=lambda c: (c.priority, c.category_id), reverse=True):
        if remaining <= 0:
            break
        reducible = to_decimal(category.amount_due) - to_decimal(category.amount_paid)
        if reducible <= 0:
            continue
        cut = min(remaining, reducible)
        category.amount_due = to_decimal(category.amount_due) - cut
        remaining -= cut
        _refresh_category(category)
    return remaining


# --- Ledger ---
def compute_payment_status(balance: Decimal, amount_paid: Decimal, installments=()) -> str:
    if to_decimal(balance) == 0:
        return LedgerPaymentStatus.fully_paid.value
    if any(i.status == InstallmentStatus.overdue.value for i in installments):
        return LedgerPaymentStatus.overdue.value
    if to_decimal(amount_paid) == 0:
        return LedgerPaymentStatus.no_payment.value
    return LedgerPaymentStatus.partial.value


def check_ledger_invariants(ledger) -> None:
    """Raise LedgerInvariantError unless the ledger and its sub-ledger agree."""
    total_fees = to_decimal(ledger.total_fees)
    amount_paid = to_decimal(ledger.amount_paid)
    balance = to_decimal(ledger.balance)
    if balance != total_fees - amount_paid:
        raise LedgerInvariantError(
            f"Ledger {ledger.id}: balance {balance} != total_fees {total_fees} - amount_paid {amount_paid}"
        )
    if balance < 0:
        raise LedgerInvariantError(f"Ledger {ledger.id}: negative balance {balance}")

    rows = list(ledger.installments or []) + list(ledger.categories or [])
    if rows:
        sub_paid = sum((to_decimal(r.amount_paid) for r in rows), ZERO)
        sub_due = sum((to_decimal(r.amount_due) for r in rows), ZERO)
        if sub_paid != amount_paid:
            raise LedgerInvariantError(
                f"Ledger {ledger.id}: sub-ledger paid {sub_paid} != amount_paid {amount_paid}"
            )
        if sub_due != total_fees:
            raise LedgerInvariantError(
                f"Ledger {ledger.id}: sub-ledger due {sub_due} != total_fees {total_fees}"
            )

    ordered = _ordered(ledger.installments or [])
    for previous, installment in zip(ordered, ordered[1:]):
        if installment.is_unlocked and not previous.is_unlocked:
            raise LedgerInvariantError(
                f"Ledger {ledger.id}: {installment.name} unlocked before {previous.name}"
            )
