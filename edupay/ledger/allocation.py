"""
Allocation engine: how one payment amount splits across a ledger's sub-balances.

- Installments: greedy walk in installment order; earlier installments saturate first.
- Categories: one AllocationStrategy per method (priority, proportional), picked once
  via get_allocation_strategy().

Every outcome satisfies sum(allocations) + unapplied == amount. A non-zero unapplied
amount means the validator let through more than the sub-ledger can absorb.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Sequence

from edupay.core.enums import AllocationMethod, InstallmentStatus

from .money import ZERO, from_units, to_decimal, to_units

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    target_id: str
    target_name: str
    amount: Decimal
    previously_paid: Decimal
    now_paid: Decimal
    is_completed: bool


@dataclass
class AllocationOutcome:
    method: AllocationMethod
    allocations: List[Allocation] = field(default_factory=list)
    unapplied: Decimal = ZERO

    @property
    def total_allocated(self) -> Decimal:
        return sum((a.amount for a in self.allocations), ZERO)

    @property
    def is_over_allocated(self) -> bool:
        return self.unapplied > 0


def _warn_over_allocation(outcome: AllocationOutcome, amount: Decimal) -> None:
    if outcome.is_over_allocated:
        logger.warning(
            "OverAllocation: %s of %s could not be placed (%s)",
            outcome.unapplied, amount, outcome.method.value,
        )


def _greedy(method: AllocationMethod, amount: Decimal, targets, target_id, target_name) -> AllocationOutcome:
    """Saturate targets in the given order until the amount runs out."""
    outcome = AllocationOutcome(method=method)
    remaining = to_decimal(amount)
    for target in targets:
        if remaining <= 0:
            break
        paid = to_decimal(target.amount_paid)
        outstanding = to_decimal(target.amount_due) - paid
        if outstanding <= 0:
            continue
        apply = min(remaining, outstanding)
        outcome.allocations.append(
            Allocation(
                target_id=target_id(target),
                target_name=target_name(target),
                amount=apply,
                previously_paid=paid,
                now_paid=paid + apply,
                is_completed=apply >= outstanding,
            )
        )
        remaining -= apply
    outcome.unapplied = remaining
    _warn_over_allocation(outcome, amount)
    return outcome


# --- Installments ---
def allocate_to_installments(installments, amount: Decimal) -> AllocationOutcome:
    """Ordered-installment allocation; completed installments are skipped."""
    ordered = sorted(
        (i for i in installments if i.status != InstallmentStatus.completed.value),
        key=lambda i: i.installment_order,
    )
    return _greedy(
        AllocationMethod.installment_order,
        amount,
        ordered,
        target_id=lambda i: str(i.id),
        target_name=lambda i: i.name,
    )


# --- Categories ---
def _category_key(category):
    return (category.priority, category.category_id)


class AllocationStrategy(ABC):
    """Splits an amount across fee categories. Allocations are capped at each category's outstanding."""

    method: AllocationMethod

    @abstractmethod
    def allocate(self, amount: Decimal, categories: Sequence, unit: Decimal = Decimal("1")) -> AllocationOutcome:
        raise NotImplementedError


class PriorityAllocation(AllocationStrategy):
    """Saturate categories by priority ascending; ties broken by category id."""

    method = AllocationMethod.priority

    def allocate(self, amount: Decimal, categories: Sequence, unit: Decimal = Decimal("1")) -> AllocationOutcome:
        return _greedy(
            self.method,
            amount,
            sorted(categories, key=_category_key),
            target_id=lambda c: c.category_id,
            target_name=lambda c: c.category_name,
        )


class ProportionalAllocation(AllocationStrategy):
    """
    Largest-remainder split in whole currency units.

    Each open category gets floor(amount * outstanding / total_outstanding); the units
    left over go one each to the largest fractional remainders, ties to the larger
    outstanding, then to the lower category id. Fractions are compared as exact
    integer numerators, so the result is deterministic and sums to the amount.
    """

    method = AllocationMethod.proportional

    def allocate(self, amount: Decimal, categories: Sequence, unit: Decimal = Decimal("1")) -> AllocationOutcome:
        amount = to_decimal(amount)
        open_categories = [
            c for c in sorted(categories, key=_category_key)
            if to_decimal(c.amount_due) - to_decimal(c.amount_paid) > 0
        ]
        outcome = AllocationOutcome(method=self.method)
        if not open_categories:
            outcome.unapplied = amount
            _warn_over_allocation(outcome, amount)
            return outcome

        outstanding: Dict[str, int] = {
            c.category_id: to_units(to_decimal(c.amount_due) - to_decimal(c.amount_paid), unit)
            for c in open_categories
        }
        total_outstanding = sum(outstanding.values())
        amount_units = to_units(amount, unit)

        if amount_units >= total_outstanding:
            shares = dict(outstanding)
            unapplied_units = amount_units - total_outstanding
        else:
            shares = {}
            remainders: Dict[str, int] = {}
            for c in open_categories:
                shares[c.category_id], remainders[c.category_id] = divmod(
                    amount_units * outstanding[c.category_id], total_outstanding
                )
            leftover = amount_units - sum(shares.values())
            ranked = sorted(
                shares,
                key=lambda cid: (-remainders[cid], -outstanding[cid], cid),
            )
            for cid in ranked[:leftover]:
                shares[cid] += 1
            unapplied_units = 0

        for c in open_categories:
            units = shares[c.category_id]
            if units <= 0:
                continue
            paid = to_decimal(c.amount_paid)
            share = from_units(units, unit)
            outcome.allocations.append(
                Allocation(
                    target_id=c.category_id,
                    target_name=c.category_name,
                    amount=share,
                    previously_paid=paid,
                    now_paid=paid + share,
                    is_completed=units >= outstanding[c.category_id],
                )
            )
        outcome.unapplied = from_units(unapplied_units, unit)
        _warn_over_allocation(outcome, amount)
        return outcome


_STRATEGIES: Dict[AllocationMethod, AllocationStrategy] = {
    AllocationMethod.priority: PriorityAllocation(),
    AllocationMethod.proportional: ProportionalAllocation(),
}


def get_allocation_strategy(method) -> AllocationStrategy:
    """Category strategy for a method; installment order is not a category strategy."""
    try:
        return _STRATEGIES[AllocationMethod(method)]
    except (KeyError, ValueError):
        raise ValueError(f"No category allocation strategy for {method!r}")
