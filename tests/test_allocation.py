import uuid
from decimal import Decimal

import pytest

from edupay.core.enums import AllocationMethod, CategoryStatus, InstallmentStatus
from edupay.core.models import LedgerInstallment, StudentFeeCategory
from edupay.ledger.allocation import (
    PriorityAllocation,
    ProportionalAllocation,
    allocate_to_installments,
    get_allocation_strategy,
)


def _installments(amounts, paid=None):
    paid = paid or [0] * len(amounts)
    return [
        LedgerInstallment(
            id=uuid.uuid4(),
            installment_order=n,
            name=f"Installment {n}",
            amount_due=Decimal(a),
            amount_paid=Decimal(p),
            status=InstallmentStatus.completed.value if p >= a else InstallmentStatus.not_started.value,
            is_unlocked=n == 1,
        )
        for n, (a, p) in enumerate(zip(amounts, paid), start=1)
    ]


def _category(category_id, amount_due, priority=1, amount_paid=0, name=None):
    return StudentFeeCategory(
        category_id=category_id,
        category_name=name or category_id.title(),
        priority=priority,
        amount_due=Decimal(amount_due),
        amount_paid=Decimal(amount_paid),
        balance=Decimal(amount_due) - Decimal(amount_paid),
        status=CategoryStatus.unpaid.value,
    )


# --- Installment order ---
def test_installments_saturate_in_order() -> None:
    installments = _installments([500000, 300000, 200000])

    outcome = allocate_to_installments(installments, Decimal("600000"))

    assert [a.amount for a in outcome.allocations] == [Decimal("500000"), Decimal("100000")]
    assert outcome.allocations[0].is_completed is True
    assert outcome.allocations[1].is_completed is False
    assert outcome.allocations[1].now_paid == Decimal("100000")
    assert outcome.unapplied == 0
    assert outcome.method == AllocationMethod.installment_order


def test_installments_exact_total_completes_all() -> None:
    installments = _installments([500000, 300000, 200000])

    outcome = allocate_to_installments(installments, Decimal("1000000"))

    assert outcome.total_allocated == Decimal("1000000")
    assert all(a.is_completed for a in outcome.allocations)


def test_installments_skip_completed() -> None:
    installments = _installments([500000, 300000, 200000], paid=[500000, 100000, 0])

    outcome = allocate_to_installments(installments, Decimal("250000"))

    assert [a.target_name for a in outcome.allocations] == ["Installment 2", "Installment 3"]
    assert [a.amount for a in outcome.allocations] == [Decimal("200000"), Decimal("50000")]
    assert outcome.allocations[0].previously_paid == Decimal("100000")


def test_installments_excess_is_reported_unapplied() -> None:
    installments = _installments([100000])

    outcome = allocate_to_installments(installments, Decimal("150000"))

    assert outcome.total_allocated == Decimal("100000")
    assert outcome.unapplied == Decimal("50000")
    assert outcome.is_over_allocated


# --- Priority ---
def test_priority_fills_lowest_priority_number_first() -> None:
    categories = [
        _category("BRD", 400000, priority=2),
        _category("TUI", 700000, priority=1),
        _category("EXM", 100000, priority=3),
    ]

    outcome = PriorityAllocation().allocate(Decimal("800000"), categories)

    assert [(a.target_id, a.amount) for a in outcome.allocations] == [
        ("TUI", Decimal("700000")),
        ("BRD", Decimal("100000")),
    ]
    assert outcome.total_allocated == Decimal("800000")


def test_priority_ties_break_on_category_id() -> None:
    categories = [_category("UNI", 50000, priority=1), _category("LIB", 50000, priority=1)]

    outcome = PriorityAllocation().allocate(Decimal("60000"), categories)

    assert [(a.target_id, a.amount) for a in outcome.allocations] == [
        ("LIB", Decimal("50000")),
        ("UNI", Decimal("10000")),
    ]


def test_priority_skips_paid_categories() -> None:
    categories = [_category("TUI", 100000, priority=1, amount_paid=100000), _category("BRD", 100000, priority=2)]

    outcome = PriorityAllocation().allocate(Decimal("40000"), categories)

    assert [a.target_id for a in outcome.allocations] == ["BRD"]


# --- Proportional ---
def test_proportional_split_by_outstanding() -> None:
    categories = [_category("TUI", 700000), _category("BRD", 300000)]

    outcome = ProportionalAllocation().allocate(Decimal("100000"), categories)

    amounts = {a.target_id: a.amount for a in outcome.allocations}
    assert amounts == {"TUI": Decimal("70000"), "BRD": Decimal("30000")}
    assert outcome.total_allocated == Decimal("100000")


def test_proportional_remainder_goes_to_exactly_one_category() -> None:
    categories = [_category("A01", 100000), _category("A02", 100000), _category("A03", 100000)]

    outcome = ProportionalAllocation().allocate(Decimal("100000"), categories)

    amounts = [a.amount for a in outcome.allocations]
    assert amounts == [Decimal("33334"), Decimal("33333"), Decimal("33333")]
    assert sum(amounts) == Decimal("100000")


def test_proportional_is_deterministic_regardless_of_input_order() -> None:
    forward = [_category("A01", 100000), _category("A02", 100000), _category("A03", 100000)]
    backward = list(reversed(forward))

    first = ProportionalAllocation().allocate(Decimal("100000"), forward)
    second = ProportionalAllocation().allocate(Decimal("100000"), backward)

    assert [(a.target_id, a.amount) for a in first.allocations] == [
        (a.target_id, a.amount) for a in second.allocations
    ]


def test_proportional_largest_remainder_wins() -> None:
    # 10 split over 1:2 -> 3.33 / 6.67; the larger fraction takes the leftover unit
    categories = [_category("AAA", 100), _category("BBB", 200)]

    outcome = ProportionalAllocation().allocate(Decimal("10"), categories)

    amounts = {a.target_id: a.amount for a in outcome.allocations}
    assert amounts == {"AAA": Decimal("3"), "BBB": Decimal("7")}


def test_proportional_never_exceeds_outstanding() -> None:
    categories = [_category("TUI", 10), _category("BRD", 999990)]

    outcome = ProportionalAllocation().allocate(Decimal("999999"), categories)

    amounts = {a.target_id: a.amount for a in outcome.allocations}
    assert amounts["TUI"] <= Decimal("10")
    assert outcome.total_allocated == Decimal("999999")


def test_proportional_full_payment_settles_every_category() -> None:
    categories = [_category("TUI", 700000), _category("BRD", 300000, amount_paid=100000)]

    outcome = ProportionalAllocation().allocate(Decimal("900000"), categories)

    assert {a.target_id: a.amount for a in outcome.allocations} == {
        "TUI": Decimal("700000"),
        "BRD": Decimal("200000"),
    }
    assert all(a.is_completed for a in outcome.allocations)
    assert outcome.unapplied == 0


def test_proportional_excess_is_reported_unapplied() -> None:
    categories = [_category("TUI", 1000)]

    outcome = ProportionalAllocation().allocate(Decimal("1500"), categories)

    assert outcome.total_allocated == Decimal("1000")
    assert outcome.unapplied == Decimal("500")


def test_proportional_respects_currency_unit() -> None:
    categories = [_category("TUI", Decimal("10.00")), _category("BRD", Decimal("20.00"))]

    outcome = ProportionalAllocation().allocate(Decimal("10.00"), categories, unit=Decimal("0.01"))

    amounts = {a.target_id: a.amount for a in outcome.allocations}
    assert amounts == {"TUI": Decimal("3.33"), "BRD": Decimal("6.67")}


# --- Strategy lookup ---
def test_strategy_lookup() -> None:
    assert isinstance(get_allocation_strategy(AllocationMethod.priority), PriorityAllocation)
    assert isinstance(get_allocation_strategy("proportional"), ProportionalAllocation)


@pytest.mark.parametrize("method", ["installment_order", "fifo"])
def test_strategy_lookup_rejects_non_category_methods(method) -> None:
    with pytest.raises(ValueError):
        get_allocation_strategy(method)
