"""Ledgers service: open a student's term ledger from a fee schedule, and ledger reads."""

import logging
from typing import List
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from edupay.core.config import settings
from edupay.core.enums import (
    AllocationMethod,
    AllocationMode,
    CategoryStatus,
    InstallmentStatus,
    LedgerPaymentStatus,
)
from edupay.core.exceptions import NotFoundError, ServiceError
from edupay.core.models import LedgerInstallment, StudentFeeCategory, StudentLedger
from edupay.core.schemas import LedgerResponse
from edupay.ledger.audit import ledger_audit_state, log_fee_audit
from edupay.ledger.money import ZERO, is_whole_units
from edupay.ledger.serializers import ledger_to_response

from .schemas import LedgerOpenRequest

logger = logging.getLogger(__name__)


def _with_sub_ledger(stmt):
    return stmt.options(selectinload(StudentLedger.installments), selectinload(StudentLedger.categories))


# --- Open ---
async def open_ledger(
    db: AsyncSession,
    school_id: UUID,
    payload: LedgerOpenRequest,
    changed_by: UUID,
) -> LedgerResponse:
    """Create the ledger for one student and term. A student has at most one active ledger."""
    existing = await db.execute(
        select(StudentLedger.id).where(
            StudentLedger.school_id == school_id,
            StudentLedger.student_id == payload.student_id,
            StudentLedger.is_archived.is_(False),
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise ServiceError(
            "Student already has an active ledger; archive it before opening a new term",
            status.HTTP_409_CONFLICT,
        )

    unit = settings.currency_unit
    amounts = [i.amount_due for i in payload.installments] + [c.amount for c in payload.categories]
    if any(not is_whole_units(a, unit) for a in amounts):
        raise ServiceError(f"Fee amounts must be whole multiples of {unit}", status.HTTP_400_BAD_REQUEST)
    total = sum(amounts, ZERO)

    if payload.installments:
        ledger = StudentLedger(
            allocation_mode=AllocationMode.installment.value,
            allocation_method=AllocationMethod.installment_order.value,
            installments=[
                LedgerInstallment(
                    installment_order=order,
                    name=item.name.strip(),
                    amount_due=item.amount_due,
                    amount_paid=ZERO,
                    status=InstallmentStatus.not_started.value,
                    deadline=item.deadline,
                    is_unlocked=order == 1,
                )
                for order, item in enumerate(payload.installments, start=1)
            ],
            categories=[],
            current_installment=1,
        )
    else:
        ledger = StudentLedger(
            allocation_mode=AllocationMode.category.value,
            allocation_method=payload.allocation_method.value,
            installments=[],
            categories=[
                StudentFeeCategory(
                    category_id=item.category_id.strip().upper(),
                    category_name=item.category_name.strip(),
                    priority=item.priority,
                    amount_due=item.amount,
                    amount_paid=ZERO,
                    balance=item.amount,
                    status=CategoryStatus.unpaid.value,
                )
                for item in payload.categories
            ],
        )
    ledger.school_id = school_id
    ledger.student_id = payload.student_id
    ledger.academic_year = payload.academic_year.strip()
    ledger.term = payload.term
    ledger.total_fees = total
    ledger.amount_paid = ZERO
    ledger.balance = total
    ledger.payment_status = LedgerPaymentStatus.no_payment.value
    ledger.is_archived = False

    try:
        db.add(ledger)
        await db.flush()
        await log_fee_audit(
            db, school_id, "student_ledgers", ledger.id, "CREATE",
            None, ledger_audit_state(ledger), changed_by,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "Ledger could not be opened: the student already has an active ledger or categories repeat",
            status.HTTP_409_CONFLICT,
        )

    logger.info(
        "Opened %s ledger %s for student %s (%s term %s): %s",
        ledger.allocation_mode, ledger.id, ledger.student_id, ledger.academic_year, ledger.term, total,
    )
    return ledger_to_response(ledger)


# --- Reads ---
async def get_ledger(db: AsyncSession, school_id: UUID, ledger_id: UUID) -> LedgerResponse:
    result = await db.execute(
        _with_sub_ledger(select(StudentLedger)).where(
            StudentLedger.id == ledger_id,
            StudentLedger.school_id == school_id,
        )
    )
    ledger = result.scalar_one_or_none()
    if not ledger:
        raise NotFoundError("Ledger not found")
    return ledger_to_response(ledger)


async def get_active_ledger(db: AsyncSession, school_id: UUID, student_id: UUID) -> LedgerResponse:
    result = await db.execute(
        _with_sub_ledger(select(StudentLedger)).where(
            StudentLedger.school_id == school_id,
            StudentLedger.student_id == student_id,
            StudentLedger.is_archived.is_(False),
        )
    )
    ledger = result.scalar_one_or_none()
    if not ledger:
        raise NotFoundError("No active fee ledger found for this student")
    return ledger_to_response(ledger)


async def list_student_ledgers(db: AsyncSession, school_id: UUID, student_id: UUID) -> List[LedgerResponse]:
    """All of a student's ledgers, newest term first, archived included."""
    result = await db.execute(
        _with_sub_ledger(select(StudentLedger))
        .where(StudentLedger.school_id == school_id, StudentLedger.student_id == student_id)
        .order_by(StudentLedger.created_at.desc())
    )
    return [ledger_to_response(ledger) for ledger in result.scalars().all()]
