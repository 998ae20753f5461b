"""Payments service: payment reads. Recording and reversal go through the ledger transaction coordinator."""

from typing import List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from edupay.core.enums import AllocationTargetType
from edupay.core.exceptions import NotFoundError
from edupay.core.models import Payment
from edupay.core.schemas import CategoryAllocationLine, PaymentCategoryAllocation, PaymentResponse
from edupay.ledger.serializers import payment_to_response


async def _get_payment(db: AsyncSession, school_id: UUID, payment_id: UUID) -> Payment:
    result = await db.execute(
        select(Payment)
        .options(selectinload(Payment.allocations))
        .where(Payment.id == payment_id, Payment.school_id == school_id)
    )
    payment = result.scalar_one_or_none()
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


async def get_payment(db: AsyncSession, school_id: UUID, payment_id: UUID) -> PaymentResponse:
    return payment_to_response(await _get_payment(db, school_id, payment_id))


async def get_payment_allocation(db: AsyncSession, school_id: UUID, payment_id: UUID) -> PaymentCategoryAllocation:
    """Per-category breakdown of a payment recorded against a category ledger."""
    payment = await _get_payment(db, school_id, payment_id)
    lines = [
        CategoryAllocationLine(category_id=a.target_id, category_name=a.target_name, amount=a.amount)
        for a in payment.allocations
        if a.target_type == AllocationTargetType.category.value
    ]
    if not lines:
        raise NotFoundError("Payment was not allocated across fee categories")
    return PaymentCategoryAllocation(
        payment_id=payment.id,
        allocations=lines,
        allocation_method=payment.allocation_method,
        allocated_at=payment.recorded_at,
        allocated_by=payment.recorded_by,
    )


async def list_student_payments(db: AsyncSession, school_id: UUID, student_id: UUID) -> List[PaymentResponse]:
    """Payment history for a student, newest first. Reversed payments are included."""
    result = await db.execute(
        select(Payment)
        .options(selectinload(Payment.allocations))
        .where(Payment.school_id == school_id, Payment.student_id == student_id)
        .order_by(Payment.recorded_at.desc())
    )
    return [payment_to_response(p) for p in result.scalars().all()]
