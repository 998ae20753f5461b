"""Payments router: record, read, allocation breakdown, reverse, student history."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from edupay.auth.dependencies import get_current_user
from edupay.auth.rbac import check_permission
from edupay.auth.schemas import CurrentUser
from edupay.core.exceptions import ServiceError
from edupay.core.schemas import (
    PaymentCategoryAllocation,
    PaymentRecordInput,
    PaymentRecordResult,
    PaymentResponse,
)
from edupay.db.session import get_db
from edupay.ledger.coordinator import LedgerTransactionCoordinator
from edupay.ledger.dependencies import get_coordinator

from .schemas import PaymentReversalRequest
from . import service

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.post(
    "",
    response_model=PaymentRecordResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("payments", "create"))],
)
async def record_payment(
    payload: PaymentRecordInput,
    send_notification: bool = Query(True, description="Set false to skip the payer notification"),
    coordinator: LedgerTransactionCoordinator = Depends(get_coordinator),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentRecordResult:
    result = await coordinator.record_payment(
        payload,
        recorded_by=current_user.id,
        school_id=current_user.school_id,
        send_notification=send_notification,
    )
    if not result.success:
        raise HTTPException(status_code=result.status_code or status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result


@router.get(
    "/student/{student_id}",
    response_model=List[PaymentResponse],
    dependencies=[Depends(check_permission("payments", "read"))],
)
async def list_student_payments(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[PaymentResponse]:
    return await service.list_student_payments(db, current_user.school_id, student_id)


@router.get(
    "/{payment_id}",
    response_model=PaymentResponse,
    dependencies=[Depends(check_permission("payments", "read"))],
)
async def get_payment(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentResponse:
    try:
        return await service.get_payment(db, current_user.school_id, payment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/{payment_id}/allocation",
    response_model=PaymentCategoryAllocation,
    dependencies=[Depends(check_permission("payments", "read"))],
)
async def get_payment_allocation(
    payment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentCategoryAllocation:
    try:
        return await service.get_payment_allocation(db, current_user.school_id, payment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{payment_id}/reverse",
    response_model=PaymentResponse,
    dependencies=[Depends(check_permission("payments", "update"))],
)
async def reverse_payment(
    payment_id: UUID,
    payload: PaymentReversalRequest,
    coordinator: LedgerTransactionCoordinator = Depends(get_coordinator),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentResponse:
    try:
        return await coordinator.reverse_payment(
            payment_id, payload.reason, current_user.id, current_user.school_id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
