"""Ledgers router: open, read, adjust, archive, overdue sweep."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from edupay.auth.dependencies import get_current_user
from edupay.auth.rbac import check_permission
from edupay.auth.schemas import CurrentUser
from edupay.core.exceptions import ServiceError
from edupay.core.schemas import LedgerResponse, OverdueSweepResult
from edupay.db.session import get_db
from edupay.ledger.coordinator import LedgerTransactionCoordinator
from edupay.ledger.dependencies import get_coordinator

from .schemas import FeeAdjustmentRequest, LedgerOpenRequest, OverdueSweepRequest
from . import service

router = APIRouter(prefix="/api/v1/ledgers", tags=["ledgers"])


@router.post(
    "",
    response_model=LedgerResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("ledgers", "create"))],
)
async def open_ledger(
    payload: LedgerOpenRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> LedgerResponse:
    try:
        return await service.open_ledger(db, current_user.school_id, payload, changed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/student/{student_id}",
    response_model=LedgerResponse,
    dependencies=[Depends(check_permission("ledgers", "read"))],
)
async def get_student_ledger(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> LedgerResponse:
    try:
        return await service.get_active_ledger(db, current_user.school_id, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/student/{student_id}/history",
    response_model=List[LedgerResponse],
    dependencies=[Depends(check_permission("ledgers", "read"))],
)
async def list_student_ledgers(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[LedgerResponse]:
    return await service.list_student_ledgers(db, current_user.school_id, student_id)


@router.get(
    "/{ledger_id}",
    response_model=LedgerResponse,
    dependencies=[Depends(check_permission("ledgers", "read"))],
)
async def get_ledger(
    ledger_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> LedgerResponse:
    try:
        return await service.get_ledger(db, current_user.school_id, ledger_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Writes through the coordinator ---
@router.post(
    "/{ledger_id}/adjustments",
    response_model=LedgerResponse,
    dependencies=[Depends(check_permission("ledgers", "update"))],
)
async def adjust_fees(
    ledger_id: UUID,
    payload: FeeAdjustmentRequest,
    coordinator: LedgerTransactionCoordinator = Depends(get_coordinator),
    current_user: CurrentUser = Depends(get_current_user),
) -> LedgerResponse:
    try:
        return await coordinator.adjust_fees(
            ledger_id, payload.amount, payload.reason, current_user.id, current_user.school_id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{ledger_id}/archive",
    response_model=LedgerResponse,
    dependencies=[Depends(check_permission("ledgers", "update"))],
)
async def archive_ledger(
    ledger_id: UUID,
    coordinator: LedgerTransactionCoordinator = Depends(get_coordinator),
    current_user: CurrentUser = Depends(get_current_user),
) -> LedgerResponse:
    try:
        return await coordinator.archive_ledger(ledger_id, current_user.id, current_user.school_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/overdue-sweep",
    response_model=OverdueSweepResult,
    dependencies=[Depends(check_permission("ledgers", "update"))],
)
async def overdue_sweep(
    payload: OverdueSweepRequest,
    coordinator: LedgerTransactionCoordinator = Depends(get_coordinator),
    current_user: CurrentUser = Depends(get_current_user),
) -> OverdueSweepResult:
    try:
        return await coordinator.mark_overdue(current_user.school_id, payload.as_of)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
