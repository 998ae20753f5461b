"""Ledger and payment contracts shared by the transaction coordinator and the API routers."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from edupay.core.enums import (
    AllocationMethod,
    AllocationMode,
    AllocationTargetType,
    CategoryStatus,
    InstallmentStatus,
    LedgerPaymentStatus,
    PaymentChannel,
    PaymentRecordStatus,
)


# --- Ledger ---
class InstallmentResponse(BaseModel):
    id: UUID
    installment_order: int
    name: str
    amount_due: Decimal
    amount_paid: Decimal
    status: InstallmentStatus
    deadline: Optional[date] = None
    completed_at: Optional[datetime] = None
    is_unlocked: bool

    class Config:
        from_attributes = True


class FeeCategoryStatusResponse(BaseModel):
    category_id: str
    category_name: str
    priority: int
    amount_due: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: CategoryStatus
    last_payment_date: Optional[datetime] = None

    class Config:
        from_attributes = True


class LedgerResponse(BaseModel):
    id: UUID
    school_id: UUID
    student_id: UUID
    academic_year: str
    term: int
    allocation_mode: AllocationMode
    allocation_method: AllocationMethod
    total_fees: Decimal
    amount_paid: Decimal
    balance: Decimal
    payment_status: LedgerPaymentStatus
    current_installment: Optional[int] = None
    last_payment_date: Optional[datetime] = None
    is_archived: bool
    archived_at: Optional[datetime] = None
    installments: List[InstallmentResponse] = Field(default_factory=list)
    categories: List[FeeCategoryStatusResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


# --- Payment ---
class PaymentRecordInput(BaseModel):
    student_id: UUID
    # Sign and size are checked against the ledger by the validator, not here
    amount: Decimal
    channel: PaymentChannel
    transaction_ref: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = None
    allocation_method: Optional[AllocationMethod] = Field(
        None, description="Category ledgers only: priority or proportional. Defaults to the ledger's method."
    )


class AllocationItem(BaseModel):
    target_type: AllocationTargetType
    target_id: str
    target_name: str
    amount: Decimal


class PaymentResponse(BaseModel):
    id: UUID
    receipt_number: str
    school_id: UUID
    student_id: UUID
    ledger_id: UUID
    amount: Decimal
    currency: str
    channel: PaymentChannel
    channel_display: str
    transaction_ref: str
    status: PaymentRecordStatus
    allocation_method: AllocationMethod
    allocations: List[AllocationItem]
    recorded_by: Optional[UUID] = None
    recorded_at: datetime
    notes: Optional[str] = None
    reversed_at: Optional[datetime] = None
    reversed_by: Optional[UUID] = None
    reversal_reason: Optional[str] = None


class PaymentRecordResult(BaseModel):
    success: bool
    payment: Optional[PaymentResponse] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    status_code: Optional[int] = Field(None, exclude=True)


class CategoryAllocationLine(BaseModel):
    category_id: str
    category_name: str
    amount: Decimal


class PaymentCategoryAllocation(BaseModel):
    payment_id: UUID
    allocations: List[CategoryAllocationLine]
    allocation_method: AllocationMethod
    allocated_at: datetime
    allocated_by: Optional[UUID] = None


# --- Scheduler ---
class OverdueSweepResult(BaseModel):
    ledgers_checked: int
    ledgers_updated: int
    installments_flagged: int
