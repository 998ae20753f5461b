from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from edupay.core.enums import AllocationMethod


class InstallmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)  # e.g. "Installment 1", "First Half"
    amount_due: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    deadline: Optional[date] = None


class FeeCategoryCreate(BaseModel):
    category_id: str = Field(..., min_length=1, max_length=50)  # e.g. TUI, BRD, EXM
    category_name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    priority: int = Field(..., ge=1, description="Lower is paid first under priority allocation")


class LedgerOpenRequest(BaseModel):
    """Fee schedule snapshot for one student and term. Exactly one of installments or categories."""

    student_id: UUID
    academic_year: str = Field(..., min_length=4, max_length=20)
    term: int = Field(..., ge=1, le=3)
    installments: List[InstallmentCreate] = Field(default_factory=list)
    categories: List[FeeCategoryCreate] = Field(default_factory=list)
    allocation_method: AllocationMethod = AllocationMethod.priority

    @model_validator(mode="after")
    def validate_schedule(self) -> "LedgerOpenRequest":
        if bool(self.installments) == bool(self.categories):
            raise ValueError("Provide either installments or categories, not both")
        if self.categories:
            if self.allocation_method == AllocationMethod.installment_order:
                raise ValueError("Category ledgers allocate by priority or proportional")
            ids = [c.category_id for c in self.categories]
            if len(set(ids)) != len(ids):
                raise ValueError("category_id must be unique within a ledger")
        return self


class FeeAdjustmentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Reduction of total fees, e.g. bursary or waiver")
    reason: str = Field(..., min_length=3, max_length=500)


class OverdueSweepRequest(BaseModel):
    as_of: Optional[date] = Field(None, description="Defaults to today")
