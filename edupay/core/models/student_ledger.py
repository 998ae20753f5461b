"""Student ledger: one student's fee state for a term. The consistency boundary for all balance invariants."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from edupay.core.enums import AllocationMethod, AllocationMode, LedgerPaymentStatus
from edupay.db.session import Base


class StudentLedger(Base):
    """
    Snapshot of a student's assigned fee schedule plus running totals.
    Mutated only by the ledger transaction coordinator; `version` guards concurrent writers.
    """

    __tablename__ = "student_ledgers"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="chk_student_ledger_balance_non_negative"),
        CheckConstraint("amount_paid >= 0", name="chk_student_ledger_amount_paid_non_negative"),
        CheckConstraint(
            "allocation_mode IN ('installment','category')",
            name="chk_student_ledger_allocation_mode",
        ),
        CheckConstraint(
            "payment_status IN ('fully_paid','partial','overdue','no_payment')",
            name="chk_student_ledger_payment_status",
        ),
        Index("ix_student_ledgers_school_student", "school_id", "student_id"),
        # At most one active ledger per student
        Index(
            "uq_student_ledgers_active_student",
            "school_id",
            "student_id",
            unique=True,
            postgresql_where=text("NOT is_archived"),
            sqlite_where=text("is_archived = 0"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    student_id = Column(Uuid, nullable=False)
    academic_year = Column(String(20), nullable=False)  # e.g. "2026"
    term = Column(Integer, nullable=False)  # 1, 2, 3

    # installment = ordered installments; category = tuition/boarding/exam breakdown
    allocation_mode = Column(String(20), nullable=False, default=AllocationMode.installment.value)
    # Default strategy for category ledgers: priority | proportional
    allocation_method = Column(String(20), nullable=False, default=AllocationMethod.priority.value)

    total_fees = Column(Numeric(14, 2), nullable=False)
    amount_paid = Column(Numeric(14, 2), nullable=False, default=0)
    balance = Column(Numeric(14, 2), nullable=False)
    payment_status = Column(String(20), nullable=False, default=LedgerPaymentStatus.no_payment.value)
    current_installment = Column(Integer, nullable=True)
    last_payment_date = Column(DateTime(timezone=True), nullable=True)

    is_archived = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    installments = relationship(
        "LedgerInstallment",
        back_populates="ledger",
        order_by="LedgerInstallment.installment_order",
        cascade="all, delete-orphan",
    )
    categories = relationship(
        "StudentFeeCategory",
        back_populates="ledger",
        order_by="StudentFeeCategory.priority",
        cascade="all, delete-orphan",
    )

    # UPDATE ... WHERE id = ? AND version = ?; a stale row raises StaleDataError
    __mapper_args__ = {"version_id_col": version}
