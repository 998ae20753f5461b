"""Ledger installment: one scheduled portion of a student's term fees."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from edupay.core.enums import InstallmentStatus
from edupay.db.session import Base


class LedgerInstallment(Base):
    """Installment progress. is_unlocked only ever goes False -> True."""

    __tablename__ = "ledger_installments"
    __table_args__ = (
        UniqueConstraint("ledger_id", "installment_order", name="uq_ledger_installment_order"),
        CheckConstraint("amount_paid >= 0", name="chk_ledger_installment_amount_paid_non_negative"),
        CheckConstraint(
            "status IN ('not_started','in_progress','completed','overdue')",
            name="chk_ledger_installment_status",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id = Column(Uuid, ForeignKey("student_ledgers.id", ondelete="CASCADE"), nullable=False, index=True)
    installment_order = Column(Integer, nullable=False)  # 1..n, contiguous
    name = Column(String(100), nullable=False)
    amount_due = Column(Numeric(14, 2), nullable=False)
    amount_paid = Column(Numeric(14, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=InstallmentStatus.not_started.value)
    deadline = Column(Date, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    is_unlocked = Column(Boolean, nullable=False, default=False)

    ledger = relationship("StudentLedger", back_populates="installments")
