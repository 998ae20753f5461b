"""Student fee category: per-ledger breakdown by fee category (tuition, boarding, exam...)."""

import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from edupay.core.enums import CategoryStatus
from edupay.db.session import Base


class StudentFeeCategory(Base):
    """Category row of a ledger. category_id is the schedule's stable id (e.g. TUI), unique per ledger."""

    __tablename__ = "student_fee_categories"
    __table_args__ = (
        UniqueConstraint("ledger_id", "category_id", name="uq_student_fee_category_ledger_category"),
        CheckConstraint("balance >= 0", name="chk_student_fee_category_balance_non_negative"),
        CheckConstraint("status IN ('unpaid','partial','paid')", name="chk_student_fee_category_status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id = Column(Uuid, ForeignKey("student_ledgers.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(String(50), nullable=False)
    category_name = Column(String(100), nullable=False)
    priority = Column(Integer, nullable=False)  # 1 = allocated first
    amount_due = Column(Numeric(14, 2), nullable=False)
    amount_paid = Column(Numeric(14, 2), nullable=False, default=0)
    balance = Column(Numeric(14, 2), nullable=False)
    status = Column(String(20), nullable=False, default=CategoryStatus.unpaid.value)
    last_payment_date = Column(DateTime(timezone=True), nullable=True)

    ledger = relationship("StudentLedger", back_populates="categories")
