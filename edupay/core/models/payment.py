"""Payment: a fee payment received externally and recorded against a student ledger."""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from edupay.core.enums import PaymentRecordStatus
from edupay.db.session import Base


class Payment(Base):
    """Immutable once recorded; only the reversal fields are ever written afterwards."""

    __tablename__ = "payments"
    __table_args__ = (
        # Replaying the same external reference must not double-record a payment
        UniqueConstraint("school_id", "transaction_ref", name="uq_payment_school_transaction_ref"),
        UniqueConstraint("receipt_number", name="uq_payment_receipt_number"),
        CheckConstraint("amount > 0", name="chk_payment_amount_positive"),
        CheckConstraint("status IN ('cleared','reversed')", name="chk_payment_status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    receipt_number = Column(String(40), nullable=False)
    school_id = Column(Uuid, nullable=False, index=True)
    student_id = Column(Uuid, nullable=False, index=True)
    ledger_id = Column(Uuid, ForeignKey("student_ledgers.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    channel = Column(String(30), nullable=False)  # momo_mtn, momo_airtel, bank_transfer, cash, cheque, other
    transaction_ref = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentRecordStatus.cleared.value)
    allocation_method = Column(String(20), nullable=False)
    recorded_by = Column(Uuid, nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False)
    notes = Column(Text, nullable=True)
    reversed_at = Column(DateTime(timezone=True), nullable=True)
    reversed_by = Column(Uuid, nullable=True)
    reversal_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    ledger = relationship("StudentLedger")
    allocations = relationship(
        "PaymentAllocation",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentAllocation.position",
    )
