"""Payment allocation: the share of one payment applied to one installment or fee category."""

import uuid

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import relationship

from edupay.db.session import Base


class PaymentAllocation(Base):
    """sum(amount) over a payment's allocations equals payment.amount."""

    __tablename__ = "payment_allocations"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_payment_allocation_amount_positive"),
        CheckConstraint(
            "target_type IN ('installment','category')",
            name="chk_payment_allocation_target_type",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_id = Column(Uuid, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)  # order in which the engine produced it
    target_type = Column(String(20), nullable=False)
    # ledger_installments.id (as string) or student_fee_categories.category_id
    target_id = Column(String(64), nullable=False)
    target_name = Column(String(100), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)

    payment = relationship("Payment", back_populates="allocations")
