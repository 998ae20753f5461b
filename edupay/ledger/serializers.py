from edupay.core.enums import CHANNEL_DISPLAY_NAMES, PaymentChannel
from edupay.core.models import Payment, StudentLedger
from edupay.core.schemas import (
    AllocationItem,
    FeeCategoryStatusResponse,
    InstallmentResponse,
    LedgerResponse,
    PaymentResponse,
)


def ledger_to_response(ledger: StudentLedger) -> LedgerResponse:
    """Installments and categories must already be loaded."""
    return LedgerResponse(
        id=ledger.id,
        school_id=ledger.school_id,
        student_id=ledger.student_id,
        academic_year=ledger.academic_year,
        term=ledger.term,
        allocation_mode=ledger.allocation_mode,
        allocation_method=ledger.allocation_method,
        total_fees=ledger.total_fees,
        amount_paid=ledger.amount_paid,
        balance=ledger.balance,
        payment_status=ledger.payment_status,
        current_installment=ledger.current_installment,
        last_payment_date=ledger.last_payment_date,
        is_archived=ledger.is_archived,
        archived_at=ledger.archived_at,
        installments=[
            InstallmentResponse.model_validate(i)
            for i in sorted(ledger.installments, key=lambda i: i.installment_order)
        ],
        categories=[
            FeeCategoryStatusResponse.model_validate(c)
            for c in sorted(ledger.categories, key=lambda c: (c.priority, c.category_id))
        ],
        created_at=ledger.created_at,
        updated_at=ledger.updated_at,
    )


def payment_to_response(payment: Payment) -> PaymentResponse:
    """Allocations must already be loaded."""
    channel = PaymentChannel(payment.channel)
    return PaymentResponse(
        id=payment.id,
        receipt_number=payment.receipt_number,
        school_id=payment.school_id,
        student_id=payment.student_id,
        ledger_id=payment.ledger_id,
        amount=payment.amount,
        currency=payment.currency,
        channel=channel,
        channel_display=CHANNEL_DISPLAY_NAMES[channel],
        transaction_ref=payment.transaction_ref,
        status=payment.status,
        allocation_method=payment.allocation_method,
        allocations=[
            AllocationItem(
                target_type=a.target_type,
                target_id=a.target_id,
                target_name=a.target_name,
                amount=a.amount,
            )
            for a in sorted(payment.allocations, key=lambda a: a.position)
        ],
        recorded_by=payment.recorded_by,
        recorded_at=payment.recorded_at,
        notes=payment.notes,
        reversed_at=payment.reversed_at,
        reversed_by=payment.reversed_by,
        reversal_reason=payment.reversal_reason,
    )
