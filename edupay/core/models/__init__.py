from edupay.core.models.student_ledger import StudentLedger
from edupay.core.models.ledger_installment import LedgerInstallment
from edupay.core.models.student_fee_category import StudentFeeCategory
from edupay.core.models.payment import Payment
from edupay.core.models.payment_allocation import PaymentAllocation
from edupay.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "StudentLedger",
    "LedgerInstallment",
    "StudentFeeCategory",
    "Payment",
    "PaymentAllocation",
    "FeeAuditLog",
]
