from enum import Enum


class PaymentChannel(str, Enum):
    momo_mtn = "momo_mtn"
    momo_airtel = "momo_airtel"
    bank_transfer = "bank_transfer"
    cash = "cash"
    cheque = "cheque"
    other = "other"


CHANNEL_DISPLAY_NAMES = {
    PaymentChannel.momo_mtn: "MTN Mobile Money",
    PaymentChannel.momo_airtel: "Airtel Money",
    PaymentChannel.bank_transfer: "Bank Transfer",
    PaymentChannel.cash: "Cash Payment",
    PaymentChannel.cheque: "Cheque Payment",
    PaymentChannel.other: "Other Payment Method",
}


class PaymentRecordStatus(str, Enum):
    cleared = "cleared"
    reversed = "reversed"


class LedgerPaymentStatus(str, Enum):
    fully_paid = "fully_paid"
    partial = "partial"
    overdue = "overdue"
    no_payment = "no_payment"


class InstallmentStatus(str, Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    completed = "completed"
    overdue = "overdue"


class CategoryStatus(str, Enum):
    unpaid = "unpaid"
    partial = "partial"
    paid = "paid"


class AllocationMode(str, Enum):
    installment = "installment"
    category = "category"


class AllocationMethod(str, Enum):
    installment_order = "installment_order"
    priority = "priority"
    proportional = "proportional"


class AllocationTargetType(str, Enum):
    installment = "installment"
    category = "category"
