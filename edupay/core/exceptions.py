from decimal import Decimal
from typing import Optional

from fastapi import status


def _amount(value: Decimal) -> str:
    if value == value.to_integral_value():
        return f"{value:,.0f}"
    return f"{value:,}"


class ServiceError(Exception):
    """Base exception for service layer errors."""

    code = "SERVICE_ERROR"

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# --- Validation (no write attempted, caller may retry with a different amount) ---
class ValidationError(ServiceError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class NoOutstandingBalance(ValidationError):
    code = "NO_OUTSTANDING_BALANCE"

    def __init__(self) -> None:
        super().__init__("Student has no outstanding balance")


class InvalidAmount(ValidationError):
    code = "INVALID_AMOUNT"

    def __init__(self, message: str = "Payment amount must be greater than zero") -> None:
        super().__init__(message)


class AmountExceedsBalance(ValidationError):
    code = "AMOUNT_EXCEEDS_BALANCE"

    def __init__(self, requested: Decimal, available: Decimal) -> None:
        super().__init__(f"Amount ({_amount(requested)}) exceeds outstanding balance ({_amount(available)})")
        self.requested = requested
        self.available = available


class InstallmentLocked(ValidationError):
    code = "INSTALLMENT_LOCKED"

    def __init__(self, installment_name: str) -> None:
        super().__init__(
            f"{installment_name} is not yet unlocked. Previous installments must be completed first."
        )
        self.installment_name = installment_name


# --- Ledger state errors ---
class NotFoundError(ServiceError):
    code = "NOT_FOUND"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ConflictError(ServiceError):
    """Concurrent modification of a ledger aggregate. Retried internally before surfacing."""

    code = "CONFLICT"

    def __init__(self, message: str = "Ledger was modified concurrently, please try again") -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class DuplicatePaymentError(ServiceError):
    code = "DUPLICATE_TRANSACTION"

    def __init__(self, transaction_ref: str) -> None:
        super().__init__(
            f"A payment with transaction reference {transaction_ref} is already recorded",
            status.HTTP_409_CONFLICT,
        )
        self.transaction_ref = transaction_ref


class PaymentAlreadyReversedError(ServiceError):
    code = "PAYMENT_ALREADY_REVERSED"

    def __init__(self) -> None:
        super().__init__("Payment has already been reversed", status.HTTP_409_CONFLICT)


class OverAllocationError(ServiceError):
    """Allocation could not place the full amount: the ledger and its sub-ledger disagree."""

    code = "OVER_ALLOCATION"

    def __init__(self, unapplied: Decimal) -> None:
        super().__init__(
            f"Allocation left {_amount(unapplied)} unapplied; ledger is inconsistent",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        self.unapplied = unapplied


class LedgerInvariantError(ServiceError):
    code = "LEDGER_INVARIANT"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


# --- Post-commit collaborators (never affect a committed payment) ---
class ExternalServiceError(ServiceError):
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"{service}: {message}", status.HTTP_502_BAD_GATEWAY)
        self.service = service
        self.cause = cause
