"""
Ledger transaction coordinator.

The only writer of ledger aggregates. Every mutation (payment, reversal, fee adjustment,
overdue sweep, archival) runs as one read-validate-allocate-write cycle inside a single
database transaction:

- a per-student asyncio lock serializes writers inside this process
- the ledger row's version column (UPDATE ... WHERE version = ?) catches writers in
  other processes; a stale write surfaces as ConflictError
- ConflictError re-runs the whole cycle against fresh state, up to ledger_max_attempts

Post-commit collaborators are only told about a payment after its transaction commits.
"""

import asyncio
import logging
import weakref
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Tuple, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_random

from edupay.core.config import settings
from edupay.core.enums import (
    AllocationMethod,
    AllocationMode,
    AllocationTargetType,
    PaymentRecordStatus,
)
from edupay.core.exceptions import (
    AmountExceedsBalance,
    ConflictError,
    DuplicatePaymentError,
    InvalidAmount,
    NotFoundError,
    OverAllocationError,
    PaymentAlreadyReversedError,
    ServiceError,
    ValidationError,
)
from edupay.core.models import Payment, PaymentAllocation, StudentLedger
from edupay.core.schemas import (
    LedgerResponse,
    OverdueSweepResult,
    PaymentRecordInput,
    PaymentRecordResult,
    PaymentResponse,
)

from .allocation import AllocationOutcome, allocate_to_installments, get_allocation_strategy
from .audit import ledger_audit_state, log_fee_audit
from .dispatcher import AllocatedAmount, PaymentRecorded, PostCommitDispatcher
from .money import is_whole_units, to_decimal
from .receipts import generate_receipt_number
from .serializers import ledger_to_response, payment_to_response
from .state_machine import (
    apply_category_allocations,
    apply_installment_allocations,
    check_ledger_invariants,
    compute_payment_status,
    current_installment_order,
    mark_overdue_installments,
    reduce_category_dues,
    reduce_installment_dues,
    reopen_installment,
    reverse_category_payment,
)
from .validator import validate_payment

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerLockRegistry:
    """One asyncio.Lock per (school, student). Locks are dropped once nobody holds a reference."""

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[Tuple[UUID, UUID], asyncio.Lock]" = weakref.WeakValueDictionary()

    def for_student(self, school_id: UUID, student_id: UUID) -> asyncio.Lock:
        key = (school_id, student_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _failure(error: ServiceError) -> PaymentRecordResult:
    return PaymentRecordResult(
        success=False,
        error=error.message,
        error_code=error.code,
        status_code=error.status_code,
    )


def _refresh_ledger_totals(ledger: StudentLedger) -> None:
    ledger.balance = to_decimal(ledger.total_fees) - to_decimal(ledger.amount_paid)
    ledger.payment_status = compute_payment_status(ledger.balance, ledger.amount_paid, ledger.installments)
    ledger.current_installment = current_installment_order(ledger.installments)
    # Always touch the row so every mutation bumps the version
    ledger.updated_at = _now()


class LedgerTransactionCoordinator:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        dispatcher: Optional[PostCommitDispatcher] = None,
        locks: Optional[LedgerLockRegistry] = None,
        *,
        currency: Optional[str] = None,
        unit: Optional[Decimal] = None,
        receipt_prefix: Optional[str] = None,
        max_attempts: Optional[int] = None,
        retry_wait: Optional[float] = None,
    ) -> None:
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._locks = locks or LedgerLockRegistry()
        self.currency = currency or settings.currency
        self.unit = unit or settings.currency_unit
        self.receipt_prefix = receipt_prefix or settings.receipt_prefix
        self.max_attempts = max_attempts or settings.ledger_max_attempts
        self.retry_wait = settings.ledger_retry_wait_seconds if retry_wait is None else retry_wait

    # --- Transaction plumbing ---
    async def _transact(self, operation: Callable[..., Awaitable[T]], *args) -> T:
        """Run operation(db, *args) in a fresh transaction; re-run it from scratch on conflict."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_random(0, self.retry_wait),
            retry=retry_if_exception_type(ConflictError),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._attempt(operation, *args)

    async def _attempt(self, operation: Callable[..., Awaitable[T]], *args) -> T:
        async with self._session_factory() as db:
            try:
                async with db.begin():
                    return await operation(db, *args)
            except StaleDataError as e:
                raise ConflictError() from e
            except IntegrityError as e:
                raise ConflictError("Ledger write collided with a concurrent write, please try again") from e

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        logger.warning(
            "Ledger conflict on attempt %s, retrying: %s",
            retry_state.attempt_number,
            retry_state.outcome.exception() if retry_state.outcome else None,
        )

    async def _load_ledger(
        self,
        db: AsyncSession,
        school_id: UUID,
        *,
        student_id: Optional[UUID] = None,
        ledger_id: Optional[UUID] = None,
    ) -> StudentLedger:
        """Active ledger with its sub-ledger, locked for update where the database supports it."""
        stmt = (
            select(StudentLedger)
            .options(selectinload(StudentLedger.installments), selectinload(StudentLedger.categories))
            .where(StudentLedger.school_id == school_id, StudentLedger.is_archived.is_(False))
        )
        if student_id is not None:
            stmt = stmt.where(StudentLedger.student_id == student_id)
        if ledger_id is not None:
            stmt = stmt.where(StudentLedger.id == ledger_id)
        result = await db.execute(stmt.order_by(StudentLedger.created_at.desc()).limit(1).with_for_update())
        ledger = result.scalar_one_or_none()
        if not ledger:
            raise NotFoundError("No active fee ledger found for this student")
        return ledger

    async def _student_of_ledger(self, school_id: UUID, ledger_id: UUID) -> UUID:
        async with self._session_factory() as db:
            student_id = (
                await db.execute(
                    select(StudentLedger.student_id).where(
                        StudentLedger.id == ledger_id,
                        StudentLedger.school_id == school_id,
                    )
                )
            ).scalar_one_or_none()
        if student_id is None:
            raise NotFoundError("Ledger not found")
        return student_id

    # --- Record payment ---
    async def record_payment(
        self,
        payload: PaymentRecordInput,
        recorded_by: Optional[UUID],
        school_id: UUID,
        send_notification: bool = True,
    ) -> PaymentRecordResult:
        """
        Validate, allocate and commit one payment. Never raises for business failures:
        a rejected or conflicting payment comes back as success=False with nothing written.
        """
        lock = self._locks.for_student(school_id, payload.student_id)
        try:
            async with lock:
                payment, event = await self._transact(
                    self._record_payment, payload, recorded_by, school_id, send_notification
                )
        except ValidationError as e:
            logger.info("Payment rejected for student %s: %s", payload.student_id, e.message)
            return _failure(e)
        except (ConflictError, DuplicatePaymentError, NotFoundError) as e:
            logger.warning("Payment not recorded for student %s: %s", payload.student_id, e.message)
            return _failure(e)
        except ServiceError as e:
            logger.error("Payment for student %s aborted: %s", payload.student_id, e.message)
            return _failure(e)

        if self._dispatcher is not None:
            self._dispatcher.dispatch(event)
        return PaymentRecordResult(success=True, payment=payment)

    async def _record_payment(
        self,
        db: AsyncSession,
        payload: PaymentRecordInput,
        recorded_by: Optional[UUID],
        school_id: UUID,
        send_notification: bool,
    ) -> Tuple[PaymentResponse, PaymentRecorded]:
        ledger = await self._load_ledger(db, school_id, student_id=payload.student_id)

        existing = await db.execute(
            select(Payment.id).where(
                Payment.school_id == school_id,
                Payment.transaction_ref == payload.transaction_ref,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicatePaymentError(payload.transaction_ref)

        amount = to_decimal(payload.amount)
        error = validate_payment(ledger, amount, self.unit)
        if error is not None:
            raise error

        now = _now()
        old_state = ledger_audit_state(ledger)
        outcome = self._allocate(ledger, amount, payload.allocation_method)
        if outcome.is_over_allocated or outcome.total_allocated != amount:
            raise OverAllocationError(amount - outcome.total_allocated)

        if ledger.allocation_mode == AllocationMode.installment.value:
            apply_installment_allocations(ledger.installments, outcome.allocations, now)
            target_type = AllocationTargetType.installment.value
        else:
            apply_category_allocations(ledger.categories, outcome.allocations, now)
            target_type = AllocationTargetType.category.value

        ledger.amount_paid = to_decimal(ledger.amount_paid) + amount
        ledger.last_payment_date = now
        _refresh_ledger_totals(ledger)
        check_ledger_invariants(ledger)

        payment = Payment(
            receipt_number=generate_receipt_number(self.receipt_prefix),
            school_id=school_id,
            student_id=payload.student_id,
            ledger_id=ledger.id,
            amount=amount,
            currency=self.currency,
            channel=payload.channel.value,
            transaction_ref=payload.transaction_ref,
            status=PaymentRecordStatus.cleared.value,
            allocation_method=outcome.method.value,
            recorded_by=recorded_by,
            recorded_at=now,
            notes=payload.notes,
            allocations=[
                PaymentAllocation(
                    position=position,
                    target_type=target_type,
                    target_id=a.target_id,
                    target_name=a.target_name,
                    amount=a.amount,
                )
                for position, a in enumerate(outcome.allocations)
            ],
        )
        db.add(payment)
        await db.flush()

        await log_fee_audit(
            db, school_id, "payments", payment.id, "CREATE",
            None,
            {"amount": amount, "transaction_ref": payment.transaction_ref, "receipt_number": payment.receipt_number},
            recorded_by,
        )
        await log_fee_audit(
            db, school_id, "student_ledgers", ledger.id, "UPDATE",
            old_state, ledger_audit_state(ledger), recorded_by,
        )

        event = PaymentRecorded(
            payment_id=payment.id,
            receipt_number=payment.receipt_number,
            school_id=school_id,
            student_id=payload.student_id,
            ledger_id=ledger.id,
            amount=amount,
            currency=self.currency,
            channel=payment.channel,
            transaction_ref=payment.transaction_ref,
            new_balance=to_decimal(ledger.balance),
            payment_status=ledger.payment_status,
            recorded_by=recorded_by,
            recorded_at=now,
            allocations=[AllocatedAmount(a.target_id, a.target_name, a.amount) for a in outcome.allocations],
            send_notification=send_notification,
        )
        return payment_to_response(payment), event

    def _allocate(
        self,
        ledger: StudentLedger,
        amount: Decimal,
        requested_method: Optional[AllocationMethod],
    ) -> AllocationOutcome:
        if ledger.allocation_mode == AllocationMode.installment.value:
            if requested_method not in (None, AllocationMethod.installment_order):
                raise ValidationError(f"{requested_method.value} allocation does not apply to an installment ledger")
            return allocate_to_installments(ledger.installments, amount)
        method = requested_method or AllocationMethod(ledger.allocation_method)
        if method == AllocationMethod.installment_order:
            raise ValidationError("installment_order allocation does not apply to a category ledger")
        return get_allocation_strategy(method).allocate(amount, ledger.categories, self.unit)

    # --- Reverse payment ---
    async def reverse_payment(
        self,
        payment_id: UUID,
        reason: str,
        reversed_by: Optional[UUID],
        school_id: UUID,
    ) -> PaymentResponse:
        """Compensating reversal: the payment's allocations come back off the ledger. A payment reverses once."""
        async with self._session_factory() as db:
            student_id = (
                await db.execute(
                    select(Payment.student_id).where(Payment.id == payment_id, Payment.school_id == school_id)
                )
            ).scalar_one_or_none()
        if student_id is None:
            raise NotFoundError("Payment not found")

        async with self._locks.for_student(school_id, student_id):
            response = await self._transact(self._reverse_payment, payment_id, reason, reversed_by, school_id)
        logger.info("Payment %s reversed by %s: %s", response.receipt_number, reversed_by, reason)
        return response

    async def _reverse_payment(
        self,
        db: AsyncSession,
        payment_id: UUID,
        reason: str,
        reversed_by: Optional[UUID],
        school_id: UUID,
    ) -> PaymentResponse:
        result = await db.execute(
            select(Payment)
            .options(selectinload(Payment.allocations))
            .where(Payment.id == payment_id, Payment.school_id == school_id)
        )
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundError("Payment not found")
        if payment.status == PaymentRecordStatus.reversed.value:
            raise PaymentAlreadyReversedError()

        ledger = await self._load_ledger(db, school_id, ledger_id=payment.ledger_id)
        old_state = ledger_audit_state(ledger)
        now = _now()

        installments = {str(i.id): i for i in ledger.installments}
        categories = {c.category_id: c for c in ledger.categories}
        for allocation in payment.allocations:
            if allocation.target_type == AllocationTargetType.installment.value:
                reopen_installment(installments[allocation.target_id], allocation.amount, now.date())
            else:
                reverse_category_payment(categories[allocation.target_id], allocation.amount)

        ledger.amount_paid = to_decimal(ledger.amount_paid) - to_decimal(payment.amount)
        _refresh_ledger_totals(ledger)
        check_ledger_invariants(ledger)

        payment.status = PaymentRecordStatus.reversed.value
        payment.reversed_at = now
        payment.reversed_by = reversed_by
        payment.reversal_reason = reason
        await db.flush()

        await log_fee_audit(
            db, school_id, "payments", payment.id, "REVERSE",
            {"status": PaymentRecordStatus.cleared.value},
            {"status": PaymentRecordStatus.reversed.value, "reason": reason},
            reversed_by,
        )
        await log_fee_audit(
            db, school_id, "student_ledgers", ledger.id, "UPDATE",
            old_state, ledger_audit_state(ledger), reversed_by,
        )
        return payment_to_response(payment)

    # --- Fee adjustment ---
    async def adjust_fees(
        self,
        ledger_id: UUID,
        amount: Decimal,
        reason: str,
        changed_by: Optional[UUID],
        school_id: UUID,
    ) -> LedgerResponse:
        """Reduce what a student owes (bursary, waiver). Cannot cut below what has been paid."""
        amount = to_decimal(amount)
        if amount <= 0:
            raise InvalidAmount("Adjustment amount must be greater than zero")

        student_id = await self._student_of_ledger(school_id, ledger_id)
        async with self._locks.for_student(school_id, student_id):
            response = await self._transact(self._adjust_fees, ledger_id, amount, reason, changed_by, school_id)
        logger.info("Ledger %s reduced by %s: %s", ledger_id, amount, reason)
        return response

    async def _adjust_fees(
        self,
        db: AsyncSession,
        ledger_id: UUID,
        amount: Decimal,
        reason: str,
        changed_by: Optional[UUID],
        school_id: UUID,
    ) -> LedgerResponse:
        ledger = await self._load_ledger(db, school_id, ledger_id=ledger_id)
        balance = to_decimal(ledger.balance)
        if amount > balance:
            raise AmountExceedsBalance(amount, balance)
        if not is_whole_units(amount, self.unit):
            raise InvalidAmount(f"Adjustment amount must be a whole multiple of {self.unit}")

        old_state = ledger_audit_state(ledger)
        if ledger.allocation_mode == AllocationMode.installment.value:
            leftover = reduce_installment_dues(ledger.installments, amount, _now())
        else:
            leftover = reduce_category_dues(ledger.categories, amount)
        if leftover > 0:
            raise OverAllocationError(leftover)

        ledger.total_fees = to_decimal(ledger.total_fees) - amount
        _refresh_ledger_totals(ledger)
        check_ledger_invariants(ledger)
        await db.flush()

        new_state = ledger_audit_state(ledger)
        new_state["reason"] = reason
        await log_fee_audit(db, school_id, "student_ledgers", ledger.id, "ADJUST", old_state, new_state, changed_by)
        return ledger_to_response(ledger)

    # --- Overdue sweep ---
    async def mark_overdue(self, school_id: UUID, today: Optional[date] = None) -> OverdueSweepResult:
        """Flag installments past their deadline across a school's active installment ledgers."""
        today = today or _now().date()
        async with self._session_factory() as db:
            rows = (
                await db.execute(
                    select(StudentLedger.id, StudentLedger.student_id).where(
                        StudentLedger.school_id == school_id,
                        StudentLedger.is_archived.is_(False),
                        StudentLedger.allocation_mode == AllocationMode.installment.value,
                        StudentLedger.balance > 0,
                    )
                )
            ).all()

        updated = 0
        flagged = 0
        for ledger_id, student_id in rows:
            async with self._locks.for_student(school_id, student_id):
                count = await self._transact(self._mark_overdue, ledger_id, school_id, today)
            if count:
                updated += 1
                flagged += count
        logger.info(
            "Overdue sweep for school %s on %s: %s installments flagged on %s of %s ledgers",
            school_id, today, flagged, updated, len(rows),
        )
        return OverdueSweepResult(ledgers_checked=len(rows), ledgers_updated=updated, installments_flagged=flagged)

    async def _mark_overdue(self, db: AsyncSession, ledger_id: UUID, school_id: UUID, today: date) -> int:
        ledger = await self._load_ledger(db, school_id, ledger_id=ledger_id)
        old_state = ledger_audit_state(ledger)
        flagged = mark_overdue_installments(ledger.installments, today)
        if not flagged:
            return 0
        _refresh_ledger_totals(ledger)
        check_ledger_invariants(ledger)
        await db.flush()
        new_state = ledger_audit_state(ledger)
        new_state["overdue"] = [i.name for i in flagged]
        await log_fee_audit(db, school_id, "student_ledgers", ledger.id, "UPDATE", old_state, new_state, None)
        return len(flagged)

    # --- Archive ---
    async def archive_ledger(self, ledger_id: UUID, changed_by: Optional[UUID], school_id: UUID) -> LedgerResponse:
        """Close a term's ledger. Archived ledgers stay readable but accept no further writes."""
        student_id = await self._student_of_ledger(school_id, ledger_id)
        async with self._locks.for_student(school_id, student_id):
            response = await self._transact(self._archive_ledger, ledger_id, changed_by, school_id)
        logger.info("Ledger %s archived", ledger_id)
        return response

    async def _archive_ledger(
        self,
        db: AsyncSession,
        ledger_id: UUID,
        changed_by: Optional[UUID],
        school_id: UUID,
    ) -> LedgerResponse:
        ledger = await self._load_ledger(db, school_id, ledger_id=ledger_id)
        old_state = ledger_audit_state(ledger)
        ledger.is_archived = True
        ledger.archived_at = _now()
        await db.flush()
        await log_fee_audit(
            db, school_id, "student_ledgers", ledger.id, "ARCHIVE",
            old_state, {**ledger_audit_state(ledger), "is_archived": True}, changed_by,
        )
        return ledger_to_response(ledger)
