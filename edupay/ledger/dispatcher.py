"""
Post-commit dispatch of PaymentRecorded facts.

Handlers (notification, receipt, anchoring) run as detached asyncio tasks after the
ledger transaction has committed. A failing handler is logged and left to its own
retry queue; it can never change the outcome of the payment.
"""

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, Sequence, Set
from uuid import UUID

from edupay.core.enums import CHANNEL_DISPLAY_NAMES, PaymentChannel
from edupay.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocatedAmount:
    target_id: str
    target_name: str
    amount: Decimal


@dataclass(frozen=True)
class PaymentRecorded:
    payment_id: UUID
    receipt_number: str
    school_id: UUID
    student_id: UUID
    ledger_id: UUID
    amount: Decimal
    currency: str
    channel: str
    transaction_ref: str
    new_balance: Decimal
    payment_status: str
    recorded_by: Optional[UUID]
    recorded_at: datetime
    allocations: List[AllocatedAmount] = field(default_factory=list)
    send_notification: bool = True


PaymentRecordedHandler = Callable[[PaymentRecorded], Awaitable[None]]


class PostCommitDispatcher:
    """Fan-out of committed payments to collaborators. dispatch() never blocks and never raises."""

    def __init__(self, handlers: Sequence[PaymentRecordedHandler] = ()) -> None:
        self._handlers: List[PaymentRecordedHandler] = list(handlers)
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, event: PaymentRecorded) -> None:
        for handler in self._handlers:
            task = asyncio.create_task(self._deliver(handler, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, handler: PaymentRecordedHandler, event: PaymentRecorded) -> None:
        name = getattr(handler, "__name__", type(handler).__name__)
        try:
            await handler(event)
        except ExternalServiceError as e:
            logger.error(
                "Post-commit %s failed for payment %s (%s): %s",
                name, event.payment_id, e.service, e.message,
            )
        except Exception:
            logger.exception("Post-commit %s crashed for payment %s", name, event.payment_id)

    async def drain(self) -> None:
        """Wait for in-flight handlers. Used at shutdown and in tests."""
        while True:
            pending = [t for t in self._pending if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)


# --- Anchoring hook ---
def build_payment_proof(event: PaymentRecorded) -> dict:
    """Canonical, JSON-safe proof of a committed payment for external notarization."""
    return {
        "payment_id": str(event.payment_id),
        "student_id": str(event.student_id),
        "school_id": str(event.school_id),
        "amount": str(event.amount),
        "currency": event.currency,
        "timestamp": event.recorded_at.isoformat(),
        "transaction_ref": event.transaction_ref,
        "receipt_number": event.receipt_number,
    }


def payment_proof_hash(proof: dict) -> str:
    payload = json.dumps(proof, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class AnchoringHook:
    """Hands the proof hash to an anchoring submitter; the submitter owns its retry queue."""

    def __init__(self, submit: Callable[[str, dict], Awaitable[None]]) -> None:
        self._submit = submit

    async def __call__(self, event: PaymentRecorded) -> None:
        proof = build_payment_proof(event)
        await self._submit(payment_proof_hash(proof), proof)


# --- Receipt hook ---
def build_receipt(event: PaymentRecorded) -> dict:
    """Printable receipt for the payer: what was paid, where it went, what is still owed."""
    return {
        "receipt_number": event.receipt_number,
        "payment_id": str(event.payment_id),
        "student_id": str(event.student_id),
        "amount": str(event.amount),
        "currency": event.currency,
        "channel": CHANNEL_DISPLAY_NAMES[PaymentChannel(event.channel)],
        "transaction_ref": event.transaction_ref,
        "paid_at": event.recorded_at.isoformat(),
        "allocations": [
            {"target_id": a.target_id, "target_name": a.target_name, "amount": str(a.amount)}
            for a in event.allocations
        ],
        "balance": str(event.new_balance),
        "payment_status": event.payment_status,
    }


class ReceiptHook:
    def __init__(self, deliver: Callable[[dict], Awaitable[None]]) -> None:
        self._deliver = deliver

    async def __call__(self, event: PaymentRecorded) -> None:
        await self._deliver(build_receipt(event))


# --- Notification hook ---
class NotificationHook:
    """Forwards to a notifier unless the caller opted out of notifications for this payment."""

    def __init__(self, notify: PaymentRecordedHandler) -> None:
        self._notify = notify

    async def __call__(self, event: PaymentRecorded) -> None:
        if not event.send_notification:
            return
        await self._notify(event)


async def log_payment_recorded(event: PaymentRecorded) -> None:
    logger.info(
        "Payment %s recorded: %s %s for student %s, balance %s (%s)",
        event.receipt_number, event.currency, event.amount, event.student_id,
        event.new_balance, event.payment_status,
    )


# Log-only collaborators, used when no external service is configured
async def log_payment_notification(event: PaymentRecorded) -> None:
    logger.info("Notification queued for student %s: receipt %s", event.student_id, event.receipt_number)


async def log_receipt(receipt: dict) -> None:
    logger.info("Receipt %s issued for %s %s", receipt["receipt_number"], receipt["currency"], receipt["amount"])


async def log_anchor_submission(proof_hash: str, proof: dict) -> None:
    logger.info("Anchoring proof %s for payment %s", proof_hash, proof["payment_id"])
