"""
Fee audit logging for ledger and payment changes. Call on every ledger mutation, inside its transaction.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from edupay.core.models import FeeAuditLog


def ledger_audit_state(ledger) -> dict:
    """JSON-safe snapshot of the ledger totals for old_value/new_value."""
    return {
        "total_fees": str(ledger.total_fees),
        "amount_paid": str(ledger.amount_paid),
        "balance": str(ledger.balance),
        "payment_status": ledger.payment_status,
        "current_installment": ledger.current_installment,
    }


async def log_fee_audit(
    db: AsyncSession,
    school_id: UUID,
    reference_table: str,
    reference_id: UUID,
    action_type: str,
    old_value: Optional[dict],
    new_value: Optional[dict],
    changed_by: Optional[UUID],
) -> None:
    """Append one audit log entry. Caller commits."""
    db.add(
        FeeAuditLog(
            school_id=school_id,
            reference_table=reference_table,
            reference_id=reference_id,
            action_type=action_type,
            old_value=_json_safe(old_value),
            new_value=_json_safe(new_value),
            changed_by=changed_by,
        )
    )


def _json_safe(value: Optional[dict]) -> Optional[dict]:
    if value is None:
        return None
    return {k: str(v) if isinstance(v, (Decimal, UUID)) else v for k, v in value.items()}
