"""
Flag installments past their deadline for one school. Meant to run daily from cron or a scheduler.

Idempotent: installments already overdue or completed are left alone.
Usage:
  python -m edupay.scripts.mark_overdue --school 3f1c...e2
  python -m edupay.scripts.mark_overdue --school 3f1c...e2 --as-of 2026-03-01
"""

import argparse
import asyncio
import logging
from datetime import date
from typing import Optional
from uuid import UUID

from edupay.core.config import settings
from edupay.db.session import get_session_factory
from edupay.ledger.coordinator import LedgerTransactionCoordinator


async def run_sweep(school_id: UUID, as_of: Optional[date] = None) -> None:
    coordinator = LedgerTransactionCoordinator(get_session_factory())
    summary = await coordinator.mark_overdue(school_id, as_of)
    print(
        f"Checked {summary.ledgers_checked} ledger(s): "
        f"{summary.installments_flagged} installment(s) flagged overdue on {summary.ledgers_updated} ledger(s)."
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Mark overdue installments for a school")
    parser.add_argument("--school", type=UUID, required=True, help="School id")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="Sweep date (default: today)")
    args = parser.parse_args()
    logging.basicConfig(level=settings.log_level.upper())
    asyncio.run(run_sweep(args.school, args.as_of))


if __name__ == "__main__":
    main()
