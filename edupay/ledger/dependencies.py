from fastapi import Request

from edupay.db.session import get_session_factory

from .coordinator import LedgerTransactionCoordinator


def get_coordinator(request: Request) -> LedgerTransactionCoordinator:
    """Coordinator bound to the app-wide dispatcher and lock registry, so every request shares the same locks."""
    return LedgerTransactionCoordinator(
        get_session_factory(),
        dispatcher=request.app.state.dispatcher,
        locks=request.app.state.ledger_locks,
    )
