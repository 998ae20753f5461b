import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from edupay.api.v1.ledgers.router import router as ledgers_router
from edupay.api.v1.payments.router import router as payments_router
from edupay.core.config import settings
from edupay.ledger.coordinator import LedgerLockRegistry
from edupay.ledger.dispatcher import (
    AnchoringHook,
    NotificationHook,
    PaymentRecordedHandler,
    PostCommitDispatcher,
    ReceiptHook,
    log_anchor_submission,
    log_payment_notification,
    log_payment_recorded,
    log_receipt,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let in-flight post-commit handlers finish before the loop goes away
    await app.state.dispatcher.drain()


def build_dispatcher(
    notify: Optional[PaymentRecordedHandler] = None,
    deliver_receipt: Optional[Callable[[dict], Awaitable[None]]] = None,
    anchor: Optional[Callable[[str, dict], Awaitable[None]]] = None,
) -> PostCommitDispatcher:
    """Post-commit fan-out. Collaborators not supplied fall back to log-only ones."""
    handlers = [log_payment_recorded, ReceiptHook(deliver_receipt or log_receipt)]
    if settings.notifications_enabled:
        handlers.append(NotificationHook(notify or log_payment_notification))
    if settings.anchoring_enabled:
        handlers.append(AnchoringHook(anchor or log_anchor_submission))
    return PostCommitDispatcher(handlers)


def create_app(dispatcher: Optional[PostCommitDispatcher] = None) -> FastAPI:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="EduPay Ledger", lifespan=lifespan)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Shared by every coordinator built per request
    app.state.dispatcher = dispatcher or build_dispatcher()
    app.state.ledger_locks = LedgerLockRegistry()

    # Routers
    app.include_router(ledgers_router)
    app.include_router(payments_router)

    return app


app = create_app()
