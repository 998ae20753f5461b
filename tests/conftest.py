import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import uuid
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import edupay.core.models  # noqa: F401  registers tables on Base.metadata
from edupay.api.v1.ledgers.schemas import FeeCategoryCreate, InstallmentCreate, LedgerOpenRequest
from edupay.api.v1.ledgers.service import open_ledger
from edupay.auth.security import create_access_token
from edupay.core.enums import AllocationMethod
from edupay.core.schemas import LedgerResponse
from edupay.db.session import Base, get_db
from edupay.ledger.coordinator import LedgerLockRegistry, LedgerTransactionCoordinator
from edupay.ledger.dependencies import get_coordinator
from edupay.ledger.dispatcher import PostCommitDispatcher
from edupay.main import app


SCHOOL_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
BURSAR_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")


@pytest.fixture()
async def engine(tmp_path):
    """File-backed SQLite so the coordinator's own sessions see the same data as the test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def dispatcher() -> PostCommitDispatcher:
    return PostCommitDispatcher()


@pytest.fixture()
def coordinator(session_factory, dispatcher) -> LedgerTransactionCoordinator:
    return LedgerTransactionCoordinator(
        session_factory,
        dispatcher=dispatcher,
        locks=LedgerLockRegistry(),
        currency="UGX",
        unit=Decimal("1"),
        max_attempts=3,
        retry_wait=0,
    )


@pytest.fixture()
def open_installment_ledger(session_factory):
    """Factory: open an installment ledger for a new (or given) student."""

    async def _open(
        amounts: List[int],
        student_id: Optional[uuid.UUID] = None,
        deadlines: Optional[List[Optional[date]]] = None,
    ) -> LedgerResponse:
        deadlines = deadlines or [None] * len(amounts)
        payload = LedgerOpenRequest(
            student_id=student_id or uuid.uuid4(),
            academic_year="2026",
            term=1,
            installments=[
                InstallmentCreate(name=f"Installment {n}", amount_due=Decimal(a), deadline=d)
                for n, (a, d) in enumerate(zip(amounts, deadlines), start=1)
            ],
        )
        async with session_factory() as db:
            return await open_ledger(db, SCHOOL_ID, payload, changed_by=BURSAR_ID)

    return _open


@pytest.fixture()
def open_category_ledger(session_factory):
    """Factory: open a category ledger from (category_id, name, amount, priority) tuples."""

    async def _open(
        categories: List[Tuple[str, str, int, int]],
        method: AllocationMethod = AllocationMethod.priority,
        student_id: Optional[uuid.UUID] = None,
    ) -> LedgerResponse:
        payload = LedgerOpenRequest(
            student_id=student_id or uuid.uuid4(),
            academic_year="2026",
            term=1,
            categories=[
                FeeCategoryCreate(category_id=cid, category_name=name, amount=Decimal(amount), priority=priority)
                for cid, name, amount, priority in categories
            ],
            allocation_method=method,
        )
        async with session_factory() as db:
            return await open_ledger(db, SCHOOL_ID, payload, changed_by=BURSAR_ID)

    return _open


def make_token(
    role: str = "ACCOUNTANT",
    permissions: Optional[Dict[str, Dict[str, bool]]] = None,
    school_id: uuid.UUID = SCHOOL_ID,
    user_id: uuid.UUID = BURSAR_ID,
) -> str:
    if permissions is None:
        permissions = {
            "ledgers": {"create": True, "read": True, "update": True},
            "payments": {"create": True, "read": True, "update": True},
        }
    return create_access_token(
        subject={
            "user_id": str(user_id),
            "school_id": str(school_id),
            "role": role,
            "permissions": permissions,
        }
    )


@pytest.fixture()
async def client(session_factory, coordinator) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, authenticated as a school accountant."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_coordinator] = lambda: coordinator

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {make_token()}"},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
