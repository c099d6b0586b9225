from decimal import Decimal
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from models.artifact import Artifact
from routers import rate_limit
from services import ledger
from services.billing_errors import ProviderUnavailable
from services.payment_provider import (
    CheckoutSession,
    PaymentProvider,
    get_optional_payment_provider,
    get_payment_provider,
)


class FakePaymentProvider(PaymentProvider):
    """In-memory checkout provider; statuses are set by the test."""

    name = "fake"

    def __init__(self) -> None:
        self.created: List[Dict] = []
        self.statuses: Dict[str, str] = {}
        self.fail_create = False
        self.fail_retrieve = False
        self.retrieve_calls = 0
        self.request_ids: Dict[str, str] = {}

    async def create_checkout(self, *, request_id, units, success_url, metadata) -> CheckoutSession:
        if self.fail_create:
            raise ProviderUnavailable("Payment provider timed out. Try again shortly.")
        checkout_id = f"ch_{len(self.created) + 1}"
        self.created.append(
            {
                "id": checkout_id,
                "request_id": request_id,
                "units": units,
                "success_url": success_url,
                "metadata": metadata,
            }
        )
        self.statuses[checkout_id] = "pending"
        self.request_ids[checkout_id] = request_id
        return CheckoutSession(
            id=checkout_id,
            status="pending",
            checkout_url=f"https://checkout.test/{checkout_id}",
            request_id=request_id,
        )

    async def retrieve_checkout(self, checkout_id: str) -> CheckoutSession:
        self.retrieve_calls += 1
        if self.fail_retrieve:
            raise ProviderUnavailable("Payment provider is unavailable. Try again shortly.")
        return CheckoutSession(
            id=checkout_id,
            status=self.statuses.get(checkout_id, "pending"),
            request_id=self.request_ids.get(checkout_id),
        )


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest.fixture
def fake_provider():
    return FakePaymentProvider()


@pytest_asyncio.fixture
async def api_client(session_maker, fake_provider):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_provider] = lambda: fake_provider
    app.dependency_overrides[get_optional_payment_provider] = lambda: fake_provider
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_payment_provider, None)
    app.dependency_overrides.pop(get_optional_payment_provider, None)


@pytest.fixture
def seed_balance(session_maker):
    async def _seed(user_id: str, amount, key: Optional[str] = None) -> Decimal:
        async with session_maker() as db:
            result = await ledger.credit(
                user_id,
                db,
                amount=amount,
                idempotency_key=key or f"seed:{user_id}:{amount}",
            )
            await db.commit()
            return result.balance_after

    return _seed


@pytest.fixture
def make_artifact(session_maker):
    async def _make(
        artifact_id: str,
        *,
        artifact_type: str = "model",
        price=None,
        status: str = "published",
    ) -> None:
        async with session_maker() as db:
            db.add(
                Artifact(
                    id=artifact_id,
                    owner_id="publisher",
                    artifact_type=artifact_type,
                    title=f"{artifact_type} {artifact_id}",
                    status=status,
                    is_paid=price is not None,
                    price=Decimal(str(price)) if price is not None else None,
                    file_url=f"https://files.test/{artifact_id}.bin",
                    download_count=0,
                )
            )
            await db.commit()

    return _make


@pytest.fixture
def balance_of(session_maker):
    async def _balance(user_id: str):
        async with session_maker() as db:
            return await ledger.get_balance(user_id, db)

    return _balance
