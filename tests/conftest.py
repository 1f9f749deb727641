"""
Pytest configuration and fixtures.

Database-backed tests run against a throwaway SQLite file so the suite
needs no running PostgreSQL.
"""
from decimal import Decimal
from typing import Any, AsyncGenerator, Generator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from plug_n_pay.api import routes
from plug_n_pay.api.main import app
from plug_n_pay.core.developer_service import DeveloperService
from plug_n_pay.core.subscription_service import SubscriptionService
from plug_n_pay.database.connection import get_db
from plug_n_pay.database.models import Base, Developer, SubscriptionPlan
from plug_n_pay.integrations.avalanche_rpc import AvalancheRPCClient

SUCCESS_TX = "0x" + "a1" * 32
FAILED_TX = "0x" + "b2" * 32
DEVELOPER_WALLET = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"
CUSTOMER_WALLET = "0x71C7656EC7ab88b098defB751B7401B5f6d8976F"


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests of a single component")
    config.addinivalue_line("markers", "integration: tests through the HTTP API")


@pytest_asyncio.fixture
async def session_factory(tmp_path: Any) -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """Session factory bound to a fresh SQLite database."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'plug_n_pay_test.db'}",
        poolclass=NullPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, Any]:
    """HTTP client for the app, with get_db pointed at the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, Any]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def mock_rpc() -> Generator[AsyncMock, Any, None]:
    """Replace the API's RPC client; receipts succeed for SUCCESS_TX only."""
    mock = AsyncMock(spec=AvalancheRPCClient)

    async def _receipt(transaction_hash: str) -> dict[str, Any] | None:
        if transaction_hash == SUCCESS_TX:
            return {"transactionHash": SUCCESS_TX, "status": "0x1", "blockNumber": "0x1a2b"}
        if transaction_hash == FAILED_TX:
            return {"transactionHash": FAILED_TX, "status": "0x0", "blockNumber": "0x1a2c"}
        return None

    mock.get_transaction_receipt.side_effect = _receipt
    with patch.object(routes.x402_service, "rpc_client", mock):
        yield mock


@pytest_asyncio.fixture
async def developer(test_db: AsyncSession) -> Developer:
    dev = await DeveloperService().create_developer(
        test_db, wallet_address=DEVELOPER_WALLET, company_name="Acme Data"
    )
    await test_db.commit()
    return dev


@pytest_asyncio.fixture
async def plan(test_db: AsyncSession, developer: Developer) -> SubscriptionPlan:
    created = await SubscriptionService().create_plan(
        test_db,
        developer_id=developer.id,
        name="Weather API - Basic",
        price_per_call=Decimal("0.001"),
    )
    await test_db.commit()
    return created
