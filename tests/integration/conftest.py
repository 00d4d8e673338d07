"""
Integration Test Fixtures.

Fixtures for integration tests - real repositories and services over the
in-memory SQLite database from the root conftest.py.
"""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog.core.database import get_db_session, get_streaming_session
from catalog.models.bank import Bank
from catalog.models.market import Local, Market


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
async def client(
    db_session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test client whose requests use the test database.

    Every request gets its own session that commits on success, exactly
    like the real dependency, so data written by one request is visible
    to the next.

    Usage:
        async def test_list_banks(client: AsyncClient):
            response = await client.get("/api/v1/banks")
            assert response.status_code == 200
    """
    async def override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with db_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_streaming_session() -> AsyncSession:
        return db_session_factory()

    from catalog.main import create_app

    app = create_app()
    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[get_streaming_session] = override_get_streaming_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# =============================================================================
# Seed Data Fixtures
# =============================================================================


@pytest.fixture
async def banks(db_session_factory: async_sessionmaker[AsyncSession]) -> list[Bank]:
    """Five committed banks; the last one is inactive."""
    rows = [
        Bank(code="BNA", name="Banco de la Nacion"),
        Bank(code="BPR", name="Banco Provincia"),
        Bank(code="GAL", name="Galicia"),
        Bank(code="MAC", name="Macro"),
        Bank(code="SUP", name="Supervielle", is_active=False),
    ]
    async with db_session_factory() as session:
        session.add_all(rows)
        await session.commit()
    return rows


@pytest.fixture
async def market_with_locals(
    db_session_factory: async_sessionmaker[AsyncSession],
) -> Market:
    """One committed market with two active locals and one inactive."""
    market = Market(code="CEN", name="Mercado Central", address="Av. Principal 100")
    async with db_session_factory() as session:
        session.add(market)
        await session.flush()
        session.add_all([
            Local(market_id=market.id, code="L1", name="Stall 1", monthly_rent=100),
            Local(market_id=market.id, code="L2", name="Stall 2", monthly_rent=250),
            Local(market_id=market.id, code="L3", name="Stall 3", monthly_rent=400, active=False),
        ])
        await session.commit()
    return market
