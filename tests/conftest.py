"""
Shared pytest fixtures – in-memory SQLite for unit tests (no real Postgres needed).
"""
from __future__ import annotations

import os

# Configure test env before any storefront import builds the engine.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from decimal import Decimal  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from storefront import deps  # noqa: E402
from storefront.database import get_db  # noqa: E402
from storefront.models import Base  # noqa: E402
from storefront.services import ledger  # noqa: E402
from storefront.services.background import BackgroundWorker  # noqa: E402
from storefront.services.cache import Cache  # noqa: E402
from storefront.services.carts import CartService  # noqa: E402
from storefront.services.catalog import ProductCatalog  # noqa: E402
from storefront.services.maintenance import MaintenanceService  # noqa: E402
from storefront.services.orders import OrderPipeline  # noqa: E402
from storefront.services.shipping import ShippingTable  # noqa: E402
from storefront.services.validator import StockValidator  # noqa: E402

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def engine():
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def seeded(db_session):
    """Two products: a tee with a mixed stock map and a hoodie."""
    await ledger.create_product(
        db_session,
        "TEE-1",
        "Basic Tee",
        Decimal("2500"),
        stock={"M": {"black": 5, "white": 0}, "L": {"black": 1}},
    )
    await ledger.create_product(
        db_session,
        "HOODIE-1",
        "Hoodie",
        Decimal("4800"),
        stock={"M": {"grey": 3}},
    )
    await db_session.commit()
    return db_session


@pytest_asyncio.fixture
async def worker():
    worker = BackgroundWorker(name="test-persist", max_retries=2, retry_base_seconds=0)
    yield worker
    await worker.stop()


@pytest.fixture
def catalog() -> ProductCatalog:
    return ProductCatalog(Cache("products", 5_000))


@pytest.fixture
def pipeline(catalog) -> OrderPipeline:
    return OrderPipeline(
        validator=StockValidator(),
        shipping=ShippingTable(Cache("shipping", 60_000)),
        order_cache=Cache("orders", 5_000),
        catalog=catalog,
    )



@pytest.fixture
def maintenance(session_factory, worker) -> MaintenanceService:
    return MaintenanceService(Cache("maintenance", 5_000, worker=worker), session_factory)


@pytest.fixture
def carts(session_factory, worker) -> CartService:
    return CartService(Cache("carts", 30_000, worker=worker), session_factory)


@pytest_asyncio.fixture
async def api(session_factory, seeded, pipeline, catalog, worker, maintenance, carts):
    """The FastAPI app over ASGI, wired to the test database and services."""
    from storefront.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_order_pipeline] = lambda: pipeline
    app.dependency_overrides[deps.get_catalog] = lambda: catalog
    app.dependency_overrides[deps.get_validator] = StockValidator
    app.dependency_overrides[deps.get_worker] = lambda: worker
    app.dependency_overrides[deps.get_maintenance_service] = lambda: maintenance
    app.dependency_overrides[deps.get_cart_service] = lambda: carts

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
