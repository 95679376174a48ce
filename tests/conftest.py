"""
Pytest configuration and fixtures for the EMP operations backend tests.

Provides common fixtures for:
- Test database setup (in-memory SQLite)
- Stores, services and the mock gateway
- Upload / ground-truth factories
- HTTP client with operator tokens
"""

import os

# Settings are read at import time: configure the test environment first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("GATEWAY_ADAPTER", "mock")
os.environ.setdefault("EMP_GENESIS_PASSWORD", "test-api-password")
os.environ.setdefault("RECONCILE_SCHEDULE_CRON", "")

from typing import Any, AsyncGenerator  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from emp_ops import models  # noqa: E402,F401
from emp_ops.api.deps import get_payment_gateway, get_storage  # noqa: E402
from emp_ops.core.security import create_access_token  # noqa: E402
from emp_ops.db.session import Base  # noqa: E402
from emp_ops.db.storage import StorageClient  # noqa: E402
from emp_ops.db.stores import (  # noqa: E402
    BlacklistStore,
    SettingsStore,
    TransactionStore,
    UploadStore,
)
from emp_ops.integrations.adapters.mock import MockGateway  # noqa: E402
from emp_ops.main import app  # noqa: E402
from emp_ops.services.blacklist import BlacklistService, ChargebackFilter  # noqa: E402
from emp_ops.services.compliance import ComplianceGate  # noqa: E402
from emp_ops.services.locks import UploadLockRegistry  # noqa: E402
from tests.factories import iban_for, make_record  # noqa: E402


# =============================================================================
# Database Fixtures
# =============================================================================


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def storage(async_engine) -> StorageClient:
    session_factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return StorageClient(session_factory, async_engine)


@pytest.fixture
def upload_store(storage) -> UploadStore:
    return UploadStore(storage)


@pytest.fixture
def transaction_store(storage) -> TransactionStore:
    return TransactionStore(storage)


@pytest.fixture
def blacklist_store(storage) -> BlacklistStore:
    return BlacklistStore(storage)


@pytest.fixture
def settings_store(storage) -> SettingsStore:
    return SettingsStore(storage)


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def gateway() -> MockGateway:
    return MockGateway()


@pytest.fixture
def locks() -> UploadLockRegistry:
    return UploadLockRegistry()


@pytest.fixture
def compliance(transaction_store, upload_store) -> ComplianceGate:
    return ComplianceGate(transaction_store, upload_store)


@pytest.fixture
def blacklist_service(blacklist_store) -> BlacklistService:
    return BlacklistService(blacklist_store)


@pytest.fixture
def chargeback_filter(upload_store, transaction_store, blacklist_service, locks) -> ChargebackFilter:
    return ChargebackFilter(upload_store, transaction_store, blacklist_service, locks=locks)


# =============================================================================
# Data Fixtures
# =============================================================================


@pytest.fixture
def upload_factory(upload_store):
    """Create an upload; defaults to ``count`` valid records with distinct IBANs."""

    async def _create(
        records: list[dict[str, Any]] | None = None,
        rows: list[dict[str, Any]] | None = None,
        filename: str = "batch.csv",
        count: int = 3,
        **kwargs: Any,
    ):
        if records is None:
            records = [make_record(iban=iban_for(i)) for i in range(count)]
        return await upload_store.create(filename=filename, records=records, rows=rows, **kwargs)

    return _create


@pytest.fixture
def add_ground_truth(storage):
    """Insert gateway transactions, chargebacks or accounts into the database."""

    async def _add(*entities) -> None:
        async def _insert(session: AsyncSession) -> None:
            session.add_all(entities)

        await storage.run(_insert, "test.insert")

    return _add


# =============================================================================
# HTTP Client Fixtures
# =============================================================================


@pytest.fixture
def write_headers() -> dict[str, str]:
    token = create_access_token("operator-1", "super_owner")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def read_headers() -> dict[str, str]:
    token = create_access_token("viewer-1", "viewer")
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(storage, gateway) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client against the app with the test database and mock gateway."""
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c

    app.dependency_overrides.clear()
