"""
Pytest fixtures for the fiscal kernel test suite.

Provides:
- Structured log capture
- A deterministic clock pinned to 2024-06-15 12:00 UTC
- In-memory and SQLite (file-backed) stores, and a ``store`` fixture
  parametrized across both so every service test runs on each backend
- A FiscalCore wired over the store, with permit and account helpers

Environment Variables:
- DATABASE_URL: PostgreSQL connection URL.  Tests marked ``postgres`` are
  skipped unless it is set.
"""

import json
import logging
import os
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from io import StringIO
from uuid import UUID, uuid4

import pytest

from fiscal_kernel.domain.clock import DeterministicClock
from fiscal_kernel.domain.dtos import AccountUsage, FiscalPermit, SubscriptionType
from fiscal_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from fiscal_kernel.services.core import FiscalCore
from fiscal_kernel.services.credential_vault import CredentialVault
from fiscal_kernel.storage.memory import InMemoryFiscalStore
from fiscal_kernel.storage.sqlalchemy_store import SqlAlchemyFiscalStore

# Admin actor for configuration operations
ADMIN_ID = UUID("00000000-0000-4000-8000-0000000000ad")

TEST_MASTER_KEY = b"unit-test-master-key-0123456789abcdef"

FIXED_NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture fiscal_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, core):
            core.issuance.issue(...)
            logs = captured_logs()
            assert any(r["message"] == "issuance_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("fiscal_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock and stores
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def memory_store(clock) -> InMemoryFiscalStore:
    return InMemoryFiscalStore(clock=clock)


@pytest.fixture
def sqlite_store(tmp_path, clock):
    """File-backed SQLite so separate threads get separate connections."""
    store = SqlAlchemyFiscalStore.from_url(f"sqlite:///{tmp_path / 'fiscal.db'}", clock=clock)
    yield store
    store.engine.dispose()


@pytest.fixture(params=["memory", "sqlite"])
def store(request, clock, tmp_path):
    """Every test using this fixture runs once per backend."""
    if request.param == "memory":
        yield InMemoryFiscalStore(clock=clock)
        return
    sql_store = SqlAlchemyFiscalStore.from_url(
        f"sqlite:///{tmp_path / 'fiscal.db'}", clock=clock
    )
    yield sql_store
    sql_store.engine.dispose()


@pytest.fixture
def postgres_store(clock):
    url = os.environ.get("DATABASE_URL")
    if not url or not url.startswith("postgresql"):
        pytest.skip("DATABASE_URL not set to a PostgreSQL database")
    from fiscal_kernel.db.engine import drop_tables

    sql_store = SqlAlchemyFiscalStore.from_url(url, clock=clock)
    yield sql_store
    drop_tables(sql_store.engine)
    sql_store.engine.dispose()


# =============================================================================
# Kernel fixtures
# =============================================================================


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_MASTER_KEY)


@pytest.fixture
def core(store, vault, clock) -> FiscalCore:
    return FiscalCore(store, vault, clock=clock)


def make_permit(
    today: date,
    days_valid: int = 60,
    establishment_code: str = "001",
    point_of_sale_code: str = "001",
    permit_number: str = "12345678",
    ruc: str | None = None,
) -> FiscalPermit:
    return FiscalPermit(
        permit_number=permit_number,
        valid_from=today,
        valid_to=today + timedelta(days=days_valid),
        establishment_code=establishment_code,
        point_of_sale_code=point_of_sale_code,
        ruc=ruc,
    )


@pytest.fixture
def configured_permit(core, clock) -> FiscalPermit:
    """A permit valid from today for 60 days, 001-001."""
    return core.permits.configure(make_permit(clock.today()), ADMIN_ID).permit


@pytest.fixture
def make_account(core) -> Callable[..., AccountUsage]:
    """Factory for usage records. Returns the stored AccountUsage."""

    def _make(
        monthly_limit: int = 50,
        account_expires_at: datetime | None = None,
        subscription_type: SubscriptionType = SubscriptionType.FREE,
        account_id: UUID | None = None,
    ) -> AccountUsage:
        return core.quota.open_account(
            account_id or uuid4(),
            monthly_limit=monthly_limit,
            account_expires_at=account_expires_at,
            subscription_type=subscription_type,
        )

    return _make


@pytest.fixture
def permit_factory() -> Callable[..., FiscalPermit]:
    return make_permit


@pytest.fixture
def admin_id() -> UUID:
    return ADMIN_ID
