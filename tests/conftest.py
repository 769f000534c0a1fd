"""
Pytest fixtures for the pantry kernel test suite.

Provides:
- A fresh SQLite file per test for EACH store (inventory and quota), so no
  test can observe another's rows and no transaction can span the stores
- Deterministic clocks
- A fully wired PantryKernel and a provisioned tenant
- Captured structured logs

Environment Variables:
- PANTRY_TEST_DATABASE_URL / PANTRY_TEST_QUOTA_DATABASE_URL: run against
  server databases instead of SQLite (tables are dropped and recreated).
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy import update

from pantry_kernel.db.engine import (
    INVENTORY_STORE,
    QUOTA_STORE,
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from pantry_kernel.domain.clock import TickingClock
from pantry_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from pantry_kernel.models.quota import TenantQuota
from pantry_services.kernel import PantryKernel

TEST_TENANT = "tenant-alpha"
OTHER_TENANT = "tenant-beta"


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
    Capture pantry_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, kernel):
            kernel.ingest_lot(...)
            logs = captured_logs()
            assert any(r["message"] == "lot_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("pantry_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Store infrastructure
# =============================================================================


@pytest.fixture
def stores(tmp_path):
    """Initialize both stores and create their tables; dispose afterwards."""
    inventory_url = os.environ.get(
        "PANTRY_TEST_DATABASE_URL", f"sqlite:///{tmp_path / 'inventory.db'}"
    )
    quota_url = os.environ.get(
        "PANTRY_TEST_QUOTA_DATABASE_URL", f"sqlite:///{tmp_path / 'quota.db'}"
    )
    init_engine_from_url(inventory_url, store=INVENTORY_STORE, statement_timeout_seconds=30)
    init_engine_from_url(quota_url, store=QUOTA_STORE, statement_timeout_seconds=30)
    if not inventory_url.startswith("sqlite"):
        drop_tables()
    create_tables()
    yield
    reset_engine()


@pytest.fixture
def inventory_sessions(stores):
    return get_session_factory(INVENTORY_STORE)


@pytest.fixture
def quota_sessions(stores):
    return get_session_factory(QUOTA_STORE)


@pytest.fixture
def clock():
    """Starts 2025-01-01 12:00 UTC; every read advances one second."""
    return TickingClock()


@pytest.fixture
def today(clock) -> date:
    return clock.today()


@pytest.fixture
def kernel(inventory_sessions, quota_sessions, clock) -> PantryKernel:
    return PantryKernel(inventory_sessions, quota_sessions, clock=clock)


@pytest.fixture
def tenant(kernel) -> str:
    """A tenant provisioned on the free (pilot) tier."""
    kernel.provision_tenant(TEST_TENANT)
    return TEST_TENANT


@pytest.fixture
def paid_tenant(kernel) -> str:
    kernel.provision_tenant(TEST_TENANT, "pro")
    return TEST_TENANT


@pytest.fixture
def ingest(kernel, tenant):
    """Ingest with sensible defaults; returns the LotSnapshot."""

    def _ingest(
        name: str = "Black Beans",
        quantity: Decimal | int | str = 10,
        *,
        category: str = "Canned Goods",
        **fields,
    ):
        return kernel.ingest_lot(tenant, name=name, category=category, quantity=quantity, **fields)

    return _ingest


@pytest.fixture
def set_quota(quota_sessions):
    """Force a tenant's ledger counters (and optionally tier) to given values."""

    def _set(tenant_id: str, **values):
        with quota_sessions() as session, session.begin():
            session.execute(
                update(TenantQuota).where(TenantQuota.tenant_id == tenant_id).values(**values)
            )

    return _set
