"""
Pytest fixtures for the ledger reconciliation test suite.

Provides:
- Structured logging configured once per session, LogContext cleared per test
- ``captured_logs`` JSON capture of the ``ledger`` logger tree
- A deterministic clock pinned to ``TODAY``
- Reference data (buildings, properties, contacts, categories) and record
  factories
- In-memory and SQLite-backed record stores and a wired service
"""

import itertools
import json
import logging
from datetime import date, timedelta
from decimal import Decimal
from io import StringIO

import pytest

from ledger_config.schema import ReconciliationConfig
from ledger_engines.lookup import LookupIndex
from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.records import (
    Bill,
    Building,
    Category,
    CategoryKind,
    Contact,
    ContactType,
    Invoice,
    Payment,
    Property,
    TransactionType,
)
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_services.reconciliation_service import LedgerReconciliationService
from ledger_services.record_store import InMemoryRecordStore
from ledger_services.sql_store import SqlRecordStore

TODAY = date(2024, 3, 15)


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
    Capture ledger logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.record_bulk_payment(...)
            logs = captured_logs()
            assert any(r["message"] == "bulk_payment_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger")
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
# Clock and configuration
# =============================================================================


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock.on(TODAY)


@pytest.fixture
def config() -> ReconciliationConfig:
    return ReconciliationConfig()


@pytest.fixture
def id_factory():
    """Sequential, deterministic ids: id-0001, id-0002, ..."""
    counter = itertools.count(1)
    return lambda: f"id-{next(counter):04d}"


# =============================================================================
# Reference data
# =============================================================================


@pytest.fixture
def reference_data() -> dict:
    """
    Two buildings, three properties, two tenants, one owner, one vendor and
    the five standard categories.

    ``p3`` has neither building nor owner.
    """
    return {
        "buildings": [
            Building(id="b1", name="Harbor View"),
            Building(id="b2", name="Oak Court"),
        ],
        "properties": [
            Property(id="p1", name="Unit 101", building_id="b1", owner_id="o1"),
            Property(id="p2", name="Unit 202", building_id="b2", owner_id="o1"),
            Property(id="p3", name="Unit 303"),
        ],
        "contacts": [
            Contact(id="t1", name="Alice Tenant", contact_type=ContactType.TENANT),
            Contact(id="t2", name="Bob Tenant", contact_type=ContactType.TENANT),
            Contact(id="o1", name="Olivia Owner", contact_type=ContactType.OWNER),
            Contact(id="v1", name="Acme Plumbing", contact_type=ContactType.VENDOR),
        ],
        "categories": [
            Category(id="cat-rent", name="Rental Income", kind=CategoryKind.RENTAL_INCOME),
            Category(
                id="cat-deposit", name="Security Deposit", kind=CategoryKind.SECURITY_DEPOSIT
            ),
            Category(
                id="cat-service",
                name="Service Charge Income",
                kind=CategoryKind.SERVICE_CHARGE_INCOME,
            ),
            Category(
                id="cat-install",
                name="Installment Income",
                kind=CategoryKind.INSTALLMENT_INCOME,
            ),
            Category(
                id="cat-expense", name="General Expense", kind=CategoryKind.GENERAL_EXPENSE
            ),
        ],
    }


@pytest.fixture
def index(reference_data) -> LookupIndex:
    return LookupIndex.build(**reference_data)


# =============================================================================
# Record factories
# =============================================================================


@pytest.fixture
def make_invoice():
    """
    Invoice factory.  Defaults: 1000.00 rent for Alice in Unit 101, issued
    40 days and due 10 days before ``TODAY``.
    """
    counter = itertools.count(1)

    def _make(**overrides) -> Invoice:
        n = next(counter)
        values = {
            "id": f"inv-{n}",
            "number": f"INV-{n:05d}",
            "amount": Decimal("1000.00"),
            "issue_date": TODAY - timedelta(days=40),
            "due_date": TODAY - timedelta(days=10),
            "contact_id": "t1",
            "property_id": "p1",
        }
        values.update(overrides)
        return Invoice(**values)

    return _make


@pytest.fixture
def make_bill():
    """Bill factory.  Defaults: 400.00 from Acme Plumbing for Unit 101."""
    counter = itertools.count(1)

    def _make(**overrides) -> Bill:
        n = next(counter)
        values = {
            "id": f"bill-{n}",
            "number": f"BILL-{n:05d}",
            "amount": Decimal("400.00"),
            "issue_date": TODAY - timedelta(days=20),
            "due_date": TODAY - timedelta(days=5),
            "vendor_id": "v1",
            "property_id": "p1",
        }
        values.update(overrides)
        return Bill(**values)

    return _make


@pytest.fixture
def make_payment():
    """Income payment factory; pass ``invoice_id`` or ``bill_id`` to link."""
    counter = itertools.count(1)

    def _make(**overrides) -> Payment:
        n = next(counter)
        values = {
            "id": f"pay-{n}",
            "type": TransactionType.INCOME,
            "amount": Decimal("100.00"),
            "date": TODAY - timedelta(days=1),
            "category_id": "cat-rent",
        }
        values.update(overrides)
        return Payment(**values)

    return _make


# =============================================================================
# Stores and service
# =============================================================================


@pytest.fixture
def memory_store(reference_data) -> InMemoryRecordStore:
    return InMemoryRecordStore(**reference_data)


@pytest.fixture
def service(memory_store, config, clock, id_factory) -> LedgerReconciliationService:
    return LedgerReconciliationService(
        memory_store, config=config, clock=clock, id_factory=id_factory
    )


@pytest.fixture
def sql_store(reference_data):
    """SQLite in-memory store with reference data loaded."""
    engine = init_engine_from_url("sqlite://")
    create_tables(engine)
    store = SqlRecordStore(get_session_factory())
    store.add_records(
        [
            *reference_data["buildings"],
            *reference_data["properties"],
            *reference_data["contacts"],
            *reference_data["categories"],
        ]
    )
    yield store
    drop_tables(engine)
    reset_engine()
