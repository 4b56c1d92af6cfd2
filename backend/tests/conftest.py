"""
Shared fixtures.

DATABASE_URL and EXPORT_DIR must point at a scratch directory before the
noos package is imported, because the engine is built at import time.
"""

import os
import tempfile
import threading
import time
from datetime import date, timedelta

_SCRATCH = tempfile.mkdtemp(prefix="noos-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_SCRATCH, 'noos_test.db')}"
os.environ["EXPORT_DIR"] = os.path.join(_SCRATCH, "exports")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from noos.main import app  # noqa: E402
from noos.models import (  # noqa: E402
    SessionLocal, create_tables, drop_tables,
    Store, Style, SKU, Sale, SkuAvailability
)
from noos.services import (  # noqa: E402
    BoundedExecutor, DatabaseStockCalendar, TaskOrchestrator,
    ResultExportService, get_orchestrator, get_export_service
)

WINDOW_START = date(2024, 1, 1)
WINDOW_END = date(2024, 1, 30)


@pytest.fixture(autouse=True)
def fresh_tables():
    create_tables()
    yield
    drop_tables()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def wait_until(predicate, timeout=10.0, interval=0.02):
    """Poll ``predicate`` until it is truthy or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


class CatalogBuilder:
    """Small helper to write master data, sales and stock calendar rows."""

    def __init__(self, db):
        self.db = db
        self.store = Store(branch="BLR-01", city="Bengaluru")
        db.add(self.store)
        db.commit()
        self._skus = {}

    def style(self, style_code, category, mrp=200.0):
        style = Style(style_code=style_code, brand="Acme", category=category, mrp=mrp, gender="U")
        sku = SKU(sku=f"{style_code}-M", style=style, size="M")
        self.db.add_all([style, sku])
        self.db.commit()
        self._skus[style_code] = sku
        return sku

    def sale(self, style_code, day, quantity, revenue=None, discount=0.0):
        sku = self._skus[style_code]
        self.db.add(Sale(
            date=day,
            sku_id=sku.id,
            store_id=self.store.id,
            quantity=quantity,
            discount=discount,
            revenue=quantity * 100.0 if revenue is None else revenue,
        ))

    def daily_sales(self, style_code, per_day, days, start=WINDOW_START):
        for offset in range(days):
            self.sale(style_code, start + timedelta(days=offset), per_day)

    def stocked(self, style_code, days, start=WINDOW_START):
        sku = self._skus[style_code]
        for offset in range(days):
            self.db.add(SkuAvailability(
                sku_id=sku.id, store_id=self.store.id, date=start + timedelta(days=offset)
            ))

    def commit(self):
        self.db.commit()


@pytest.fixture
def catalog(db):
    return CatalogBuilder(db)


@pytest.fixture
def shirts(catalog):
    """
    Two SHIRTS styles stocked for 30 days.
    SH-A sells 5 a day (150 units); SH-B sells 1 a day on 20 days (20 units).
    """
    catalog.style("SH-A", "SHIRTS")
    catalog.style("SH-B", "SHIRTS")
    catalog.daily_sales("SH-A", 5, 30)
    catalog.daily_sales("SH-B", 1, 20)
    catalog.stocked("SH-A", 30)
    catalog.stocked("SH-B", 30)
    catalog.commit()
    return catalog


class GatedCalendar:
    """Stock calendar that blocks until the test opens the gate."""

    def __init__(self, db, gate, entered):
        self.inner = DatabaseStockCalendar(db)
        self.gate = gate
        self.entered = entered

    def available_days(self, window):
        self.entered.set()
        self.gate.wait(timeout=10)
        return self.inner.available_days(window)


@pytest.fixture
def gate():
    """(gate, entered) events; the gate is always opened on teardown."""
    opened, entered = threading.Event(), threading.Event()
    yield opened, entered
    opened.set()


@pytest.fixture
def algo_executor():
    executor = BoundedExecutor("test-algorithm", workers=1, queue_capacity=1)
    yield executor
    executor.shutdown(wait=True)


@pytest.fixture
def file_executor():
    executor = BoundedExecutor("test-file", workers=1, queue_capacity=2)
    yield executor
    executor.shutdown(wait=True)


@pytest.fixture
def orchestrator(algo_executor, gate):
    opened, entered = gate
    return TaskOrchestrator(
        executor=algo_executor,
        calendar_factory=lambda session: GatedCalendar(session, opened, entered)
    )


@pytest.fixture
def exporter(file_executor):
    return ResultExportService(executor=file_executor, export_dir=os.environ["EXPORT_DIR"])


@pytest.fixture
def client(orchestrator, exporter):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_export_service] = lambda: exporter
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
