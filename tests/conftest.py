"""
==============================================================================
Pytest Configuration and Fixtures
==============================================================================

Provides in-memory inventory, test client, and scanner session fixtures.

The environment is set before the application is imported so the cached
settings point at an in-memory database and a temporary log directory.

==============================================================================
"""

import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SEED_ON_STARTUP"] = "false"
os.environ["INVENTORY_BACKEND"] = "sql"
os.environ["SECURE_HOSTS"] = '["localhost", "127.0.0.1", "testserver"]'
os.environ["LOG_DIRECTORY"] = tempfile.mkdtemp(prefix="stockscan-logs-")
os.environ["SESSION_LOGS_ENABLED"] = "false"

from typing import Callable, Generator  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from stockscan.config import Settings  # noqa: E402
from stockscan.core.dependencies import (  # noqa: E402
    get_db,
    get_inventory_service,
    get_local_inventory,
)
from stockscan.db.database import DatabaseManager  # noqa: E402
from stockscan.db.models import InventoryItem  # noqa: E402
from stockscan.inventory.base import InventoryService  # noqa: E402
from stockscan.inventory.sql_service import SqlInventoryService  # noqa: E402
from stockscan.main import app  # noqa: E402
from stockscan.scanner.decoder import DecodeEngine  # noqa: E402
from stockscan.scanner.models import ResolvedItem  # noqa: E402
from stockscan.services.resolver import CodeResolver  # noqa: E402
from stockscan.services.scanner_session import ScannerSession  # noqa: E402
from stockscan.services.transaction_coordinator import TransactionCoordinator  # noqa: E402

from fakes import FakeBarcodeDecoder, FakeFrameSource  # noqa: E402


COCA_COLA_CODE = "7790001234567"


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def db_manager() -> Generator[DatabaseManager, None, None]:
    """Fresh in-memory database for each test."""
    manager = DatabaseManager("sqlite://")
    manager.create_tables()
    try:
        yield manager
    finally:
        manager.drop_tables()
        manager.dispose()


@pytest.fixture
def inventory(db_manager: DatabaseManager) -> SqlInventoryService:
    return SqlInventoryService(db_manager)


@pytest.fixture
def coca_cola(db_manager: DatabaseManager, inventory: SqlInventoryService) -> ResolvedItem:
    """Coca Cola 2L, stock 20."""
    with db_manager.session_scope() as session:
        session.add(InventoryItem(
            code=COCA_COLA_CODE,
            name="Coca Cola 2L",
            category="Beverages",
            unit_price=2500.0,
            unit_cost=1800.0,
            stock_on_hand=20,
        ))
    return inventory.find_by_code(COCA_COLA_CODE)


@pytest.fixture
def bulk_cheese(db_manager: DatabaseManager, inventory: SqlInventoryService) -> ResolvedItem:
    with db_manager.session_scope() as session:
        session.add(InventoryItem(
            code="QUESO-BARRA",
            name="Queso Barra",
            category="Bulk",
            unit_price=8900.0,
            stock_on_hand=7.5,
            is_bulk=True,
            unit_of_measure="kg",
        ))
    return inventory.find_by_code("QUESO-BARRA")


# ============================================================================
# CLIENT FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def client(db_manager: DatabaseManager) -> Generator[TestClient, None, None]:
    """Create test client with the inventory pointed at the test database."""
    def override_get_db():
        session = db_manager.get_session()
        try:
            yield session
        finally:
            session.close()

    def override_inventory():
        yield SqlInventoryService(db_manager)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_local_inventory] = lambda: SqlInventoryService(db_manager)
    app.dependency_overrides[get_inventory_service] = override_inventory

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ============================================================================
# SCANNER FIXTURES
# ============================================================================

@pytest.fixture
def scanner_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        debounce_cooldown_seconds=2.0,
        ocr_interval_seconds=0.01,
        structured_decode_fps=60,
        stock_staleness_seconds=5.0,
        log_directory=str(tmp_path / "logs"),
        session_logs_enabled=False,
    )


@pytest.fixture
def make_session(scanner_settings: Settings) -> Callable[..., ScannerSession]:
    """
    Factory for a ScannerSession wired to fakes.

    Keyword arguments override the source, decode engine, surface or
    any other ScannerSession argument.
    """
    def factory(inventory: InventoryService, **kwargs) -> ScannerSession:
        source = kwargs.pop("source", None) or FakeFrameSource()
        engine = kwargs.pop("engine", None) or DecodeEngine(FakeBarcodeDecoder())
        coordinator = kwargs.pop("coordinator", None) or TransactionCoordinator(
            inventory,
            staleness_seconds=scanner_settings.stock_staleness_seconds,
        )
        return ScannerSession(
            source=source,
            engine=engine,
            resolver=CodeResolver(inventory),
            coordinator=coordinator,
            settings=kwargs.pop("settings", scanner_settings),
            **kwargs
        )

    return factory
