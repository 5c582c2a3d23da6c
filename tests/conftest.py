"""Shared pytest fixtures for all tests."""
from __future__ import annotations

import io
from pathlib import Path
from typing import Generator, List, Optional

import openpyxl
import pytest

from bookcatalog.config import CatalogConfig
from bookcatalog.db.database import init_db, close_db
from bookcatalog.reconcile.engine import ReconciliationEngine
from bookcatalog.reconcile.models import BookFields, PricingFields
from bookcatalog.reconcile.runner import BatchRunner
from bookcatalog.reconcile.service import CatalogService, create_catalog_service
from bookcatalog.store.sql import SqlCatalogStore


@pytest.fixture
def database() -> Generator[None, None, None]:
    """Fresh in-memory database for one test."""
    init_db("sqlite://")
    yield
    close_db()


@pytest.fixture
def store(database) -> SqlCatalogStore:
    return SqlCatalogStore()


@pytest.fixture
def engine(store: SqlCatalogStore) -> ReconciliationEngine:
    return ReconciliationEngine(store)


@pytest.fixture
def audit_dir(tmp_path: Path) -> Path:
    return tmp_path / "logs"


@pytest.fixture
def runner(store: SqlCatalogStore, audit_dir: Path) -> BatchRunner:
    return BatchRunner(store, audit_log_dir=str(audit_dir))


@pytest.fixture
def catalog_config(tmp_path: Path) -> CatalogConfig:
    return CatalogConfig(
        database_url="sqlite://",
        audit_log_dir=str(tmp_path / "logs"),
        upload_dir=str(tmp_path / "uploads"),
        secret_key="test-secret",
    )


@pytest.fixture
def service(store: SqlCatalogStore, catalog_config: CatalogConfig) -> CatalogService:
    return create_catalog_service(catalog_config, store=store)


@pytest.fixture
def app(database, catalog_config: CatalogConfig):
    """Flask app bound to the in-memory database."""
    from bookcatalog.main import create_app

    flask_app = create_app(catalog_config)
    flask_app.config['TESTING'] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def dune_book() -> BookFields:
    """Return a sample book."""
    return BookFields(
        isbn="9780441013593",
        title="Dune",
        author="Frank Herbert",
        year=1965,
        publisher_name="Chilton Books",
    )


@pytest.fixture
def vendor_pricing() -> PricingFields:
    """Return sample pricing from one vendor."""
    return PricingFields(source="vendorA", rate=12.5, discount=0.0, currency="USD")


@pytest.fixture
def sample_rows() -> List[dict]:
    """Return spreadsheet rows as header label to cell value."""
    return [
        {
            "ISBN": "9780441013593",
            "Title": "Dune",
            "Author": "Frank Herbert",
            "Year": 1965,
            "Publisher": "Chilton Books",
            "Price": 12.5,
            "Curr": "USD",
        },
        {
            "ISBN": "9780553293357",
            "Title": "Foundation",
            "Author": "Isaac Asimov",
            "Year": 1951,
            "Publisher": "Gnome Press",
            "Price": 9,
            "Curr": "USD",
        },
    ]


def build_workbook(headers: List[str], rows: List[list], sheet_title: Optional[str] = None) -> bytes:
    """Build an .xlsx file in memory."""
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    if sheet_title:
        sheet.title = sheet_title
    sheet.append(headers)
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def workbook_bytes():
    """Factory fixture returning .xlsx bytes for headers and rows."""
    return build_workbook
