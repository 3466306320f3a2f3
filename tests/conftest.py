import os
import sys
import tempfile
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# File-backed SQLite so worker threads share one database
_DB_DIR = tempfile.mkdtemp(prefix="crm-delivery-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+pysqlite:///{_DB_DIR}/test.db")
os.environ.setdefault("INTERNAL_API_TOKEN", "test-internal-token")


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    """Empty messages and delivery_reports tables for one test."""
    from crm_delivery.appdb import engine
    from crm_delivery.db_schema import ensure_schema
    from crm_delivery.models import Base

    ensure_schema()
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield engine


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient
    from crm_delivery.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def message_repo(db):
    from crm_delivery.repositories import MessageRepository

    return MessageRepository()


@pytest.fixture
def report_repo(db):
    from crm_delivery.repositories import DeliveryReportRepository

    return DeliveryReportRepository()
