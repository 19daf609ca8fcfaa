# backend/tests/conftest.py
"""
Pytest configuration for the Agenda test suite.

Settings are read once at import time, so the environment is pinned here
BEFORE anything from ``agenda`` is imported: SQLite in memory, no Redis
(the booking lock stays process-local) and a known staff token.
"""

import os

os.environ["CI"] = "1"  # skip backend/.env
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["STAFF_API_TOKEN"] = "test-staff-token"
os.environ["TIMEZONE"] = "America/Sao_Paulo"
os.environ.pop("REDIS_URL", None)
os.environ.pop("ADMIN_TOKEN", None)

from decimal import Decimal

import pytest
from sqlalchemy.orm import Session, sessionmaker

from agenda.core.ttl_cache import TimeBoxedCache
from agenda.services.booking_service import BookingService
from agenda.services.notification_service import NotificationService, _template_cache
from helpers.database import build_sqlite_engine
from helpers.fakes import FakeCatalog, FakeCustomerStore, FakeMessageSender

STAFF_TOKEN = "test-staff-token"


@pytest.fixture
def db_engine():
    engine = build_sqlite_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False, future=True)


@pytest.fixture
def db(session_factory) -> Session:
    """Fresh session on a fresh in-memory database; services commit for real."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _clear_template_cache():
    _template_cache.invalidate()
    yield
    _template_cache.invalidate()


@pytest.fixture
def catalog() -> FakeCatalog:
    fake = FakeCatalog()
    fake.add_service("cut", "Corte", 30, Decimal("50.00"))
    fake.add_service("beard", "Barba", 45, Decimal("35.00"))
    fake.add_service("color", "Coloração", 60, Decimal("120.00"))
    return fake


@pytest.fixture
def customers() -> FakeCustomerStore:
    return FakeCustomerStore()


@pytest.fixture
def sender() -> FakeMessageSender:
    return FakeMessageSender()


@pytest.fixture
def template_cache() -> TimeBoxedCache:
    return TimeBoxedCache(300)


@pytest.fixture
def notification_service(db, catalog, template_cache) -> NotificationService:
    return NotificationService(db, catalog, template_cache=template_cache)


@pytest.fixture
def booking_service(db, catalog, customers, notification_service) -> BookingService:
    return BookingService(
        db,
        catalog,
        customers=customers,
        notification_service=notification_service,
    )


@pytest.fixture
def staff_headers() -> dict:
    return {"Authorization": f"Bearer {STAFF_TOKEN}"}
