"""
Pytest configuration and fixtures
"""
import os

# Must be set before bookingflow.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone
from itertools import count
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bookingflow.config import Settings
from bookingflow.database import Base
from bookingflow.models import Booking, ConfirmationStatus, Tenant
from bookingflow.services.sms_service import MessagingGateway

# Use in-memory database for testing
TEST_DATABASE_URL = "sqlite://"

# Tuesday 10 March 2026, 10:00 UTC (12:00 in Asia/Jerusalem)
NOW = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
CUSTOMER_PHONE = "+972501234567"


@pytest.fixture
def now():
    return NOW


@pytest.fixture(scope="function")
def test_engine():
    """Create test database engine"""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_db_session(test_engine):
    """Create test database session"""
    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestSessionLocal()
    yield session
    session.close()


@pytest.fixture
def test_settings():
    """Settings with messaging credentials filled in"""
    return Settings(
        twilio_account_sid="ACtest",
        twilio_auth_token="test-auth-token",
        twilio_from_number="+15550001111",
        messaging_channel="whatsapp",
        cron_secret="cron-secret",
        admin_jwt_secret="admin-secret",
    )


@pytest.fixture
def sample_tenant(test_db_session):
    """Create sample tenant"""
    tenant = Tenant(
        id="salon-1",
        owner_uid="owner-1",
        display_name="Salon Dana",
        timezone="Asia/Jerusalem",
        expired_cleanup_mode="daily",
    )
    test_db_session.add(tenant)
    test_db_session.commit()
    return tenant


@pytest.fixture
def make_booking(test_db_session, sample_tenant):
    """Factory adding one booking; keyword arguments override the defaults"""
    ids = count(1)

    def _make(**fields):
        booking_id = fields.pop("id", None) or f"b{next(ids)}"
        data = {
            "tenant_id": sample_tenant.id,
            "customer_name": "Noa",
            "customer_phone_e164": CUSTOMER_PHONE,
            "start_at": NOW + timedelta(hours=24),
            "date": "2026-03-11",
            "service_name": "Haircut",
            "status": "booked",
            "confirmation_status": ConfirmationStatus.BOOKED,
        }
        data.update(fields)
        booking = Booking(id=booking_id, **data)
        test_db_session.add(booking)
        test_db_session.commit()
        return booking

    return _make


@pytest.fixture
def twilio_client():
    """Fake Twilio REST client"""
    client = Mock()
    client.messages.create.return_value = Mock(sid="SM0001")
    return client


@pytest.fixture
def gateway(test_db_session, twilio_client, test_settings):
    return MessagingGateway(test_db_session, client=twilio_client, config=test_settings)


@pytest.fixture
def reload(test_db_session):
    """Fresh booking from the database, or None when it was deleted"""

    def _reload(booking_id):
        test_db_session.expire_all()
        return test_db_session.query(Booking).filter(Booking.id == booking_id).first()

    return _reload


# Test markers
def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
