"""Shared pytest fixtures for test suite"""
import base64
import hashlib
import hmac
import json
import os
import sys
import time
from decimal import Decimal
from pathlib import Path
from typing import Generator
from unittest.mock import Mock, patch

# Settings are read at import time, so the environment must be ready first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["POLAR_WEBHOOK_SECRET"] = "whsec_ZG9jb2JvLXRlc3Qtc2lnbmluZy1zZWNyZXQtMzJieXQ="
os.environ["SEPAY_WEBHOOK_SECRET"] = "sepay-test-api-key"
os.environ["DISCORD_BOT_TOKEN"] = "test-bot-token"
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""

import pytest
import fakeredis
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from docobo.main import app
from docobo.db import redis as redis_module
from docobo.db import session as session_module
from docobo.db.session import SessionLocal, get_db
from docobo.models import (
    Base, Guild, Member, PaidRole, Subscription, PaymentProvider, SubscriptionStatus
)
from docobo.services.role_effector import EffectResult, RoleEffector


POLAR_SECRET = os.environ["POLAR_WEBHOOK_SECRET"]
SEPAY_API_KEY = os.environ["SEPAY_WEBHOOK_SECRET"]

GUILD_ID = "111111111111111111"
ROLE_ID = "222222222222222222"
USER_ID = "333333333333333333"

# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

# The background worker opens its own sessions; point them at the test database
SessionLocal.configure(bind=test_engine)


def sign_polar(body: bytes, message_id: str = "msg_test_1", timestamp: int = None, secret: str = POLAR_SECRET) -> dict:
    """Build Standard Webhooks headers for a body"""
    timestamp = str(int(time.time()) if timestamp is None else timestamp)
    encoded = secret[len("whsec_"):]
    key = base64.b64decode(encoded + "=" * (-len(encoded) % 4))
    digest = hmac.new(key, f"{message_id}.{timestamp}.".encode() + body, hashlib.sha256).digest()
    return {
        "webhook-id": message_id,
        "webhook-timestamp": timestamp,
        "webhook-signature": f"v1,{base64.b64encode(digest).decode()}",
    }


def polar_body(event_id: str, event_type: str, data_id: str, **data) -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"id": data_id, **data}}).encode()


def sepay_payload(transaction_id: int = 92704, **overrides) -> dict:
    payload = {
        "id": transaction_id,
        "gateway": "Vietcombank",
        "transactionDate": "2024-07-25 14:02:37",
        "accountNumber": "0123499999",
        "subAccount": None,
        "code": None,
        "content": f"DOCOBO-{GUILD_ID}-{ROLE_ID}-{USER_ID}",
        "transferType": "in",
        "transferAmount": 10,
        "accumulated": 19077000,
        "referenceCode": f"DOCOBO-{GUILD_ID}-{ROLE_ID}-{USER_ID}",
        "description": "",
    }
    payload.update(overrides)
    return payload


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(server=fakeredis.FakeServer(), decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def mock_effector() -> Mock:
    """Role effector that records calls instead of talking to Discord"""
    effector = Mock(spec=RoleEffector)
    effector.grant.return_value = EffectResult.GRANTED
    effector.revoke.return_value = EffectResult.REVOKED
    with patch("docobo.tasks.webhook_worker.get_role_effector", return_value=effector):
        yield effector


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis, mock_effector) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, mocked Redis and mocked Discord"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        # Disable OpenTelemetry in tests
        with patch("docobo.main.initialize_otel", return_value=False):
            with patch.object(session_module, "engine", test_engine):
                with TestClient(app) as test_client:
                    yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def guild(db_session: Session) -> Guild:
    guild = Guild(guild_id=GUILD_ID, name="Test Guild")
    db_session.add(guild)
    db_session.commit()
    db_session.refresh(guild)
    return guild


@pytest.fixture(scope="function")
def paid_role(db_session: Session, guild: Guild) -> PaidRole:
    """Active $10 role in the test guild"""
    role = PaidRole(
        guild_id=guild.id,
        role_id=ROLE_ID,
        role_name="Supporter",
        price_usd=Decimal("10.00"),
        currency="USD",
        is_active=True
    )
    db_session.add(role)
    db_session.commit()
    db_session.refresh(role)
    return role


@pytest.fixture(scope="function")
def member(db_session: Session, guild: Guild) -> Member:
    member = Member(user_id=USER_ID, guild_id=guild.id, username="tester")
    db_session.add(member)
    db_session.commit()
    db_session.refresh(member)
    return member


@pytest.fixture(scope="function")
def make_subscription(db_session: Session, member: Member, paid_role: PaidRole):
    """Factory for Polar subscriptions in a given status"""
    def _make(external_id: str = "sub_polar_1", status: SubscriptionStatus = SubscriptionStatus.PENDING) -> Subscription:
        subscription = Subscription(
            member_id=member.id,
            role_id=paid_role.id,
            provider=PaymentProvider.POLAR,
            external_subscription_id=external_id,
            status=status,
            cancel_at_period_end=False
        )
        db_session.add(subscription)
        db_session.commit()
        db_session.refresh(subscription)
        return subscription
    return _make
