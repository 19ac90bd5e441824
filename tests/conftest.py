"""Shared test fixtures and configuration."""

import json
import os
import time
import pytest
from typing import Dict, Any

# Set up test environment variables before importing modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import sqlalchemy as sa
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from exchequer.api import create_app
from exchequer.config import Settings
from exchequer.connectors import SimulatorConnector, SimulatorConfig, sign_webhook_payload
from exchequer.database import (
    Base,
    Collection,
    DatabaseManager,
    Document,
    RecordStore,
    create_async_engine,
    get_async_session_factory,
)

WEBHOOK_SECRET = "whsec_test_secret"
ORG_ID = "o1"
MEMBER_ID = "m1"
MEMBER = {"name": "Test", "email": "test@example.org"}


def make_event(event_type: str, obj: Dict[str, Any], event_id: str = "evt_test_1") -> Dict[str, Any]:
    """Build a Stripe-shaped event payload."""
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": obj},
    }


def make_intent_payload(
    intent_id: str = "pi_test_123",
    amount: int = 15000,
    payment_type: str = "dues",
    metadata: Dict[str, Any] = None,
    **fields: Any,
) -> Dict[str, Any]:
    """Build a succeeded payment intent as it appears inside an event."""
    if metadata is None:
        metadata = {
            "memberId": MEMBER_ID,
            "organizationId": ORG_ID,
            "paymentType": payment_type,
            "memberName": "Test",
        }
    payload = {
        "id": intent_id,
        "object": "payment_intent",
        "amount": amount,
        "currency": "usd",
        "status": "succeeded",
        "description": "Spring dues",
        "latest_charge": "ch_test_123",
        "metadata": metadata,
        "created": int(time.time()),
    }
    payload.update(fields)
    return payload


def signed_request(event: Dict[str, Any], secret: str = WEBHOOK_SECRET):
    """Serialize and sign an event; returns (body, headers)."""
    body = json.dumps(event)
    headers = {
        "stripe-signature": sign_webhook_payload(body, secret),
        "content-type": "application/json",
    }
    return body.encode("utf-8"), headers


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db_session):
    return RecordStore(db_session)


@pytest.fixture
async def member(store, db_session):
    """Member m1 of organization o1."""
    await store.set(ORG_ID, MEMBER_ID, Collection.MEMBERS, MEMBER_ID, MEMBER)
    await db_session.commit()
    return dict(MEMBER, id=MEMBER_ID)


@pytest.fixture
def simulator():
    """Simulator connector signing webhooks with the test secret."""
    return SimulatorConnector(SimulatorConfig(webhook_secret=WEBHOOK_SECRET))


@pytest.fixture
def seeded_database_url(tmp_path):
    """File database holding member m1 of o1.

    The app under TestClient runs its own event loop, so it gets its own
    engine on the same file rather than sharing a test connection.
    """
    path = tmp_path / "exchequer.db"
    engine = sa.create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        doc = Document(
            organization_id=ORG_ID,
            member_id=MEMBER_ID,
            collection=Collection.MEMBERS.value,
            doc_id=MEMBER_ID,
        )
        doc.data = MEMBER
        session.add(doc)
        session.commit()
    engine.dispose()
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
def settings(seeded_database_url):
    return Settings(
        stripe_webhook_secret=WEBHOOK_SECRET,
        database_url=seeded_database_url,
        rate_limit_enabled=False,
    )


@pytest.fixture
def app(settings, simulator):
    return create_app(
        settings=settings,
        connector=simulator,
        database=DatabaseManager(settings.database_url),
    )


@pytest.fixture
def client(app):
    """Test client with the app's lifespan running."""
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def intent_body() -> Dict[str, Any]:
    """Valid payment intent request body."""
    return {
        "amount": 15000,
        "currency": "usd",
        "memberId": MEMBER_ID,
        "organizationId": ORG_ID,
        "description": "Spring dues",
    }
