"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, schema rebuilt for every test
- A connected OAuth account and a platform admin bearer token
- HTTPX AsyncClient bound to the app with get_db overridden
"""
import os
import uuid
from datetime import timedelta
from typing import AsyncGenerator, Generator

# Settings are read at import time; configure the environment first
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENV"] = "test"
os.environ["TESTING"] = "1"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["TOKEN_ENCRYPTION_KEY"] = "MDEyMzQ1Njc4OTAxMjM0NTY3ODkwMTIzNDU2Nzg5MDE="
os.environ["WEBHOOK_SIGNATURE_MODE"] = "none"
os.environ["WEBHOOK_REPLAY_BACKEND"] = "memory"
os.environ["GHL_CLIENT_ID"] = "test-client-id"
os.environ["GHL_CLIENT_SECRET"] = "test-client-secret"
os.environ.pop("REDIS_URL", None)

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from salesops.core.deps import get_db
from salesops.core.rate_limit import limiter
from salesops.core.security import create_access_token
from salesops.db.base import Base
from salesops.db.enums import GhlAuthType, Role, TargetTable
from salesops.db.models import Account, CalendarMapping, Contact, User
from salesops.db.session import SessionLocal, engine
from salesops.main import app
from salesops.services.replay_cache import reset_replay_cache
from salesops.services.webhook_security import reset_signature_verifier
from salesops.utils.datetime_parsing import utc_now

LOCATION_ID = "loc-123"
ACCESS_TOKEN = "ghl-access-token"


# =============================================================================
# Process-wide state
# =============================================================================

@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Replay cache, signature verifier and rate limit counters are per test."""
    reset_replay_cache()
    reset_signature_verifier()
    limiter.reset()
    yield
    reset_replay_cache()
    reset_signature_verifier()


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema per test; app code is free to commit."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def account(db: Session) -> Account:
    """OAuth-connected account with a token valid for another hour."""
    acct = Account(
        id=uuid.uuid4(),
        name="Test Account",
        timezone="America/New_York",
        ghl_auth_type=GhlAuthType.OAUTH2.value,
        ghl_access_token=ACCESS_TOKEN,
        ghl_refresh_token="ghl-refresh-token",
        ghl_token_expires_at=utc_now() + timedelta(hours=1),
        ghl_location_id=LOCATION_ID,
    )
    db.add(acct)
    db.commit()
    return acct


@pytest.fixture(scope="function")
def contact(db: Session, account: Account) -> Contact:
    row = Contact(
        account_id=account.id,
        ghl_contact_id="contact-1",
        first_name="Jane",
        last_name="Doe",
        name="Jane Doe",
        email="jane@example.com",
        phone="+15550001111",
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture(scope="function")
def appointment_calendar(db: Session, account: Account) -> CalendarMapping:
    mapping = CalendarMapping(
        account_id=account.id,
        ghl_calendar_id="cal-sales",
        calendar_name="Sales Call",
        target_table=TargetTable.APPOINTMENTS.value,
    )
    db.add(mapping)
    db.commit()
    return mapping


@pytest.fixture(scope="function")
def discovery_calendar(db: Session, account: Account) -> CalendarMapping:
    mapping = CalendarMapping(
        account_id=account.id,
        ghl_calendar_id="cal-discovery",
        calendar_name="Discovery Call",
        target_table=TargetTable.DISCOVERIES.value,
    )
    db.add(mapping)
    db.commit()
    return mapping


# =============================================================================
# Auth Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def admin_user(db: Session) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"admin-{uuid.uuid4().hex[:8]}@test.com",
        display_name="Platform Admin",
        role=Role.PLATFORM_ADMIN.value,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture(scope="function")
def admin_headers(admin_user: User) -> dict[str, str]:
    token = create_access_token(admin_user.id, admin_user.role)
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# CRM fakes
# =============================================================================

@pytest.fixture(scope="function")
def no_crm_lookups(monkeypatch):
    """CRM entity lookups return nothing (no contacts, users or appointments)."""
    from salesops.services import ghl_api

    async def fake_none(*args, **kwargs):
        return None

    monkeypatch.setattr(ghl_api, "get_contact", fake_none)
    monkeypatch.setattr(ghl_api, "fetch_user_details", fake_none)
    monkeypatch.setattr(ghl_api, "get_appointment", fake_none)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create AsyncClient bound to the app, sharing the test session.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()
