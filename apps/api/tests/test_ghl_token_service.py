from datetime import timedelta

import httpx
import pytest

from salesops.core.config import settings
from salesops.db.enums import GhlAuthType
from salesops.services import ghl_api, ghl_token_service
from salesops.utils.datetime_parsing import ensure_utc, utc_now


def _fake_refresh(calls, response):
    async def fake_refresh(refresh_token):
        calls.append(refresh_token)
        return response

    return fake_refresh


@pytest.mark.asyncio
async def test_refreshes_token_inside_skew_window(db, account, monkeypatch):
    calls = []
    monkeypatch.setattr(
        ghl_api,
        "refresh_access_token",
        _fake_refresh(calls, {"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 86400}),
    )
    account.ghl_token_expires_at = utc_now() + timedelta(seconds=90)
    db.commit()

    token = await ghl_token_service.get_valid_access_token(db, account)

    assert token == "new-access"
    assert calls == ["ghl-refresh-token"]
    db.refresh(account)
    assert account.ghl_access_token == "new-access"
    assert account.ghl_refresh_token == "new-refresh"
    assert ensure_utc(account.ghl_token_expires_at) > utc_now() + timedelta(hours=23)


@pytest.mark.asyncio
async def test_token_outside_skew_window_is_reused(db, account, monkeypatch):
    calls = []
    monkeypatch.setattr(ghl_api, "refresh_access_token", _fake_refresh(calls, None))
    account.ghl_token_expires_at = utc_now() + timedelta(minutes=3)
    db.commit()

    token = await ghl_token_service.get_valid_access_token(db, account)

    assert token == "ghl-access-token"
    assert calls == []


@pytest.mark.asyncio
async def test_refresh_keeps_old_refresh_token_when_not_rotated(db, account, monkeypatch):
    monkeypatch.setattr(
        ghl_api,
        "refresh_access_token",
        _fake_refresh([], {"access_token": "new-access", "expires_in": 3600}),
    )

    token = await ghl_token_service.get_valid_access_token(db, account, force_refresh=True)

    assert token == "new-access"
    db.refresh(account)
    assert account.ghl_refresh_token == "ghl-refresh-token"


@pytest.mark.asyncio
async def test_missing_refresh_token_returns_stored_token(db, account, monkeypatch):
    calls = []
    monkeypatch.setattr(ghl_api, "refresh_access_token", _fake_refresh(calls, None))
    account.ghl_refresh_token = None
    account.ghl_token_expires_at = utc_now() - timedelta(minutes=5)
    db.commit()

    token = await ghl_token_service.get_valid_access_token(db, account)

    assert token == "ghl-access-token"
    assert calls == []


@pytest.mark.asyncio
async def test_rejected_refresh_keeps_stored_token(db, account, monkeypatch):
    monkeypatch.setattr(ghl_api, "refresh_access_token", _fake_refresh([], None))
    account.ghl_token_expires_at = utc_now() - timedelta(minutes=5)
    db.commit()

    token = await ghl_token_service.get_valid_access_token(db, account)

    assert token == "ghl-access-token"
    db.refresh(account)
    assert account.ghl_access_token == "ghl-access-token"


@pytest.mark.asyncio
async def test_transport_error_during_refresh_keeps_stored_token(db, account, monkeypatch):
    async def failing_refresh(refresh_token):
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(ghl_api, "refresh_access_token", failing_refresh)

    token = await ghl_token_service.get_valid_access_token(db, account, force_refresh=True)

    assert token == "ghl-access-token"


@pytest.mark.asyncio
async def test_api_key_accounts_never_refresh(db, account, monkeypatch):
    calls = []
    monkeypatch.setattr(ghl_api, "refresh_access_token", _fake_refresh(calls, None))
    account.ghl_auth_type = GhlAuthType.API_KEY.value
    account.ghl_access_token = "static-key"
    account.ghl_token_expires_at = None
    db.commit()

    token = await ghl_token_service.get_valid_access_token(db, account, force_refresh=True)

    assert token == "static-key"
    assert calls == []


@pytest.mark.asyncio
async def test_oauth_not_configured_returns_stored_token(db, account, monkeypatch):
    calls = []
    monkeypatch.setattr(ghl_api, "refresh_access_token", _fake_refresh(calls, None))
    monkeypatch.setattr(settings, "GHL_CLIENT_ID", "")

    token = await ghl_token_service.get_valid_access_token(db, account, force_refresh=True)

    assert token == "ghl-access-token"
    assert calls == []


def test_tokens_are_encrypted_at_rest(db, account):
    from sqlalchemy import text

    raw = db.execute(
        text("SELECT ghl_access_token FROM accounts WHERE id = :id"),
        {"id": account.id.hex},
    ).scalar_one()
    assert raw.startswith("enc:")
    assert "ghl-access-token" not in raw
