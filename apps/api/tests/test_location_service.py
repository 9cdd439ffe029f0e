import uuid
from datetime import timedelta

import pytest

from salesops.db.enums import GhlAuthType
from salesops.db.models import Account
from salesops.services import ghl_api, location_service
from salesops.utils.datetime_parsing import utc_now


def _oauth_account(db, name, location_id, token):
    acct = Account(
        id=uuid.uuid4(),
        name=name,
        ghl_auth_type=GhlAuthType.OAUTH2.value,
        ghl_access_token=token,
        ghl_refresh_token=f"{token}-refresh",
        ghl_token_expires_at=utc_now() + timedelta(hours=1),
        ghl_location_id=location_id,
    )
    db.add(acct)
    db.commit()
    return acct


@pytest.mark.asyncio
async def test_exact_match_does_not_call_crm(db, account, monkeypatch):
    async def fail_list_locations(token):
        raise AssertionError("should not be called")

    monkeypatch.setattr(ghl_api, "list_locations", fail_list_locations)

    resolved = await location_service.resolve_account_for_location(db, "loc-123")

    assert resolved.id == account.id


@pytest.mark.asyncio
async def test_recovers_stale_location_mapping(db, monkeypatch):
    stale = _oauth_account(db, "Stale", "loc-old", "token-a")
    other = _oauth_account(db, "Other", "loc-other", "token-b")
    calls = []

    async def fake_list_locations(token):
        calls.append(token)
        if token == "token-a":
            return [{"id": "loc-old"}, {"id": "loc-new"}]
        return [{"id": "loc-other"}]

    monkeypatch.setattr(ghl_api, "list_locations", fake_list_locations)

    resolved = await location_service.resolve_account_for_location(db, "loc-new")

    assert resolved.id == stale.id
    db.refresh(stale)
    db.refresh(other)
    assert stale.ghl_location_id == "loc-new"
    assert other.ghl_location_id == "loc-other"

    # Second delivery for the same location is an exact match
    calls.clear()
    again = await location_service.resolve_account_for_location(db, "loc-new")
    assert again.id == stale.id
    assert calls == []


@pytest.mark.asyncio
async def test_unknown_location_returns_none_and_changes_nothing(db, account, monkeypatch):
    async def fake_list_locations(token):
        return [{"id": "loc-123"}]

    monkeypatch.setattr(ghl_api, "list_locations", fake_list_locations)

    resolved = await location_service.resolve_account_for_location(db, "loc-missing")

    assert resolved is None
    db.refresh(account)
    assert account.ghl_location_id == "loc-123"


@pytest.mark.asyncio
async def test_failing_candidate_is_skipped(db, monkeypatch):
    _oauth_account(db, "Broken", "loc-a", "token-broken")
    good = _oauth_account(db, "Good", "loc-b", "token-good")

    async def fake_list_locations(token):
        if token == "token-broken":
            raise ghl_api.GhlAuthError("rejected", status_code=401)
        return [{"id": "loc-target"}]

    monkeypatch.setattr(ghl_api, "list_locations", fake_list_locations)

    resolved = await location_service.resolve_account_for_location(db, "loc-target")

    assert resolved.id == good.id


@pytest.mark.asyncio
async def test_missing_location_id_returns_none(db, account):
    assert await location_service.resolve_account_for_location(db, None) is None
    assert await location_service.resolve_account_for_location(db, "") is None
