import pytest

from salesops.db.enums import DEFAULT_SETTER_NAME, Role
from salesops.db.models import User
from salesops.services import ghl_api, ghl_user_service


@pytest.mark.parametrize(
    "remote,ghl_user_id,expected",
    [
        ({"name": " Sam Setter "}, "user-abcdefgh12", "Sam Setter"),
        ({"name": "", "firstName": "Sam", "lastName": "Setter"}, "user-1", "Sam Setter"),
        ({}, "user-abcdefgh12", "User cdefgh12"),
        (None, "short", "User short"),
        (None, None, None),
    ],
)
def test_display_name_fallbacks(remote, ghl_user_id, expected):
    assert ghl_user_service.display_name_for(remote, ghl_user_id) == expected


@pytest.mark.asyncio
async def test_resolve_setter_without_user_id(db, account):
    setter = await ghl_user_service.resolve_setter(db, account, "token", None)

    assert setter.name == DEFAULT_SETTER_NAME
    assert setter.user_id is None


@pytest.mark.asyncio
async def test_resolve_setter_matches_local_user_by_email(db, account, monkeypatch):
    local = User(account_id=account.id, email="Sam@Example.com", role=Role.SETTER.value)
    db.add(local)
    db.commit()

    async def fake_fetch(token, user_id, location_id=None):
        assert location_id == account.ghl_location_id
        return {"firstName": "Sam", "lastName": "Setter", "email": " SAM@example.com "}

    monkeypatch.setattr(ghl_api, "fetch_user_details", fake_fetch)

    setter = await ghl_user_service.resolve_setter(db, account, "token", "ghl-user-1")

    assert setter.name == "Sam Setter"
    assert setter.email == "sam@example.com"
    assert setter.user_id == local.id
    assert setter.ghl_user_id == "ghl-user-1"


@pytest.mark.asyncio
async def test_resolve_setter_missing_remote_user(db, account, no_crm_lookups):
    setter = await ghl_user_service.resolve_setter(db, account, "token", "ghl-user-00000042")

    assert setter.name == "User 00000042"
    assert setter.email is None
    assert setter.user_id is None
