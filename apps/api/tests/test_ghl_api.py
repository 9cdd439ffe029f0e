import httpx
import pytest

from salesops.core.config import settings
from salesops.services import ghl_api


def _mock_client(monkeypatch, handler):
    requests = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    def fake_client():
        return httpx.AsyncClient(
            base_url=settings.GHL_API_BASE_URL,
            transport=httpx.MockTransport(recording),
        )

    monkeypatch.setattr(ghl_api, "_client", fake_client)
    return requests


@pytest.mark.asyncio
async def test_get_contact_unwraps_envelope(monkeypatch):
    requests = _mock_client(
        monkeypatch,
        lambda request: httpx.Response(200, json={"contact": {"id": "c1", "email": "a@example.com"}}),
    )

    contact = await ghl_api.get_contact("token", "c1")

    assert contact == {"id": "c1", "email": "a@example.com"}
    assert requests[0].url.path == "/contacts/c1"
    assert requests[0].headers["Authorization"] == "Bearer token"
    assert requests[0].headers["Version"] == settings.GHL_API_VERSION


@pytest.mark.asyncio
async def test_missing_entity_is_none(monkeypatch):
    _mock_client(monkeypatch, lambda request: httpx.Response(404, json={"message": "not found"}))

    assert await ghl_api.get_contact("token", "missing") is None


@pytest.mark.asyncio
async def test_unauthorized_raises_auth_error(monkeypatch):
    _mock_client(monkeypatch, lambda request: httpx.Response(401, json={"message": "invalid token"}))

    with pytest.raises(ghl_api.GhlAuthError):
        await ghl_api.get_contact("token", "c1")


@pytest.mark.asyncio
async def test_user_lookup_falls_back_to_location_users(monkeypatch):
    def handler(request):
        if request.url.path.startswith("/users/"):
            return httpx.Response(404)
        return httpx.Response(200, json={"users": [{"id": "u1", "name": "Found"}, {"id": "u2"}]})

    requests = _mock_client(monkeypatch, handler)

    user = await ghl_api.fetch_user_details("token", "u1", "loc-1")

    assert user["name"] == "Found"
    assert [r.url.path for r in requests] == ["/users/u1", "/locations/loc-1/users/"]


@pytest.mark.asyncio
async def test_export_call_messages_params_and_cursor(monkeypatch):
    requests = _mock_client(
        monkeypatch,
        lambda request: httpx.Response(200, json={"messages": [{"id": "m1"}], "nextCursor": "abc"}),
    )

    page = await ghl_api.export_call_messages("token", "loc-1", "2024-01-01", "2024-01-31", "prev")

    assert page.data == [{"id": "m1"}]
    assert page.next_cursor == "abc"
    params = requests[0].url.params
    assert params["channel"] == "Call"
    assert params["cursor"] == "prev"
    assert params["sortOrder"] == "desc"
    assert requests[0].headers["Version"] == settings.GHL_EXPORT_API_VERSION


@pytest.mark.asyncio
async def test_export_failure_raises(monkeypatch):
    _mock_client(monkeypatch, lambda request: httpx.Response(422, json={"message": "bad range"}))

    with pytest.raises(ghl_api.GhlApiError, match="Failed to fetch messages: 422"):
        await ghl_api.export_call_messages("token", "loc-1", "2024-01-01", "2024-01-31")


@pytest.mark.asyncio
async def test_search_contacts_cursor_only_on_full_page(monkeypatch):
    contacts = [{"id": f"c{i}", "searchAfter": [i, f"c{i}"]} for i in range(2)]
    _mock_client(monkeypatch, lambda request: httpx.Response(200, json={"contacts": contacts}))

    full = await ghl_api.search_contacts("token", "loc-1", limit=2)
    partial = await ghl_api.search_contacts("token", "loc-1", limit=3)

    assert full.next_cursor == [1, "c1"]
    assert partial.next_cursor is None


@pytest.mark.asyncio
async def test_refresh_access_token(monkeypatch):
    requests = _mock_client(
        monkeypatch,
        lambda request: httpx.Response(200, json={"access_token": "new", "expires_in": 86399}),
    )

    tokens = await ghl_api.refresh_access_token("refresh-1")

    assert tokens["access_token"] == "new"
    assert b"grant_type=refresh_token" in requests[0].content
    assert b"refresh_token=refresh-1" in requests[0].content


@pytest.mark.asyncio
async def test_refresh_rejected_returns_none(monkeypatch):
    _mock_client(monkeypatch, lambda request: httpx.Response(400, json={"error": "invalid_grant"}))

    assert await ghl_api.refresh_access_token("refresh-1") is None


@pytest.mark.asyncio
async def test_rate_limited_request_is_retried(monkeypatch):
    responses = [httpx.Response(429, headers={"Retry-After": "0"}), httpx.Response(200, json={"id": "c1"})]
    _mock_client(monkeypatch, lambda request: responses.pop(0))

    assert await ghl_api.get_contact("token", "c1") == {"id": "c1"}
