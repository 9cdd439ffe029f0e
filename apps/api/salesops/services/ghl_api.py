"""GoHighLevel (LeadConnector) REST client.

Handles:
- OAuth token refresh
- Contact, user, appointment and location lookups
- Call message export (cursor pagination)
- Contact search (searchAfter pagination)

All lookups are async httpx calls. A 401 always raises GhlAuthError so the
caller fails the current item; other client errors on single-entity lookups
mean "not available" and return None.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from salesops.core.config import settings
from salesops.services.http_service import request_with_retries
from salesops.utils.datetime_parsing import parse_ghl_datetime

logger = logging.getLogger(__name__)

# HTTP client settings
HTTPX_TIMEOUT = httpx.Timeout(10.0, connect=5.0)

CONTACT_SEARCH_PAGE_LIMIT = 100


class GhlApiError(Exception):
    """CRM API call failed in a way the caller must not paper over."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GhlAuthError(GhlApiError):
    """CRM rejected the access token (401)."""


@dataclass
class PaginatedResult:
    """Result of one page of a cursor-paginated endpoint."""

    data: list[dict[str, Any]]
    next_cursor: Any = None


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=settings.GHL_API_BASE_URL, timeout=HTTPX_TIMEOUT)


def _headers(access_token: str, version: str | None = None) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {access_token}",
        "Version": version or settings.GHL_API_VERSION,
        "Accept": "application/json",
    }


def _raise_for_auth(response: httpx.Response, what: str) -> None:
    if response.status_code == 401:
        raise GhlAuthError(f"CRM rejected access token fetching {what}", status_code=401)


def _json_or_none(response: httpx.Response, what: str) -> dict[str, Any] | None:
    """Decode a single-entity lookup: 2xx -> dict, 401/5xx -> raise, other 4xx -> None."""
    _raise_for_auth(response, what)
    if response.status_code >= 500:
        raise GhlApiError(f"CRM error fetching {what}: {response.status_code}", response.status_code)
    if response.status_code >= 400:
        logger.info("CRM returned %s fetching %s", response.status_code, what)
        return None
    try:
        data = response.json()
    except ValueError:
        logger.warning("CRM returned non-JSON body fetching %s", what)
        return None
    return data if isinstance(data, dict) else None


async def _get(
    path: str,
    access_token: str,
    *,
    params: dict[str, Any] | None = None,
    version: str | None = None,
) -> httpx.Response:
    async with _client() as client:

        async def request_fn() -> httpx.Response:
            return await client.get(path, headers=_headers(access_token, version), params=params)

        return await request_with_retries(request_fn)


# =============================================================================
# OAuth
# =============================================================================

async def refresh_access_token(refresh_token: str) -> dict[str, Any] | None:
    """
    Exchange a refresh token for a new token pair.

    Returns the token response ({access_token, refresh_token?, expires_in, ...})
    or None when the CRM rejects the refresh. Not retried: refresh tokens are
    single-use.
    """
    async with _client() as client:
        response = await client.post(
            "/oauth/token",
            data={
                "client_id": settings.GHL_CLIENT_ID,
                "client_secret": settings.GHL_CLIENT_SECRET,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            headers={"Accept": "application/json"},
        )

    if response.status_code != 200:
        logger.warning("CRM token refresh failed with status %s", response.status_code)
        return None
    data = response.json()
    if not isinstance(data, dict) or not data.get("access_token"):
        logger.warning("CRM token refresh response missing access_token")
        return None
    return data


# =============================================================================
# Entity lookups
# =============================================================================

async def get_contact(access_token: str, contact_id: str) -> dict[str, Any] | None:
    response = await _get(f"/contacts/{contact_id}", access_token)
    data = _json_or_none(response, "contact")
    if data is None:
        return None
    return data.get("contact") or data


async def get_user(access_token: str, user_id: str) -> dict[str, Any] | None:
    response = await _get(f"/users/{user_id}", access_token)
    data = _json_or_none(response, "user")
    if data is None:
        return None
    return data.get("user") or data


async def list_location_users(access_token: str, location_id: str) -> list[dict[str, Any]]:
    response = await _get(f"/locations/{location_id}/users/", access_token)
    data = _json_or_none(response, "location users")
    if not data:
        return []
    users = data.get("users") or []
    return [u for u in users if isinstance(u, dict)]


async def fetch_user_details(
    access_token: str,
    user_id: str,
    location_id: str | None = None,
) -> dict[str, Any] | None:
    """Look a user up by id, falling back to the location's user list."""
    if not user_id:
        return None
    user = await get_user(access_token, user_id)
    if user:
        return user
    if not location_id:
        return None
    for candidate in await list_location_users(access_token, location_id):
        if candidate.get("id") == user_id:
            return candidate
    return None


async def get_appointment(access_token: str, appointment_id: str) -> dict[str, Any] | None:
    response = await _get(f"/calendars/events/appointments/{appointment_id}", access_token)
    data = _json_or_none(response, "appointment")
    if data is None:
        return None
    return data.get("appointment") or data.get("event") or data


async def list_locations(access_token: str) -> list[dict[str, Any]]:
    """Locations the token can access. Raises on any non-OK status."""
    response = await _get("/locations", access_token)
    _raise_for_auth(response, "locations")
    if response.status_code != 200:
        raise GhlApiError(f"CRM error listing locations: {response.status_code}", response.status_code)
    data = response.json()
    locations = data.get("locations") if isinstance(data, dict) else data
    return [loc for loc in (locations or []) if isinstance(loc, dict)]


# =============================================================================
# Paginated endpoints
# =============================================================================

async def export_call_messages(
    access_token: str,
    location_id: str,
    start_date: str,
    end_date: str,
    cursor: str | None = None,
    *,
    limit: int | None = None,
) -> PaginatedResult:
    """One page of the call message export, newest first."""
    params: dict[str, Any] = {
        "locationId": location_id,
        "channel": "Call",
        "startDate": start_date,
        "endDate": end_date,
        "limit": limit or settings.BACKFILL_EXPORT_PAGE_LIMIT,
        "sortBy": "createdAt",
        "sortOrder": "desc",
    }
    if cursor:
        params["cursor"] = cursor

    response = await _get(
        "/conversations/messages/export",
        access_token,
        params=params,
        version=settings.GHL_EXPORT_API_VERSION,
    )
    _raise_for_auth(response, "message export")
    if response.status_code != 200:
        raise GhlApiError(f"Failed to fetch messages: {response.status_code}", response.status_code)

    data = response.json() or {}
    messages = [m for m in (data.get("messages") or []) if isinstance(m, dict)]
    return PaginatedResult(data=messages, next_cursor=data.get("nextCursor") or None)


def _contact_search_cursor(contact: dict[str, Any]) -> list[Any] | None:
    if contact.get("searchAfter"):
        return contact["searchAfter"]
    added: datetime | None = parse_ghl_datetime(contact.get("dateAdded"))
    if added is None or not contact.get("id"):
        return None
    return [int(added.timestamp() * 1000), contact["id"]]


async def search_contacts(
    access_token: str,
    location_id: str,
    search_after: list[Any] | None = None,
    *,
    limit: int = CONTACT_SEARCH_PAGE_LIMIT,
) -> PaginatedResult:
    """One page of contacts for a location; next_cursor is None on the last page."""
    body: dict[str, Any] = {"locationId": location_id, "pageLimit": limit}
    if search_after:
        body["searchAfter"] = search_after

    async with _client() as client:

        async def request_fn() -> httpx.Response:
            return await client.post("/contacts/search", headers=_headers(access_token), json=body)

        response = await request_with_retries(request_fn)

    _raise_for_auth(response, "contact search")
    if response.status_code != 200:
        raise GhlApiError(f"Contact search failed: {response.status_code}", response.status_code)

    contacts = [c for c in (response.json() or {}).get("contacts") or [] if isinstance(c, dict)]
    next_cursor = None
    if len(contacts) >= limit:
        next_cursor = _contact_search_cursor(contacts[-1])
    return PaginatedResult(data=contacts, next_cursor=next_cursor)
