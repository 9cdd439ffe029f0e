"""CRM access token management.

Returns a usable access token for an account, refreshing OAuth tokens shortly
before they expire. Refresh failures degrade to the stored token: a truly
expired token then surfaces as a 401 on the next CRM call.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import httpx
from sqlalchemy.orm import Session

from salesops.core.config import settings
from salesops.core.structured_logging import build_log_context
from salesops.db.enums import GhlAuthType
from salesops.db.models import Account
from salesops.services import ghl_api

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _needs_refresh(account: Account, now: datetime) -> bool:
    expires_at = account.ghl_token_expires_at
    if not account.ghl_access_token or expires_at is None:
        return True
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    skew = timedelta(seconds=settings.GHL_TOKEN_REFRESH_SKEW_SECONDS)
    return now >= expires_at - skew


async def get_valid_access_token(
    db: Session,
    account: Account,
    force_refresh: bool = False,
) -> str | None:
    """
    Return a token usable against the CRM API, or None if the account has none.

    api_key accounts get their static key back verbatim. OAuth accounts are
    refreshed when forced, when no token/expiry is stored, or within the skew
    window before expiry. A successful refresh persists the rotated pair and
    the new expiry in one commit.
    """
    current = account.ghl_access_token or None
    if account.ghl_auth_type != GhlAuthType.OAUTH2.value:
        return current

    now = _now_utc()
    if not force_refresh and not _needs_refresh(account, now):
        return current

    log_context = build_log_context(account_id=str(account.id))
    if not account.ghl_refresh_token:
        logger.warning("CRM token needs refresh but no refresh token is stored", extra=log_context)
        return current
    if not settings.ghl_oauth_configured:
        logger.warning("CRM OAuth client credentials not configured; using stored token", extra=log_context)
        return current

    try:
        tokens = await ghl_api.refresh_access_token(account.ghl_refresh_token)
    except httpx.HTTPError:
        logger.exception("CRM token refresh request failed", extra=log_context)
        return current
    if not tokens:
        return current

    expires_in = int(tokens.get("expires_in") or 0)
    account.ghl_access_token = tokens["access_token"]
    account.ghl_refresh_token = tokens.get("refresh_token") or account.ghl_refresh_token
    account.ghl_token_expires_at = now + timedelta(seconds=expires_in)
    account.ghl_auth_type = GhlAuthType.OAUTH2.value
    db.commit()

    logger.info("Refreshed CRM access token", extra=log_context)
    return tokens["access_token"]
