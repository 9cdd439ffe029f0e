"""Resolve inbound CRM location ids to local accounts."""

from __future__ import annotations

import logging

import httpx
from sqlalchemy.orm import Session

from salesops.core.structured_logging import build_log_context
from salesops.db.enums import GhlAuthType
from salesops.db.models import Account
from salesops.services import ghl_api, ghl_token_service

logger = logging.getLogger(__name__)


def get_account_by_location(db: Session, location_id: str) -> Account | None:
    return (
        db.query(Account)
        .filter(Account.ghl_location_id == location_id, Account.is_active.is_(True))
        .first()
    )


def _oauth_candidates(db: Session) -> list[Account]:
    return (
        db.query(Account)
        .filter(
            Account.ghl_auth_type == GhlAuthType.OAUTH2.value,
            Account.ghl_access_token.isnot(None),
            Account.is_active.is_(True),
        )
        .order_by(Account.created_at)
        .all()
    )


async def resolve_account_for_location(db: Session, location_id: str | None) -> Account | None:
    """
    Map a CRM location id to its account, repairing stale mappings.

    Exact match on the stored location id wins. On a miss, every OAuth-connected
    account is asked which locations its token can access; the first account
    that sees the location has it persisted and is returned. Returns None when
    no account can access the location.
    """
    if not location_id:
        return None

    account = get_account_by_location(db, location_id)
    if account:
        return account

    log_context = build_log_context(location_id=location_id)
    logger.warning("No account mapped to CRM location, probing OAuth accounts", extra=log_context)

    for candidate in _oauth_candidates(db):
        candidate_context = build_log_context(location_id=location_id, account_id=str(candidate.id))
        token = await ghl_token_service.get_valid_access_token(db, candidate)
        if not token:
            continue
        try:
            locations = await ghl_api.list_locations(token)
        except (ghl_api.GhlApiError, httpx.HTTPError):
            logger.warning("Could not list CRM locations for account", extra=candidate_context, exc_info=True)
            continue

        if any(loc.get("id") == location_id for loc in locations):
            previous = candidate.ghl_location_id
            candidate.ghl_location_id = location_id
            db.commit()
            logger.info(
                "Recovered CRM location mapping (previous=%s)",
                previous,
                extra=candidate_context,
            )
            return candidate

    logger.warning("CRM location not accessible by any account", extra=log_context)
    return None
