"""Contact sync: map CRM contacts into the local schema and upsert them.

Contacts arrive three ways: ContactCreate/ContactUpdate webhooks, lazily when
a dial or appointment references a contact we have not seen yet, and the
admin bulk sync. All three go through upsert_contact, which overwrites every
mapped column (last writer wins, no field-level merge).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from salesops.core.structured_logging import build_log_context
from salesops.db.models import Account, Contact
from salesops.services import ghl_api
from salesops.services.event_outcome import EventOutcome
from salesops.utils.datetime_parsing import parse_ghl_datetime, resolve_timezone, utc_now
from salesops.utils.normalization import clean_str, join_name

logger = logging.getLogger(__name__)

# CRM attributionSource key -> local column
ATTRIBUTION_SOURCE_FIELDS: dict[str, str] = {
    "utmSource": "utm_source",
    "utmMedium": "utm_medium",
    "campaign": "utm_campaign",
    "utmCampaign": "utm_campaign",
    "utmContent": "utm_content",
    "utmTerm": "utm_term",
    "utmId": "utm_id",
    "fbclid": "fbclid",
    "gclid": "gclid",
    "fbp": "fbp",
    "fbc": "fbc",
    "url": "landing_url",
    "referrer": "referrer_url",
    "adId": "meta_ad_id",
    "adSetId": "meta_adset_id",
    "campaignId": "meta_campaign_id",
}

# Columns the upsert never overwrites
_IMMUTABLE_COLUMNS = {"id", "account_id", "ghl_contact_id", "created_at"}


@dataclass(frozen=True)
class LocalBuckets:
    date: date
    week: date
    month: date


def compute_local_buckets(created_at: datetime, tz_name: str | None) -> LocalBuckets:
    """Local calendar date, Monday week start and month start of created_at in tz."""
    local = created_at.astimezone(resolve_timezone(tz_name))
    local_date = local.date()
    return LocalBuckets(
        date=local_date,
        week=local_date - timedelta(days=local_date.weekday()),
        month=local_date.replace(day=1),
    )


def _attribution_columns(remote: dict[str, Any]) -> dict[str, str | None]:
    source = remote.get("attributionSource") or remote.get("lastAttributionSource") or {}
    columns: dict[str, str | None] = {column: None for column in set(ATTRIBUTION_SOURCE_FIELDS.values())}
    if not isinstance(source, dict):
        return columns
    for key, column in ATTRIBUTION_SOURCE_FIELDS.items():
        value = clean_str(source.get(key), 2048 if column.endswith("_url") else 500)
        if value and not columns[column]:
            columns[column] = value
    return columns


def _normalize_tags(raw: Any) -> list[str]:
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        return []
    return [tag for tag in (clean_str(item) for item in raw) if tag]


def map_remote_contact(
    remote: dict[str, Any],
    account_id: uuid.UUID,
    account_timezone: str | None,
) -> dict[str, Any]:
    """Normalize a CRM contact payload into a contacts row."""
    timezone_name = clean_str(remote.get("timezone")) or account_timezone
    created_at = parse_ghl_datetime(remote.get("dateAdded") or remote.get("createdAt")) or utc_now()
    buckets = compute_local_buckets(created_at, timezone_name)

    first_name = clean_str(remote.get("firstName"))
    last_name = clean_str(remote.get("lastName"))
    name = clean_str(remote.get("contactName") or remote.get("name")) or join_name(first_name, last_name)
    custom_fields = remote.get("customFields") or remote.get("customField") or []
    attribution_source = remote.get("attributionSource")
    last_attribution_source = remote.get("lastAttributionSource")

    row: dict[str, Any] = {
        "account_id": account_id,
        "ghl_contact_id": clean_str(remote.get("id") or remote.get("contactId")),
        "first_name": first_name,
        "last_name": last_name,
        "name": name,
        "email": clean_str(remote.get("email")),
        "phone": clean_str(remote.get("phone")),
        "source": clean_str(remote.get("source")),
        "timezone": timezone_name,
        "assigned_to": clean_str(remote.get("assignedTo")),
        "tags": _normalize_tags(remote.get("tags")),
        "custom_fields": custom_fields if isinstance(custom_fields, list) else [],
        "address": clean_str(remote.get("address1")),
        "city": clean_str(remote.get("city")),
        "state": clean_str(remote.get("state")),
        "country": clean_str(remote.get("country")),
        "postal_code": clean_str(remote.get("postalCode")),
        "company_name": clean_str(remote.get("companyName")),
        "website": clean_str(remote.get("website")),
        "do_not_contact": bool(remote.get("dnd")),
        "ghl_created_at": created_at,
        "ghl_updated_at": parse_ghl_datetime(remote.get("dateUpdated")),
        "ghl_local_date": buckets.date,
        "ghl_local_week": buckets.week,
        "ghl_local_month": buckets.month,
        "attribution_source": attribution_source if isinstance(attribution_source, dict) else None,
        "last_attribution_source": (
            last_attribution_source if isinstance(last_attribution_source, dict) else None
        ),
    }
    row.update(_attribution_columns(remote))
    return row


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Contact upsert not supported on dialect {dialect}")


def _expire_cached_contact(db: Session, contact_id: uuid.UUID) -> None:
    for obj in list(db.identity_map.values()):
        if isinstance(obj, Contact) and obj.id == contact_id:
            db.expire(obj)


def upsert_contact(
    db: Session,
    remote: dict[str, Any],
    account_id: uuid.UUID,
    account_timezone: str | None,
) -> uuid.UUID:
    """
    Insert or overwrite the contact keyed on (account_id, ghl_contact_id).

    Does not commit; the caller owns the transaction.
    """
    row = map_remote_contact(remote, account_id, account_timezone)
    if not row["ghl_contact_id"]:
        raise ValueError("CRM contact payload has no id")

    insert = _insert_for(db)
    stmt = insert(Contact).values(id=uuid.uuid4(), **row)
    update_columns = {
        key: stmt.excluded[key] for key in row if key not in _IMMUTABLE_COLUMNS
    }
    update_columns["updated_at"] = func.now()
    stmt = stmt.on_conflict_do_update(
        index_elements=[Contact.account_id, Contact.ghl_contact_id],
        set_=update_columns,
    ).returning(Contact.id)

    contact_id = db.execute(stmt).scalar_one()
    _expire_cached_contact(db, contact_id)
    return contact_id


def get_contact_by_ghl_id(db: Session, account_id: uuid.UUID, ghl_contact_id: str) -> Contact | None:
    return (
        db.query(Contact)
        .filter(Contact.account_id == account_id, Contact.ghl_contact_id == ghl_contact_id)
        .first()
    )


async def ensure_contact_exists(
    db: Session,
    account: Account,
    ghl_contact_id: str | None,
    access_token: str | None,
) -> Contact | None:
    """
    Return the local contact, fetching and upserting it from the CRM on a miss.

    Returns None when there is no id, no token, or the CRM has no such contact.
    """
    if not ghl_contact_id:
        return None

    contact = get_contact_by_ghl_id(db, account.id, ghl_contact_id)
    if contact:
        return contact
    if not access_token:
        return None

    remote = await ghl_api.get_contact(access_token, ghl_contact_id)
    if not remote:
        logger.info(
            "CRM contact not found, continuing without contact",
            extra=build_log_context(account_id=str(account.id)),
        )
        return None

    contact_id = upsert_contact(db, remote, account.id, account.timezone)
    return db.get(Contact, contact_id)


async def sync_all_contacts(db: Session, account: Account, access_token: str) -> int:
    """Page through every contact of the account's location and upsert each one."""
    if not account.ghl_location_id:
        raise ValueError("Account has no CRM location")

    synced = 0
    cursor = None
    while True:
        page = await ghl_api.search_contacts(access_token, account.ghl_location_id, cursor)
        for remote in page.data:
            if not remote.get("id"):
                continue
            upsert_contact(db, remote, account.id, account.timezone)
            synced += 1
        db.commit()

        if not page.next_cursor or page.next_cursor == cursor:
            break
        cursor = page.next_cursor

    logger.info(
        "Synced %s contacts from CRM",
        synced,
        extra=build_log_context(account_id=str(account.id)),
    )
    return synced


async def process_contact_event(
    db: Session,
    account: Account,
    payload: dict[str, Any],
    access_token: str | None,
) -> EventOutcome:
    """ContactCreate / ContactUpdate webhook: refetch the full contact and upsert it."""
    ghl_contact_id = payload.get("id") or payload.get("contactId")
    if not ghl_contact_id:
        return EventOutcome.skip("Contact webhook missing contact id", reason="missing_contact_id")

    remote = None
    if access_token:
        remote = await ghl_api.get_contact(access_token, ghl_contact_id)
    if not remote:
        remote = {**payload, "id": ghl_contact_id}

    contact_id = upsert_contact(db, remote, account.id, account.timezone)
    db.commit()
    return EventOutcome.processed("Contact synced", record_id=contact_id)
