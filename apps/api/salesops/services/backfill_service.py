"""Historical call backfill driven by the CRM message export.

The whole outbound set for the date range is fetched first, then one
[skip, skip + batch_size) slice is pushed through the call event processor.
Callers loop on has_more / next_skip so each request stays well inside the
request timeout no matter how much history there is.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy.orm import Session

from salesops.core.config import settings
from salesops.core.structured_logging import build_log_context
from salesops.db.enums import CallDirection
from salesops.db.models import Account
from salesops.services import dial_service, ghl_api, ghl_token_service

logger = logging.getLogger(__name__)

# Guard against a CRM cursor that never terminates
MAX_EXPORT_PAGES = 1000


class BackfillError(Exception):
    """Backfill precondition failed; carries the HTTP status to report."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass
class BackfillResult:
    total: int
    batch_total: int
    batch_start: int
    batch_end: int
    has_more: bool
    next_skip: int | None
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    duplicates: int = 0
    inbound: int = 0

    def to_response(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            "total": data["total"],
            "batchTotal": data["batch_total"],
            "batchStart": data["batch_start"],
            "batchEnd": data["batch_end"],
            "hasMore": data["has_more"],
            "nextSkip": data["next_skip"],
            "processed": data["processed"],
            "skipped": data["skipped"],
            "errors": data["errors"],
            "duplicates": data["duplicates"],
            "inbound": data["inbound"],
        }


def clamp_batch_size(batch_size: int | None) -> int:
    if not batch_size or batch_size < 1:
        return settings.BACKFILL_DEFAULT_BATCH_SIZE
    return min(batch_size, settings.BACKFILL_MAX_BATCH_SIZE)


def get_backfill_account(db: Session, account_id: uuid.UUID) -> Account:
    account = db.query(Account).filter(Account.id == account_id).first()
    if not account:
        raise BackfillError(404, "Account not found")
    if not account.ghl_location_id or not account.ghl_access_token:
        raise BackfillError(400, "Account is not connected to GoHighLevel")
    return account


async def fetch_outbound_calls(
    access_token: str,
    location_id: str,
    start_date: str,
    end_date: str,
) -> list[dict[str, Any]]:
    """Every outbound call message in the range, following the export cursor."""
    messages: list[dict[str, Any]] = []
    cursor = None
    for _ in range(MAX_EXPORT_PAGES):
        page = await ghl_api.export_call_messages(access_token, location_id, start_date, end_date, cursor)
        messages.extend(page.data)
        if not page.next_cursor or not page.data:
            break
        cursor = page.next_cursor
    else:
        logger.warning("Stopped following export cursor after %s pages", MAX_EXPORT_PAGES)

    return [
        m for m in messages
        if (m.get("direction") or "").lower() == CallDirection.OUTBOUND.value
    ]


async def run_call_backfill(
    db: Session,
    account: Account,
    start_date: str,
    end_date: str,
    skip: int = 0,
    batch_size: int | None = None,
) -> BackfillResult:
    """
    Replay one batch of historical calls.

    Per-call failures are counted and the batch continues. processed + skipped
    always equals the batch size actually sliced.
    """
    skip = max(skip or 0, 0)
    batch_size = clamp_batch_size(batch_size)
    log_context = build_log_context(account_id=str(account.id), location_id=account.ghl_location_id)

    access_token = await ghl_token_service.get_valid_access_token(db, account)
    if not access_token:
        raise BackfillError(400, "No valid GoHighLevel access token")

    try:
        outbound = await fetch_outbound_calls(access_token, account.ghl_location_id, start_date, end_date)
    except ghl_api.GhlApiError as exc:
        logger.exception("Call export failed", extra=log_context)
        raise BackfillError(500, str(exc)) from exc

    total = len(outbound)
    batch = outbound[skip:skip + batch_size]
    has_more = skip + batch_size < total
    result = BackfillResult(
        total=total,
        batch_total=len(batch),
        batch_start=skip,
        batch_end=skip + len(batch),
        has_more=has_more,
        next_skip=skip + batch_size if has_more else None,
    )

    for message in batch:
        event = dial_service.CallEvent.from_export_message(message)
        try:
            outcome = await dial_service.process_call_event(db, account, event, access_token=access_token)
        except Exception:
            db.rollback()
            logger.exception("Backfill failed for call message %s", event.message_id, extra=log_context)
            result.errors += 1
            result.skipped += 1
            continue

        if outcome.skipped:
            result.skipped += 1
            if outcome.reason == "inbound":
                result.inbound += 1
            continue
        result.processed += 1
        if outcome.replaced:
            result.duplicates += 1

    logger.info(
        "Backfill batch %s-%s of %s: processed=%s skipped=%s errors=%s",
        result.batch_start,
        result.batch_end,
        total,
        result.processed,
        result.skipped,
        result.errors,
        extra=log_context,
    )
    return result
