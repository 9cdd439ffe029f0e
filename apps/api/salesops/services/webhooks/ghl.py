"""GoHighLevel (LeadConnector) webhook handler."""

from __future__ import annotations

import json
import logging
import time
from datetime import timedelta
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from salesops.core.config import settings
from salesops.core.structured_logging import build_log_context
from salesops.db.enums import WebhookProcessingStatus
from salesops.db.models import Account, WebhookLog
from salesops.services import (
    appointment_ingest_service,
    contact_sync_service,
    dial_service,
    ghl_token_service,
    location_service,
)
from salesops.services.event_outcome import EventOutcome
from salesops.services.replay_cache import get_replay_cache
from salesops.services.webhook_security import get_signature_verifier
from salesops.services.webhooks.base import EventProcessor
from salesops.utils.datetime_parsing import parse_ghl_datetime, utc_now

logger = logging.getLogger(__name__)

LOGGED_HEADERS = ("content-type", "user-agent", "x-timestamp", "x-forwarded-for")


async def _read_body_safe(request: Request) -> bytes:
    max_bytes = settings.WEBHOOK_MAX_PAYLOAD_BYTES
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            if int(content_length) > max_bytes:
                raise HTTPException(413, "Payload too large")
        except ValueError:
            pass

    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        if not chunk:
            continue
        total += len(chunk)
        if total > max_bytes:
            raise HTTPException(413, "Payload too large")
        chunks.append(chunk)
    return b"".join(chunks)


async def _process_call(
    db: Session,
    account: Account,
    payload: dict[str, Any],
    access_token: str | None,
) -> EventOutcome:
    event = dial_service.CallEvent.from_webhook(payload)
    return await dial_service.process_call_event(db, account, event, access_token=access_token)


EVENT_PROCESSORS: dict[str, EventProcessor] = {
    "OutboundMessage:CALL": _process_call,
    "AppointmentCreate": appointment_ingest_service.process_appointment_created,
    "AppointmentUpdate": appointment_ingest_service.process_appointment_updated,
    "AppointmentDelete": appointment_ingest_service.process_appointment_deleted,
    "ContactCreate": contact_sync_service.process_contact_event,
    "ContactUpdate": contact_sync_service.process_contact_event,
}


def event_key(payload: dict[str, Any]) -> str:
    event_type = payload.get("type") or ""
    if event_type == "OutboundMessage":
        return f"{event_type}:{(payload.get('messageType') or '').upper()}"
    return event_type


def _location_id(payload: dict[str, Any]) -> str | None:
    appointment = payload.get("appointment") or {}
    return payload.get("locationId") or payload.get("location_id") or appointment.get("locationId")


def _warn_if_stale(request: Request, payload: dict[str, Any], log_context: dict) -> None:
    """Old deliveries are logged, not rejected: CRM retries arrive late by design."""
    sent_at = parse_ghl_datetime(request.headers.get("x-timestamp") or payload.get("timestamp"))
    if sent_at and utc_now() - sent_at > timedelta(seconds=settings.WEBHOOK_MAX_AGE_SECONDS):
        logger.warning("Webhook timestamp older than %ss", settings.WEBHOOK_MAX_AGE_SECONDS, extra=log_context)


class GhlWebhookHandler:
    def _start_log(self, request: Request, db: Session, body: bytes) -> WebhookLog | None:
        log = WebhookLog(
            source="ghl",
            method=request.method,
            url=str(request.url),
            headers={name: request.headers[name] for name in LOGGED_HEADERS if name in request.headers},
            body_length=len(body),
            raw_body=body.decode("utf-8", errors="replace"),
            processing_status=WebhookProcessingStatus.RECEIVED.value,
        )
        try:
            db.add(log)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to write webhook log, continuing")
            return None
        return log

    def _update_log(self, db: Session, log: WebhookLog | None, **fields) -> None:
        if log is None:
            return
        for name, value in fields.items():
            setattr(log, name, value)
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to update webhook log")

    def _finish_log(
        self,
        db: Session,
        log: WebhookLog | None,
        started: float,
        status: WebhookProcessingStatus,
        response_status: int,
        error: str | None = None,
    ) -> None:
        self._update_log(
            db,
            log,
            processing_status=status.value,
            response_status=response_status,
            processing_error=error,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    async def handle(self, request: Request, db: Session, **kwargs):
        """
        Receive CRM call, appointment and contact events.

        Security:
        - Payload size cap
        - Signature verification through the configured strategy
        - Replay cache keyed on webhookId / messageId

        Processing:
        - Location resolved to an account once, then a single dispatch
        - Skips (inbound, unmapped calendar, unknown location) answer 200
        - Processing errors answer 500 so the CRM retries
        """
        started = time.monotonic()
        body = await _read_body_safe(request)

        try:
            verifier = get_signature_verifier()
        except (ValueError, RuntimeError):
            logger.exception("Webhook signature verification not configured")
            raise HTTPException(500, "Webhook not configured")
        if not verifier.verify(body, request.headers):
            raise HTTPException(403, "Invalid signature")

        log = self._start_log(request, db, body)

        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            payload = None
        if not isinstance(payload, dict):
            self._finish_log(db, log, started, WebhookProcessingStatus.FAILED, 400, "Invalid JSON payload")
            return JSONResponse({"error": "Invalid JSON payload"}, status_code=400)

        key = event_key(payload)
        webhook_id = payload.get("webhookId") or payload.get("messageId")
        location_id = _location_id(payload)
        log_context = build_log_context(location_id=location_id, webhook_id=webhook_id, event_type=key)
        self._update_log(
            db,
            log,
            webhook_type=key or None,
            webhook_id=webhook_id,
            location_id=location_id,
            parsed_body=payload,
        )

        replay_cache = get_replay_cache()
        if webhook_id and replay_cache.seen(webhook_id):
            logger.info("Duplicate webhook delivery ignored", extra=log_context)
            self._finish_log(db, log, started, WebhookProcessingStatus.SKIPPED, 200, "duplicate")
            return {"message": "Webhook already processed"}

        _warn_if_stale(request, payload, log_context)

        processor = EVENT_PROCESSORS.get(key)
        if processor is None:
            logger.info("Unsupported webhook type", extra=log_context)
            self._finish_log(db, log, started, WebhookProcessingStatus.SKIPPED, 200, "unsupported")
            return {"message": "Webhook received but not supported", "type": payload.get("type")}

        try:
            account = await location_service.resolve_account_for_location(db, location_id)
            if account is None:
                outcome = EventOutcome.skip("Location not mapped to any account", reason="unknown_location")
            else:
                self._update_log(db, log, account_id=account.id)
                access_token = await ghl_token_service.get_valid_access_token(db, account)
                outcome = await processor(db, account, payload, access_token)
        except Exception as exc:
            db.rollback()
            logger.exception("CRM webhook processing failed", extra=log_context)
            self._finish_log(db, log, started, WebhookProcessingStatus.FAILED, 500, str(exc))
            return JSONResponse(
                {"error": "Failed to process webhook", "details": str(exc)},
                status_code=500,
            )

        if webhook_id:
            replay_cache.add(webhook_id)
        status = WebhookProcessingStatus.SKIPPED if outcome.skipped else WebhookProcessingStatus.PROCESSED
        self._finish_log(db, log, started, status, 200, outcome.reason)
        response: dict[str, Any] = {"message": outcome.message, "status": outcome.status}
        if outcome.record_id:
            response["id"] = str(outcome.record_id)
        return response
