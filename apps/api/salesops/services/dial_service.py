"""Call event processing: CRM outbound calls -> dials.

Per event: direction filter -> setter -> contact -> dial upsert -> appointment
link. The dial upsert is delete-then-insert on (account_id, ghl_message_id)
because the uniqueness only applies when the CRM sends a message id.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from salesops.core.config import settings
from salesops.core.structured_logging import build_log_context
from salesops.db.enums import CallDirection
from salesops.db.models import Account, Appointment, Dial
from salesops.services import contact_sync_service, ghl_token_service, ghl_user_service
from salesops.services.event_outcome import EventOutcome
from salesops.utils.datetime_parsing import ensure_utc, parse_ghl_datetime, utc_now

logger = logging.getLogger(__name__)


def _coerce_duration(raw: Any) -> int:
    """Seconds as int; the export API sends numbers or numeric strings."""
    if raw is None or isinstance(raw, bool):
        return 0
    try:
        value = int(float(raw))
    except (TypeError, ValueError):
        return 0
    return max(value, 0)


def _first_attachment_url(attachments: Any) -> str | None:
    if not attachments or not isinstance(attachments, list):
        return None
    first = attachments[0]
    if isinstance(first, dict):
        first = first.get("url")
    return str(first) if first else None


@dataclass
class CallEvent:
    """A call normalised from either a webhook payload or an export message."""

    message_id: str | None
    location_id: str | None
    contact_id: str | None
    user_id: str | None
    direction: str | None
    duration: int
    call_status: str | None
    date_called: datetime | None
    recording_url: str | None

    @classmethod
    def from_webhook(cls, payload: dict[str, Any]) -> "CallEvent":
        direction = payload.get("direction")
        if not direction and payload.get("type") == "OutboundMessage":
            direction = CallDirection.OUTBOUND.value
        return cls(
            message_id=payload.get("messageId"),
            location_id=payload.get("locationId"),
            contact_id=payload.get("contactId"),
            user_id=payload.get("userId"),
            direction=direction,
            duration=_coerce_duration(payload.get("callDuration")),
            call_status=payload.get("callStatus") or payload.get("status"),
            date_called=parse_ghl_datetime(payload.get("dateAdded") or payload.get("timestamp")),
            recording_url=_first_attachment_url(payload.get("attachments")),
        )

    @classmethod
    def from_export_message(cls, message: dict[str, Any]) -> "CallEvent":
        call = (message.get("meta") or {}).get("call") or {}
        return cls(
            message_id=message.get("id"),
            location_id=message.get("locationId"),
            contact_id=message.get("contactId"),
            user_id=message.get("userId"),
            direction=message.get("direction"),
            duration=_coerce_duration(call.get("duration")),
            call_status=call.get("status") or message.get("status"),
            date_called=parse_ghl_datetime(message.get("dateAdded")),
            recording_url=_first_attachment_url(message.get("attachments")),
        )

    @property
    def is_outbound(self) -> bool:
        return (self.direction or "").lower() == CallDirection.OUTBOUND.value


def is_answered(duration: int) -> bool:
    """Duration is the only signal; CRM call status is ignored."""
    return duration > settings.DIAL_ANSWERED_SECONDS


def is_meaningful_conversation(duration: int) -> bool:
    return duration > settings.DIAL_MEANINGFUL_SECONDS


def find_appointment_for_dial(
    db: Session,
    account_id: uuid.UUID,
    contact_id: uuid.UUID,
    date_called: datetime,
) -> Appointment | None:
    """Earliest appointment for the contact booked within the window around the call."""
    window = timedelta(minutes=settings.DIAL_APPOINTMENT_WINDOW_MINUTES)
    return (
        db.query(Appointment)
        .filter(
            Appointment.account_id == account_id,
            Appointment.contact_id == contact_id,
            Appointment.date_booked >= date_called - window,
            Appointment.date_booked <= date_called + window,
        )
        .order_by(Appointment.date_booked.asc())
        .first()
    )


def _replace_existing(db: Session, account_id: uuid.UUID, message_id: str | None) -> bool:
    if not message_id:
        return False
    deleted = (
        db.query(Dial)
        .filter(Dial.account_id == account_id, Dial.ghl_message_id == message_id)
        .delete(synchronize_session="fetch")
    )
    return deleted > 0


async def process_call_event(
    db: Session,
    account: Account,
    event: CallEvent,
    access_token: str | None = None,
) -> EventOutcome:
    """
    Store one outbound call as a dial and link it to a booking.

    Inbound calls are skipped. Reprocessing the same message id replaces the
    earlier dial. Commits once on success.
    """
    log_context = build_log_context(account_id=str(account.id), webhook_id=event.message_id)
    if not event.is_outbound:
        logger.info("Skipping non-outbound call", extra=log_context)
        return EventOutcome.skip("Inbound call skipped", reason="inbound")

    token = access_token or await ghl_token_service.get_valid_access_token(db, account)
    setter = await ghl_user_service.resolve_setter(db, account, token, event.user_id)
    contact = await contact_sync_service.ensure_contact_exists(db, account, event.contact_id, token)

    replaced = _replace_existing(db, account.id, event.message_id)
    date_called = event.date_called or utc_now()
    dial = Dial(
        account_id=account.id,
        contact_id=contact.id if contact else None,
        ghl_message_id=event.message_id,
        setter=setter.name,
        setter_user_id=setter.user_id,
        setter_ghl_user_id=event.user_id,
        direction=CallDirection.OUTBOUND.value,
        call_status=event.call_status,
        duration=event.duration,
        call_recording_link=event.recording_url,
        answered=is_answered(event.duration),
        meaningful_conversation=is_meaningful_conversation(event.duration),
        booked=False,
        date_called=date_called,
        contact_name=contact.name if contact else None,
        contact_email=contact.email if contact else None,
        contact_phone=contact.phone if contact else None,
    )
    db.add(dial)
    db.flush()

    if contact:
        appointment = find_appointment_for_dial(db, account.id, contact.id, date_called)
        if appointment:
            dial.booked = True
            dial.booked_appointment_id = appointment.id

    dial_id = dial.id
    db.commit()

    if replaced:
        logger.info("Replaced existing dial for redelivered call", extra=log_context)
    return EventOutcome.processed("Call event processed", record_id=dial_id, replaced=replaced)


def link_dial_to_new_appointment(db: Session, appointment: Appointment) -> Dial | None:
    """
    Mark the dial that produced a new booking.

    Most recent unbooked dial for the same contact, called between the
    lookback and lookahead window around date_booked. Does not commit.
    """
    if not appointment.contact_id:
        return None
    booked_at = ensure_utc(appointment.date_booked)
    dial = (
        db.query(Dial)
        .filter(
            Dial.account_id == appointment.account_id,
            Dial.contact_id == appointment.contact_id,
            Dial.booked.is_(False),
            Dial.date_called >= booked_at - timedelta(hours=settings.APPOINTMENT_DIAL_LOOKBACK_HOURS),
            Dial.date_called <= booked_at + timedelta(hours=settings.APPOINTMENT_DIAL_LOOKAHEAD_HOURS),
        )
        .order_by(Dial.date_called.desc())
        .first()
    )
    if dial:
        dial.booked = True
        dial.booked_appointment_id = appointment.id
    return dial


def unlink_dials_for_appointment(db: Session, appointment_id: uuid.UUID) -> int:
    """Clear booking links pointing at a deleted appointment. Does not commit."""
    return (
        db.query(Dial)
        .filter(Dial.booked_appointment_id == appointment_id)
        .update(
            {Dial.booked: False, Dial.booked_appointment_id: None},
            synchronize_session="fetch",
        )
    )
