"""Appointment event processing: CRM calendar bookings -> appointments / discoveries.

Only calendars with an enabled calendar mapping are ingested; everything else
is skipped on purpose. Outcome columns belong to the dashboard and are never
touched here.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any

from sqlalchemy.orm import Session

from salesops.core.config import settings
from salesops.core.structured_logging import build_log_context
from salesops.db.enums import TargetTable
from salesops.db.models import (
    ATTRIBUTION_COLUMNS, Account, Appointment, CalendarMapping, Contact, Discovery,
)
from salesops.services import contact_sync_service, dial_service, ghl_api, ghl_user_service
from salesops.services.event_outcome import EventOutcome
from salesops.utils.datetime_parsing import ensure_utc, parse_ghl_datetime, utc_now
from salesops.utils.normalization import clean_str

logger = logging.getLogger(__name__)

BookingModel = type[Appointment] | type[Discovery]


def get_calendar_mapping(db: Session, account_id: uuid.UUID, ghl_calendar_id: str) -> CalendarMapping | None:
    return (
        db.query(CalendarMapping)
        .filter(
            CalendarMapping.account_id == account_id,
            CalendarMapping.ghl_calendar_id == ghl_calendar_id,
        )
        .first()
    )


def _model_for(mapping: CalendarMapping) -> BookingModel:
    if mapping.target_table == TargetTable.DISCOVERIES.value:
        return Discovery
    return Appointment


def find_booking(db: Session, account_id: uuid.UUID, ghl_appointment_id: str) -> Appointment | Discovery | None:
    """Look the CRM appointment up in both tables (the mapping may have changed)."""
    for model in (Appointment, Discovery):
        row = (
            db.query(model)
            .filter(model.account_id == account_id, model.ghl_appointment_id == ghl_appointment_id)
            .first()
        )
        if row:
            return row
    return None


def _copy_contact_fields(row: Appointment | Discovery, contact: Contact | None) -> None:
    if not contact:
        return
    row.contact_id = contact.id
    row.contact_name = contact.name
    row.contact_email = contact.email
    row.contact_phone = contact.phone
    for column in ATTRIBUTION_COLUMNS:
        value = getattr(contact, column)
        if value is not None:
            setattr(row, column, value)


def link_discovery_for_appointment(db: Session, appointment: Appointment) -> Discovery | None:
    """
    Pair a new appointment with the discovery call it was booked on.

    Latest unlinked discovery for the same contact scheduled within the window
    before the appointment was booked. The appointment's sales rep ids are
    copied onto the discovery. Does not commit.
    """
    if not appointment.contact_id:
        return None
    booked_at = ensure_utc(appointment.date_booked)
    window = timedelta(minutes=settings.DISCOVERY_LINK_WINDOW_MINUTES)
    discovery = (
        db.query(Discovery)
        .filter(
            Discovery.account_id == appointment.account_id,
            Discovery.contact_id == appointment.contact_id,
            Discovery.linked_appointment_id.is_(None),
            Discovery.date_booked_for >= booked_at - window,
            Discovery.date_booked_for <= booked_at,
        )
        .order_by(Discovery.date_booked_for.desc())
        .first()
    )
    if discovery:
        appointment.linked_discovery_id = discovery.id
        discovery.linked_appointment_id = appointment.id
        if appointment.sales_rep_user_id or appointment.sales_rep_ghl_user_id:
            discovery.sales_rep_user_id = appointment.sales_rep_user_id
            discovery.sales_rep_ghl_user_id = appointment.sales_rep_ghl_user_id
    return discovery


def _apply_schedule(row: Appointment | Discovery, appt: dict[str, Any]) -> None:
    start = parse_ghl_datetime(appt.get("startTime"))
    if start:
        row.date_booked_for = start
    title = clean_str(appt.get("title"), 500)
    if title:
        row.title = title
    status = clean_str(appt.get("appointmentStatus") or appt.get("status"), 50)
    if status:
        row.appointment_status = status


async def process_appointment_created(
    db: Session,
    account: Account,
    payload: dict[str, Any],
    access_token: str | None,
) -> EventOutcome:
    """
    AppointmentCreate: write an appointment or discovery for a mapped calendar.

    Redelivery of a known CRM appointment refreshes scheduling and contact
    fields and leaves outcome fields alone.
    """
    appt = payload.get("appointment") or {}
    ghl_appointment_id = appt.get("id")
    calendar_id = appt.get("calendarId")
    log_context = build_log_context(account_id=str(account.id), event_type=payload.get("type"))
    if not ghl_appointment_id or not calendar_id:
        logger.warning("Appointment webhook missing id or calendarId", extra=log_context)
        return EventOutcome.skip("Appointment webhook missing required fields", reason="missing_fields")

    mapping = get_calendar_mapping(db, account.id, calendar_id)
    if not mapping or not mapping.is_enabled:
        logger.info("Calendar not mapped, skipping appointment", extra=log_context)
        return EventOutcome.skip("Calendar not mapped", reason="calendar_not_mapped")
    model = _model_for(mapping)

    contact = await contact_sync_service.ensure_contact_exists(db, account, appt.get("contactId"), access_token)

    existing = find_booking(db, account.id, ghl_appointment_id)
    if existing:
        _apply_schedule(existing, appt)
        existing.ghl_calendar_id = calendar_id
        _copy_contact_fields(existing, contact)
        existing_id = existing.id
        db.commit()
        return EventOutcome.processed("Appointment already exists, updated", record_id=existing_id, replaced=True)

    full = None
    if access_token:
        full = await ghl_api.get_appointment(access_token, ghl_appointment_id)
    full = full or {}
    created_by = full.get("createdBy") or {}
    assigned_user_id = appt.get("assignedUserId") or full.get("assignedUserId")

    row = model(
        account_id=account.id,
        ghl_appointment_id=ghl_appointment_id,
        ghl_calendar_id=calendar_id,
        date_booked=(
            parse_ghl_datetime(full.get("dateAdded"))
            or parse_ghl_datetime(appt.get("dateAdded"))
            or parse_ghl_datetime(payload.get("timestamp") or payload.get("dateAdded"))
            or utc_now()
        ),
        ghl_source=clean_str(created_by.get("source") or appt.get("source"), 100) or "unknown",
        booking_metadata={
            "end_time": appt.get("endTime"),
            "assigned_user_id": assigned_user_id,
            "created_by_user_id": created_by.get("userId"),
            "calendar_name": mapping.calendar_name,
        },
    )
    _apply_schedule(row, appt)
    _copy_contact_fields(row, contact)

    if model is Discovery:
        # Discovery calls are owned by whoever the booking is assigned to
        setter = await ghl_user_service.resolve_setter(db, account, access_token, assigned_user_id)
    else:
        setter = await ghl_user_service.resolve_setter(db, account, access_token, created_by.get("userId"))
        if assigned_user_id:
            rep = await ghl_user_service.resolve_setter(db, account, access_token, assigned_user_id)
            row.sales_rep = rep.name
            row.sales_rep_user_id = rep.user_id
            row.sales_rep_ghl_user_id = assigned_user_id
    row.setter = setter.name
    row.setter_user_id = setter.user_id
    row.setter_ghl_user_id = setter.ghl_user_id

    db.add(row)
    db.flush()

    if model is Appointment:
        dial_service.link_dial_to_new_appointment(db, row)
        link_discovery_for_appointment(db, row)

    row_id = row.id
    db.commit()
    logger.info("Stored %s from CRM booking", model.__tablename__, extra=log_context)
    return EventOutcome.processed(f"Stored in {model.__tablename__}", record_id=row_id)


async def process_appointment_updated(
    db: Session,
    account: Account,
    payload: dict[str, Any],
    access_token: str | None,
) -> EventOutcome:
    """AppointmentUpdate: reschedule the stored row, or create it if we never saw the create."""
    appt = payload.get("appointment") or {}
    ghl_appointment_id = appt.get("id")
    if not ghl_appointment_id:
        return EventOutcome.skip("Appointment webhook missing required fields", reason="missing_fields")

    existing = find_booking(db, account.id, ghl_appointment_id)
    if not existing:
        return await process_appointment_created(db, account, payload, access_token)

    _apply_schedule(existing, appt)
    existing_id = existing.id
    db.commit()
    return EventOutcome.processed("Appointment updated", record_id=existing_id)


async def process_appointment_deleted(
    db: Session,
    account: Account,
    payload: dict[str, Any],
    access_token: str | None,
) -> EventOutcome:
    """AppointmentDelete: remove the row and clear every link that pointed at it."""
    appt = payload.get("appointment") or {}
    ghl_appointment_id = appt.get("id")
    if not ghl_appointment_id:
        return EventOutcome.skip("Appointment webhook missing required fields", reason="missing_fields")

    existing = find_booking(db, account.id, ghl_appointment_id)
    if not existing:
        return EventOutcome.skip("Appointment not found", reason="not_found")

    existing_id = existing.id
    if isinstance(existing, Appointment):
        dial_service.unlink_dials_for_appointment(db, existing_id)
        db.query(Discovery).filter(Discovery.linked_appointment_id == existing_id).update(
            {Discovery.linked_appointment_id: None}, synchronize_session="fetch"
        )
    else:
        db.query(Appointment).filter(Appointment.linked_discovery_id == existing_id).update(
            {Appointment.linked_discovery_id: None}, synchronize_session="fetch"
        )
    db.delete(existing)
    db.commit()
    return EventOutcome.processed("Appointment deleted", record_id=existing_id)
