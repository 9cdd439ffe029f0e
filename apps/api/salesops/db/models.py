"""SQLAlchemy ORM models for accounts, CRM records, and ingestion bookkeeping."""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON, Boolean, Date, ForeignKey, Index, Integer, Numeric, String, Text,
    UniqueConstraint, Uuid, func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from salesops.db.base import Base
from salesops.db.enums import (
    DEFAULT_ACCOUNT_TIMEZONE, DEFAULT_SETTER_NAME,
    GhlAuthType, Role, TargetTable, WebhookProcessingStatus,
)
from salesops.db.types import EncryptedString

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JsonType = JSON().with_variant(JSONB(), "postgresql")


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class AttributionMixin:
    """
    Marketing attribution columns shared by contacts, appointments and discoveries.

    Values come from the browser beacon and are untrusted; they are sanitised
    and bounded before they land here.
    """
    utm_source: Mapped[str | None] = mapped_column(String(500))
    utm_medium: Mapped[str | None] = mapped_column(String(500))
    utm_campaign: Mapped[str | None] = mapped_column(String(500))
    utm_content: Mapped[str | None] = mapped_column(String(500))
    utm_term: Mapped[str | None] = mapped_column(String(500))
    utm_id: Mapped[str | None] = mapped_column(String(500))
    fbclid: Mapped[str | None] = mapped_column(String(500))
    gclid: Mapped[str | None] = mapped_column(String(500))
    fbp: Mapped[str | None] = mapped_column(String(500))
    fbc: Mapped[str | None] = mapped_column(String(500))
    landing_url: Mapped[str | None] = mapped_column(Text)
    referrer_url: Mapped[str | None] = mapped_column(Text)
    meta_ad_id: Mapped[str | None] = mapped_column(String(100))
    meta_adset_id: Mapped[str | None] = mapped_column(String(100))
    meta_campaign_id: Mapped[str | None] = mapped_column(String(100))
    attribution_quality: Mapped[str | None] = mapped_column(String(20))
    attribution_method: Mapped[str | None] = mapped_column(String(30))
    fingerprint_id: Mapped[str | None] = mapped_column(String(100))
    attribution_session_id: Mapped[str | None] = mapped_column(String(255))


ATTRIBUTION_COLUMNS: tuple[str, ...] = (
    "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term", "utm_id",
    "fbclid", "gclid", "fbp", "fbc", "landing_url", "referrer_url",
    "meta_ad_id", "meta_adset_id", "meta_campaign_id",
    "attribution_quality", "attribution_method", "fingerprint_id",
    "attribution_session_id",
)


# =============================================================================
# Tenant Models
# =============================================================================

class Account(TimestampMixin, Base):
    """
    A tenant with at most one CRM connection.

    ghl_access_token holds the OAuth access token, or the static key when
    ghl_auth_type is api_key. ghl_location_id must be a location the stored
    token can access; the location resolver repairs it when it drifts.
    """
    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    timezone: Mapped[str] = mapped_column(
        String(50), default=DEFAULT_ACCOUNT_TIMEZONE, nullable=False
    )
    ghl_auth_type: Mapped[str] = mapped_column(
        String(20), default=GhlAuthType.API_KEY.value, nullable=False
    )
    ghl_access_token: Mapped[str | None] = mapped_column(EncryptedString)
    ghl_refresh_token: Mapped[str | None] = mapped_column(EncryptedString)
    ghl_token_expires_at: Mapped[datetime | None]
    ghl_location_id: Mapped[str | None] = mapped_column(String(100), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class User(TimestampMixin, Base):
    """A team member; setters are matched to dials by email."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), index=True
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(30), default=Role.VIEWER.value, nullable=False)
    ghl_user_id: Mapped[str | None] = mapped_column(String(100))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class CalendarMapping(TimestampMixin, Base):
    """Routes a CRM calendar's bookings into appointments or discoveries."""
    __tablename__ = "calendar_mappings"
    __table_args__ = (
        UniqueConstraint("account_id", "ghl_calendar_id", name="uq_calendar_mapping_account_calendar"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    ghl_calendar_id: Mapped[str] = mapped_column(String(100), nullable=False)
    calendar_name: Mapped[str | None] = mapped_column(String(255))
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    target_table: Mapped[str] = mapped_column(
        String(20), default=TargetTable.APPOINTMENTS.value, nullable=False
    )


# =============================================================================
# CRM Records
# =============================================================================

class Contact(AttributionMixin, TimestampMixin, Base):
    """
    A lead mirrored from the CRM.

    ghl_local_* buckets are computed from ghl_created_at in the timezone in
    effect at upsert time and are not recomputed if that timezone changes.
    """
    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("account_id", "ghl_contact_id", name="uq_contacts_account_ghl_contact"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ghl_contact_id: Mapped[str | None] = mapped_column(String(100))
    first_name: Mapped[str | None] = mapped_column(String(255))
    last_name: Mapped[str | None] = mapped_column(String(255))
    name: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(50))
    source: Mapped[str | None] = mapped_column(String(255))
    timezone: Mapped[str | None] = mapped_column(String(50))
    assigned_to: Mapped[str | None] = mapped_column(String(100))
    tags: Mapped[list | None] = mapped_column(JsonType)
    custom_fields: Mapped[list | None] = mapped_column(JsonType)
    address: Mapped[str | None] = mapped_column(String(500))
    city: Mapped[str | None] = mapped_column(String(255))
    state: Mapped[str | None] = mapped_column(String(100))
    country: Mapped[str | None] = mapped_column(String(100))
    postal_code: Mapped[str | None] = mapped_column(String(20))
    company_name: Mapped[str | None] = mapped_column(String(255))
    website: Mapped[str | None] = mapped_column(String(500))
    do_not_contact: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ghl_created_at: Mapped[datetime | None]
    ghl_updated_at: Mapped[datetime | None]
    ghl_local_date: Mapped[date | None] = mapped_column(Date)
    ghl_local_week: Mapped[date | None] = mapped_column(Date)
    ghl_local_month: Mapped[date | None] = mapped_column(Date)
    attribution_source: Mapped[dict | None] = mapped_column(JsonType)
    last_attribution_source: Mapped[dict | None] = mapped_column(JsonType)


class Appointment(AttributionMixin, TimestampMixin, Base):
    """A sales call booked on a calendar mapped to appointments."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_account_ghl_id", "account_id", "ghl_appointment_id"),
        Index("idx_appointments_contact_booked", "account_id", "contact_id", "date_booked"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("contacts.id", ondelete="SET NULL")
    )
    ghl_appointment_id: Mapped[str | None] = mapped_column(String(100))
    ghl_calendar_id: Mapped[str | None] = mapped_column(String(100))
    title: Mapped[str | None] = mapped_column(String(500))
    contact_name: Mapped[str | None] = mapped_column(String(255))
    contact_email: Mapped[str | None] = mapped_column(String(255))
    contact_phone: Mapped[str | None] = mapped_column(String(50))
    setter: Mapped[str] = mapped_column(String(255), default=DEFAULT_SETTER_NAME, nullable=False)
    setter_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    setter_ghl_user_id: Mapped[str | None] = mapped_column(String(100))
    sales_rep: Mapped[str | None] = mapped_column(String(255))
    sales_rep_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    sales_rep_ghl_user_id: Mapped[str | None] = mapped_column(String(100))
    date_booked: Mapped[datetime] = mapped_column(nullable=False)
    date_booked_for: Mapped[datetime | None]
    appointment_status: Mapped[str | None] = mapped_column(String(50))
    ghl_source: Mapped[str | None] = mapped_column(String(100))
    booking_metadata: Mapped[dict | None] = mapped_column(JsonType)
    # Outcome fields, filled in later from the dashboard
    call_outcome: Mapped[str | None] = mapped_column(String(50))
    show_outcome: Mapped[str | None] = mapped_column(String(50))
    lead_quality: Mapped[int | None] = mapped_column(Integer)
    objections: Mapped[list | None] = mapped_column(JsonType)
    pitched: Mapped[bool | None] = mapped_column(Boolean)
    watched_assets: Mapped[bool | None] = mapped_column(Boolean)
    cash_collected: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    total_sales_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    linked_discovery_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("discoveries.id", ondelete="SET NULL")
    )


class Discovery(AttributionMixin, TimestampMixin, Base):
    """A qualification call booked on a calendar mapped to discoveries."""
    __tablename__ = "discoveries"
    __table_args__ = (
        Index("idx_discoveries_account_ghl_id", "account_id", "ghl_appointment_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("contacts.id", ondelete="SET NULL")
    )
    ghl_appointment_id: Mapped[str | None] = mapped_column(String(100))
    ghl_calendar_id: Mapped[str | None] = mapped_column(String(100))
    title: Mapped[str | None] = mapped_column(String(500))
    contact_name: Mapped[str | None] = mapped_column(String(255))
    contact_email: Mapped[str | None] = mapped_column(String(255))
    contact_phone: Mapped[str | None] = mapped_column(String(50))
    setter: Mapped[str] = mapped_column(String(255), default=DEFAULT_SETTER_NAME, nullable=False)
    setter_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    setter_ghl_user_id: Mapped[str | None] = mapped_column(String(100))
    date_booked: Mapped[datetime] = mapped_column(nullable=False)
    date_booked_for: Mapped[datetime | None]
    appointment_status: Mapped[str | None] = mapped_column(String(50))
    ghl_source: Mapped[str | None] = mapped_column(String(100))
    booking_metadata: Mapped[dict | None] = mapped_column(JsonType)
    call_outcome: Mapped[str | None] = mapped_column(String(50))
    show_outcome: Mapped[str | None] = mapped_column(String(50))
    # Copied from the linked appointment
    sales_rep_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    sales_rep_ghl_user_id: Mapped[str | None] = mapped_column(String(100))
    # Mirror of appointments.linked_discovery_id; kept without a FK to avoid a cycle
    linked_appointment_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)


class Dial(TimestampMixin, Base):
    """
    An outbound call.

    Unique per (account_id, ghl_message_id) only when the message id is
    present; enforced by delete-then-insert in dial_service rather than a
    constraint.
    """
    __tablename__ = "dials"
    __table_args__ = (
        Index("idx_dials_account_message", "account_id", "ghl_message_id"),
        Index("idx_dials_contact_called", "account_id", "contact_id", "date_called"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("contacts.id", ondelete="SET NULL")
    )
    ghl_message_id: Mapped[str | None] = mapped_column(String(100))
    setter: Mapped[str] = mapped_column(String(255), default=DEFAULT_SETTER_NAME, nullable=False)
    setter_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    setter_ghl_user_id: Mapped[str | None] = mapped_column(String(100))
    direction: Mapped[str | None] = mapped_column(String(20))
    call_status: Mapped[str | None] = mapped_column(String(50))
    duration: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    call_recording_link: Mapped[str | None] = mapped_column(Text)
    answered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    meaningful_conversation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    booked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    booked_appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("appointments.id", ondelete="SET NULL")
    )
    date_called: Mapped[datetime] = mapped_column(nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String(255))
    contact_email: Mapped[str | None] = mapped_column(String(255))
    contact_phone: Mapped[str | None] = mapped_column(String(50))


# =============================================================================
# Ingestion Bookkeeping
# =============================================================================

class WebhookLog(Base):
    """One row per inbound CRM webhook delivery."""
    __tablename__ = "webhook_logs"
    __table_args__ = (
        Index("idx_webhook_logs_status_created", "processing_status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    source: Mapped[str] = mapped_column(String(30), default="ghl", nullable=False)
    webhook_type: Mapped[str | None] = mapped_column(String(100))
    webhook_id: Mapped[str | None] = mapped_column(String(255))
    location_id: Mapped[str | None] = mapped_column(String(100))
    account_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("accounts.id", ondelete="SET NULL")
    )
    method: Mapped[str] = mapped_column(String(10), default="POST", nullable=False)
    url: Mapped[str | None] = mapped_column(Text)
    headers: Mapped[dict | None] = mapped_column(JsonType)
    body_length: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    raw_body: Mapped[str | None] = mapped_column(Text)
    parsed_body: Mapped[dict | None] = mapped_column(JsonType)
    processing_status: Mapped[str] = mapped_column(
        String(20), default=WebhookProcessingStatus.RECEIVED.value, nullable=False
    )
    processing_error: Mapped[str | None] = mapped_column(Text)
    response_status: Mapped[int | None] = mapped_column(Integer)
    duration_ms: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


class AttributionSession(Base):
    """A tracked browser visit, later linked to the contact it converted into."""
    __tablename__ = "attribution_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    fingerprint_id: Mapped[str | None] = mapped_column(String(100), index=True)
    landing_url: Mapped[str | None] = mapped_column(Text)
    referrer_url: Mapped[str | None] = mapped_column(Text)
    page_title: Mapped[str | None] = mapped_column(String(500))
    utm_source: Mapped[str | None] = mapped_column(String(500))
    utm_medium: Mapped[str | None] = mapped_column(String(500))
    utm_campaign: Mapped[str | None] = mapped_column(String(500))
    utm_content: Mapped[str | None] = mapped_column(String(500))
    utm_term: Mapped[str | None] = mapped_column(String(500))
    utm_id: Mapped[str | None] = mapped_column(String(500))
    fbclid: Mapped[str | None] = mapped_column(String(500))
    gclid: Mapped[str | None] = mapped_column(String(500))
    fbp: Mapped[str | None] = mapped_column(String(500))
    fbc: Mapped[str | None] = mapped_column(String(500))
    meta_ad_id: Mapped[str | None] = mapped_column(String(100))
    meta_adset_id: Mapped[str | None] = mapped_column(String(100))
    meta_campaign_id: Mapped[str | None] = mapped_column(String(100))
    user_agent: Mapped[str | None] = mapped_column(String(500))
    ip_address: Mapped[str | None] = mapped_column(String(64))
    screen_resolution: Mapped[str | None] = mapped_column(String(50))
    timezone_offset: Mapped[int | None] = mapped_column(Integer)
    language: Mapped[str | None] = mapped_column(String(50))
    attribution_quality: Mapped[str | None] = mapped_column(String(20))
    attribution_method: Mapped[str | None] = mapped_column(String(30))
    raw_attribution_data: Mapped[dict | None] = mapped_column(JsonType)
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("contacts.id", ondelete="SET NULL")
    )
    linked_at: Mapped[datetime | None]
    first_seen_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
