"""Baseline migration - accounts, CRM records and ingestion bookkeeping

Revision ID: 0001_baseline
Revises: 
Create Date: 2026-10-18

Creates the tables the webhook ingestion, call backfill and attribution
pipeline read and write.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _attribution_columns() -> list[sa.Column]:
    text_fields = (
        "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term", "utm_id",
        "fbclid", "gclid", "fbp", "fbc",
    )
    return [
        *(sa.Column(name, sa.String(500)) for name in text_fields),
        sa.Column("landing_url", sa.Text()),
        sa.Column("referrer_url", sa.Text()),
        sa.Column("meta_ad_id", sa.String(100)),
        sa.Column("meta_adset_id", sa.String(100)),
        sa.Column("meta_campaign_id", sa.String(100)),
        sa.Column("attribution_quality", sa.String(20)),
        sa.Column("attribution_method", sa.String(30)),
        sa.Column("fingerprint_id", sa.String(100)),
        sa.Column("attribution_session_id", sa.String(255)),
    ]


def _booking_columns() -> list[sa.Column]:
    """Columns shared by appointments and discoveries."""
    return [
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("contact_id", sa.Uuid(), sa.ForeignKey("contacts.id", ondelete="SET NULL")),
        sa.Column("ghl_appointment_id", sa.String(100)),
        sa.Column("ghl_calendar_id", sa.String(100)),
        sa.Column("title", sa.String(500)),
        sa.Column("contact_name", sa.String(255)),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("contact_phone", sa.String(50)),
        sa.Column("setter", sa.String(255), nullable=False),
        sa.Column("setter_user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("setter_ghl_user_id", sa.String(100)),
        sa.Column("date_booked", sa.DateTime(timezone=True), nullable=False),
        sa.Column("date_booked_for", sa.DateTime(timezone=True)),
        sa.Column("appointment_status", sa.String(50)),
        sa.Column("ghl_source", sa.String(100)),
        sa.Column("booking_metadata", JSON_TYPE),
        sa.Column("call_outcome", sa.String(50)),
        sa.Column("show_outcome", sa.String(50)),
    ]


def upgrade() -> None:
    """Create ingestion tables."""

    # ==========================================================================
    # Tenants
    # ==========================================================================
    op.create_table(
        "accounts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("timezone", sa.String(50), nullable=False, server_default="UTC"),
        sa.Column("ghl_auth_type", sa.String(20), nullable=False, server_default="api_key"),
        sa.Column("ghl_access_token", sa.Text()),
        sa.Column("ghl_refresh_token", sa.Text()),
        sa.Column("ghl_token_expires_at", sa.DateTime(timezone=True)),
        sa.Column("ghl_location_id", sa.String(100)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_accounts_ghl_location_id", "accounts", ["ghl_location_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("accounts.id", ondelete="CASCADE")),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255)),
        sa.Column("role", sa.String(30), nullable=False, server_default="viewer"),
        sa.Column("ghl_user_id", sa.String(100)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_users_account_id", "users", ["account_id"])

    op.create_table(
        "calendar_mappings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ghl_calendar_id", sa.String(100), nullable=False),
        sa.Column("calendar_name", sa.String(255)),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("target_table", sa.String(20), nullable=False, server_default="appointments"),
        *_timestamps(),
        sa.UniqueConstraint("account_id", "ghl_calendar_id", name="uq_calendar_mapping_account_calendar"),
    )

    # ==========================================================================
    # CRM records
    # ==========================================================================
    op.create_table(
        "contacts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ghl_contact_id", sa.String(100)),
        sa.Column("first_name", sa.String(255)),
        sa.Column("last_name", sa.String(255)),
        sa.Column("name", sa.String(255)),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(50)),
        sa.Column("source", sa.String(255)),
        sa.Column("timezone", sa.String(50)),
        sa.Column("assigned_to", sa.String(100)),
        sa.Column("tags", JSON_TYPE),
        sa.Column("custom_fields", JSON_TYPE),
        sa.Column("address", sa.String(500)),
        sa.Column("city", sa.String(255)),
        sa.Column("state", sa.String(100)),
        sa.Column("country", sa.String(100)),
        sa.Column("postal_code", sa.String(20)),
        sa.Column("company_name", sa.String(255)),
        sa.Column("website", sa.String(500)),
        sa.Column("do_not_contact", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ghl_created_at", sa.DateTime(timezone=True)),
        sa.Column("ghl_updated_at", sa.DateTime(timezone=True)),
        sa.Column("ghl_local_date", sa.Date()),
        sa.Column("ghl_local_week", sa.Date()),
        sa.Column("ghl_local_month", sa.Date()),
        sa.Column("attribution_source", JSON_TYPE),
        sa.Column("last_attribution_source", JSON_TYPE),
        *_attribution_columns(),
        *_timestamps(),
        sa.UniqueConstraint("account_id", "ghl_contact_id", name="uq_contacts_account_ghl_contact"),
    )
    op.create_index("ix_contacts_account_id", "contacts", ["account_id"])

    op.create_table(
        "discoveries",
        *_booking_columns(),
        # Copied from the linked appointment
        sa.Column("sales_rep_user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("sales_rep_ghl_user_id", sa.String(100)),
        # Mirror of appointments.linked_discovery_id, no FK to avoid a cycle
        sa.Column("linked_appointment_id", sa.Uuid()),
        *_attribution_columns(),
        *_timestamps(),
    )
    op.create_index("idx_discoveries_account_ghl_id", "discoveries", ["account_id", "ghl_appointment_id"])

    op.create_table(
        "appointments",
        *_booking_columns(),
        sa.Column("sales_rep", sa.String(255)),
        sa.Column("sales_rep_user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("sales_rep_ghl_user_id", sa.String(100)),
        sa.Column("lead_quality", sa.Integer()),
        sa.Column("objections", JSON_TYPE),
        sa.Column("pitched", sa.Boolean()),
        sa.Column("watched_assets", sa.Boolean()),
        sa.Column("cash_collected", sa.Numeric(12, 2)),
        sa.Column("total_sales_value", sa.Numeric(12, 2)),
        sa.Column("linked_discovery_id", sa.Uuid(), sa.ForeignKey("discoveries.id", ondelete="SET NULL")),
        *_attribution_columns(),
        *_timestamps(),
    )
    op.create_index("idx_appointments_account_ghl_id", "appointments", ["account_id", "ghl_appointment_id"])
    op.create_index(
        "idx_appointments_contact_booked", "appointments", ["account_id", "contact_id", "date_booked"]
    )

    op.create_table(
        "dials",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("contact_id", sa.Uuid(), sa.ForeignKey("contacts.id", ondelete="SET NULL")),
        sa.Column("ghl_message_id", sa.String(100)),
        sa.Column("setter", sa.String(255), nullable=False),
        sa.Column("setter_user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("setter_ghl_user_id", sa.String(100)),
        sa.Column("direction", sa.String(20)),
        sa.Column("call_status", sa.String(50)),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("call_recording_link", sa.Text()),
        sa.Column("answered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("meaningful_conversation", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("booked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "booked_appointment_id", sa.Uuid(), sa.ForeignKey("appointments.id", ondelete="SET NULL")
        ),
        sa.Column("date_called", sa.DateTime(timezone=True), nullable=False),
        sa.Column("contact_name", sa.String(255)),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("contact_phone", sa.String(50)),
        *_timestamps(),
    )
    op.create_index("idx_dials_account_message", "dials", ["account_id", "ghl_message_id"])
    op.create_index("idx_dials_contact_called", "dials", ["account_id", "contact_id", "date_called"])

    # ==========================================================================
    # Ingestion bookkeeping
    # ==========================================================================
    op.create_table(
        "webhook_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("source", sa.String(30), nullable=False, server_default="ghl"),
        sa.Column("webhook_type", sa.String(100)),
        sa.Column("webhook_id", sa.String(255)),
        sa.Column("location_id", sa.String(100)),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("accounts.id", ondelete="SET NULL")),
        sa.Column("method", sa.String(10), nullable=False, server_default="POST"),
        sa.Column("url", sa.Text()),
        sa.Column("headers", JSON_TYPE),
        sa.Column("body_length", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("raw_body", sa.Text()),
        sa.Column("parsed_body", JSON_TYPE),
        sa.Column("processing_status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("processing_error", sa.Text()),
        sa.Column("response_status", sa.Integer()),
        sa.Column("duration_ms", sa.Integer()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_webhook_logs_status_created", "webhook_logs", ["processing_status", "created_at"])

    op.create_table(
        "attribution_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("session_id", sa.String(255), nullable=False, unique=True),
        sa.Column("fingerprint_id", sa.String(100)),
        sa.Column("landing_url", sa.Text()),
        sa.Column("referrer_url", sa.Text()),
        sa.Column("page_title", sa.String(500)),
        *(
            sa.Column(name, sa.String(500))
            for name in (
                "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term", "utm_id",
                "fbclid", "gclid", "fbp", "fbc",
            )
        ),
        sa.Column("meta_ad_id", sa.String(100)),
        sa.Column("meta_adset_id", sa.String(100)),
        sa.Column("meta_campaign_id", sa.String(100)),
        sa.Column("user_agent", sa.String(500)),
        sa.Column("ip_address", sa.String(64)),
        sa.Column("screen_resolution", sa.String(50)),
        sa.Column("timezone_offset", sa.Integer()),
        sa.Column("language", sa.String(50)),
        sa.Column("attribution_quality", sa.String(20)),
        sa.Column("attribution_method", sa.String(30)),
        sa.Column("raw_attribution_data", JSON_TYPE),
        sa.Column("contact_id", sa.Uuid(), sa.ForeignKey("contacts.id", ondelete="SET NULL")),
        sa.Column("linked_at", sa.DateTime(timezone=True)),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_attribution_sessions_fingerprint_id", "attribution_sessions", ["fingerprint_id"])


def downgrade() -> None:
    """Drop ingestion tables."""
    op.drop_table("attribution_sessions")
    op.drop_table("webhook_logs")
    op.drop_table("dials")
    op.drop_table("appointments")
    op.drop_table("discoveries")
    op.drop_table("contacts")
    op.drop_table("calendar_mappings")
    op.drop_table("users")
    op.drop_table("accounts")
