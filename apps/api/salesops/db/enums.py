"""Enum definitions for application constants."""

from enum import Enum


class Role(str, Enum):
    """
    User roles with increasing privilege levels.

    - VIEWER / SETTER / SALES_REP: account team members
    - ADMIN: account admin (team, calendar mappings)
    - PLATFORM_ADMIN: operator across all accounts (backfills, syncs)
    """
    VIEWER = "viewer"
    SETTER = "setter"
    SALES_REP = "sales_rep"
    ADMIN = "admin"
    PLATFORM_ADMIN = "platform_admin"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


class GhlAuthType(str, Enum):
    """How an account authenticates against the CRM."""
    API_KEY = "api_key"
    OAUTH2 = "oauth2"


class TargetTable(str, Enum):
    """Where a mapped calendar's bookings are written."""
    APPOINTMENTS = "appointments"
    DISCOVERIES = "discoveries"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class CallDirection(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class WebhookProcessingStatus(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


class AttributionQuality(str, Enum):
    """Attribution confidence tiers, strongest first."""
    PERFECT = "perfect"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class AttributionMethod(str, Enum):
    """How a visit was tied back to an ad."""
    UTM_DIRECT = "utm_direct"
    FBCLID_LOOKUP = "fbclid_lookup"
    PIXEL_BRIDGE = "pixel_bridge"
    FINGERPRINT_MATCH = "fingerprint_match"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


DEFAULT_ACCOUNT_TIMEZONE = "UTC"
DEFAULT_SETTER_NAME = "Unknown"
