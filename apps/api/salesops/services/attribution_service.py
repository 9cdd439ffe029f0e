"""Marketing attribution: beacon ingestion, confidence classification, contact linking.

Everything the browser beacon sends is untrusted. Fields are coerced to
bounded single-line strings before storage, and quality/method values the
server does not recognise are recomputed from the sanitised signals.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from salesops.core.config import settings
from salesops.db.enums import AttributionMethod, AttributionQuality
from salesops.db.models import (
    ATTRIBUTION_COLUMNS, Appointment, AttributionSession, Contact, Discovery,
)
from salesops.services.contact_sync_service import get_contact_by_ghl_id
from salesops.utils.datetime_parsing import utc_now
from salesops.utils.normalization import clean_str

logger = logging.getLogger(__name__)

URL_FIELDS = ("landing_url", "referrer_url")
TEXT_FIELDS = (
    "page_title", "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term",
    "utm_id", "fbclid", "gclid", "fbp", "fbc", "meta_ad_id", "meta_adset_id",
    "meta_campaign_id", "fingerprint_id", "screen_resolution", "language",
    "attribution_quality", "attribution_method",
)
# Beacon parameter names are tried before the stored column name
FIELD_ALIASES = {
    "referrer_url": ("referrer_url", "referrer"),
    "meta_ad_id": ("ad_id", "meta_ad_id"),
    "meta_adset_id": ("adset_id", "meta_adset_id"),
    "meta_campaign_id": ("campaign_id", "meta_campaign_id"),
}
# Columns shared by sessions and attributed records
SESSION_ATTRIBUTION_FIELDS = tuple(c for c in ATTRIBUTION_COLUMNS if c != "attribution_session_id")

_META_ID = re.compile(r"^\d{15,}$")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class AttributionNotFound(LookupError):
    pass


# =============================================================================
# Classification
# =============================================================================

@dataclass
class AttributionSignals:
    ad_id: str | None = None
    campaign_id: str | None = None
    utm_campaign: str | None = None
    utm_source: str | None = None
    utm_content: str | None = None
    click_id: str | None = None
    pixel_detected: bool = False

    @classmethod
    def from_fields(cls, data: dict[str, Any]) -> "AttributionSignals":
        return cls(
            ad_id=data.get("meta_ad_id"),
            campaign_id=data.get("meta_campaign_id"),
            utm_campaign=data.get("utm_campaign"),
            utm_source=data.get("utm_source"),
            utm_content=data.get("utm_content"),
            click_id=data.get("fbclid"),
            pixel_detected=bool(data.get("pixel_detected")),
        )


def classify_quality(signals: AttributionSignals) -> AttributionQuality:
    """First matching tier wins: perfect, high, medium, low."""
    if signals.ad_id and signals.campaign_id and signals.utm_campaign:
        return AttributionQuality.PERFECT
    if signals.click_id and (signals.utm_campaign or signals.ad_id):
        return AttributionQuality.HIGH
    if signals.utm_source or signals.click_id:
        return AttributionQuality.MEDIUM
    return AttributionQuality.LOW


def classify_method(signals: AttributionSignals) -> AttributionMethod:
    if signals.ad_id and signals.utm_content:
        return AttributionMethod.UTM_DIRECT
    if signals.click_id:
        return AttributionMethod.FBCLID_LOOKUP
    if signals.pixel_detected:
        return AttributionMethod.PIXEL_BRIDGE
    return AttributionMethod.FINGERPRINT_MATCH


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def fingerprint_hash(components: dict[str, Any]) -> str:
    """
    Non-cryptographic browser fingerprint, "fp_" + base36.

    31x string hash over the compact JSON of the components in UTF-16 code
    units, wrapped to a signed 32-bit int; matches the browser beacon's output.
    """
    text = json.dumps(components, separators=(",", ":"), ensure_ascii=False)
    units = text.encode("utf-16-le")
    value = 0
    for i in range(0, len(units), 2):
        code = units[i] | (units[i + 1] << 8)
        value = ((value << 5) - value + code) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return f"fp_{_to_base36(abs(value))}"


# =============================================================================
# Sanitisation
# =============================================================================

def derive_meta_ids(data: dict[str, Any]) -> dict[str, Any]:
    """Numeric UTM values (15+ digits) are Meta ids: content=ad, term=ad set, id=campaign."""
    derived = dict(data)
    for utm_field, meta_field in (
        ("utm_content", "meta_ad_id"),
        ("utm_term", "meta_adset_id"),
        ("utm_id", "meta_campaign_id"),
    ):
        value = derived.get(utm_field)
        if not derived.get(meta_field) and value and _META_ID.match(value):
            derived[meta_field] = value
    return derived


def _beacon_value(payload: dict[str, Any], field: str, max_length: int) -> str | None:
    for key in FIELD_ALIASES.get(field, (field,)):
        value = clean_str(payload.get(key), max_length)
        if value:
            return value
    return None


def sanitize_attribution(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Bound and normalise a beacon payload; never raises on bad input.

    Accepts the beacon's own parameter names (``ad_id``, ``adset_id``,
    ``campaign_id``, ``referrer``) and its nested ``meta_pixel_data`` object,
    whose ``fbp``/``fbc`` cookies fill in when the top-level ones are absent.
    """
    data: dict[str, Any] = {}
    for field in URL_FIELDS:
        data[field] = _beacon_value(payload, field, settings.ATTRIBUTION_MAX_URL_LENGTH)
    for field in TEXT_FIELDS:
        data[field] = _beacon_value(payload, field, settings.ATTRIBUTION_MAX_FIELD_LENGTH)

    pixel_data = payload.get("meta_pixel_data")
    if not isinstance(pixel_data, dict):
        pixel_data = {}
    for cookie in ("fbp", "fbc"):
        if not data[cookie]:
            data[cookie] = clean_str(pixel_data.get(cookie), settings.ATTRIBUTION_MAX_FIELD_LENGTH)

    offset = payload.get("timezone_offset")
    try:
        data["timezone_offset"] = int(offset) if offset is not None and offset != "" else None
    except (TypeError, ValueError):
        data["timezone_offset"] = None
    if data["timezone_offset"] is not None and abs(data["timezone_offset"]) > 24 * 60:
        data["timezone_offset"] = None

    data["pixel_detected"] = (
        payload.get("pixel_detected") is True
        or payload.get("meta_pixel_loaded") is True
        or pixel_data.get("pixel_loaded") is True
    )
    data = derive_meta_ids(data)

    signals = AttributionSignals.from_fields(data)
    if not AttributionQuality.has_value(data["attribution_quality"] or ""):
        data["attribution_quality"] = classify_quality(signals).value
    if not AttributionMethod.has_value(data["attribution_method"] or ""):
        data["attribution_method"] = classify_method(signals).value
    return data


# =============================================================================
# Sessions
# =============================================================================

def _strongest(tiers: type[Enum], *values: str | None) -> str:
    """Highest-ranked known tier among values; enum members are declared strongest first."""
    ranking = list(tiers)
    known = [ranking.index(tiers(v)) for v in values if v and tiers.has_value(v)]
    return ranking[min(known)].value if known else ranking[-1].value


def get_session(db: Session, session_id: str) -> AttributionSession | None:
    return db.query(AttributionSession).filter(AttributionSession.session_id == session_id).first()


def track_session(
    db: Session,
    session_id: str,
    payload: dict[str, Any],
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> AttributionSession:
    """
    Create or refresh a visit; fields missing from this beacon keep their stored value.

    Quality and method are classified from the merged row and never drop
    below the tier already stored, so a follow-up page view without ad
    parameters does not downgrade the visit.
    """
    data = sanitize_attribution(payload)
    user_agent = clean_str(user_agent, 500)
    if not data["fingerprint_id"]:
        data["fingerprint_id"] = fingerprint_hash({
            "userAgent": user_agent or "",
            "language": data["language"] or "",
            "screen": data["screen_resolution"] or "",
            "timezoneOffset": data["timezone_offset"],
        })

    session = get_session(db, session_id)
    if session is None:
        session = AttributionSession(session_id=session_id)
        db.add(session)

    stored_quality = session.attribution_quality
    stored_method = session.attribution_method
    raw = dict(session.raw_attribution_data or {})

    for field in (*URL_FIELDS, *TEXT_FIELDS, "timezone_offset"):
        if data.get(field) is not None:
            setattr(session, field, data[field])
    raw.update({k: v for k, v in data.items() if v is not None and k != "pixel_detected"})
    raw["pixel_detected"] = bool(data["pixel_detected"] or raw.get("pixel_detected"))

    merged = AttributionSignals.from_fields({
        **{field: getattr(session, field) for field in SESSION_ATTRIBUTION_FIELDS},
        "pixel_detected": raw["pixel_detected"],
    })
    session.attribution_quality = _strongest(
        AttributionQuality, data["attribution_quality"], stored_quality, classify_quality(merged).value
    )
    session.attribution_method = _strongest(
        AttributionMethod, data["attribution_method"], stored_method, classify_method(merged).value
    )
    raw["attribution_quality"] = session.attribution_quality
    raw["attribution_method"] = session.attribution_method

    session.user_agent = user_agent or session.user_agent
    session.ip_address = clean_str(client_ip, 64) or session.ip_address
    session.raw_attribution_data = raw
    session.last_activity_at = utc_now()
    db.commit()
    return session


def touch_session(db: Session, session_id: str) -> bool:
    session = get_session(db, session_id)
    if session is None:
        return False
    session.last_activity_at = utc_now()
    db.commit()
    return True


def _snapshot(session: AttributionSession) -> dict[str, Any]:
    snapshot = {
        field: getattr(session, field)
        for field in SESSION_ATTRIBUTION_FIELDS
        if getattr(session, field) is not None
    }
    snapshot["session_id"] = session.session_id
    snapshot["captured_at"] = utc_now().isoformat()
    return snapshot


def link_session_to_contact(
    db: Session,
    session_id: str,
    account_id: uuid.UUID,
    ghl_contact_id: str,
) -> Contact:
    """
    Attach a visit's attribution to the contact it converted into.

    The contact's attribution columns take the session's values (last write
    wins), first touch is kept in attribution_source, and the contact's
    bookings that carry no attribution yet get the same values.
    """
    session = get_session(db, session_id)
    if session is None:
        raise AttributionNotFound("Attribution session not found")
    contact = get_contact_by_ghl_id(db, account_id, ghl_contact_id)
    if contact is None:
        raise AttributionNotFound("Contact not found")

    values = {field: getattr(session, field) for field in SESSION_ATTRIBUTION_FIELDS}
    values = {field: value for field, value in values.items() if value is not None}
    values["attribution_session_id"] = session.session_id

    for field, value in values.items():
        setattr(contact, field, value)
    snapshot = _snapshot(session)
    if not contact.attribution_source:
        contact.attribution_source = snapshot
    contact.last_attribution_source = snapshot

    for model in (Appointment, Discovery):
        rows = (
            db.query(model)
            .filter(
                model.account_id == account_id,
                model.contact_id == contact.id,
                model.attribution_quality.is_(None),
            )
            .all()
        )
        for row in rows:
            for field, value in values.items():
                setattr(row, field, value)

    session.contact_id = contact.id
    session.linked_at = utc_now()
    db.commit()
    logger.info("Linked attribution session to contact")
    return contact
