"""Schemas for the attribution beacon endpoints.

Beacon fields are typed loosely on purpose: values are sanitised by the
attribution service, so a malformed field is dropped rather than rejected.
"""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AttributionTrackRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(min_length=1, max_length=255)
    fingerprint_id: Any = None
    landing_url: Any = None
    referrer_url: Any = None
    referrer: Any = None
    page_title: Any = None
    utm_source: Any = None
    utm_medium: Any = None
    utm_campaign: Any = None
    utm_content: Any = None
    utm_term: Any = None
    utm_id: Any = None
    fbclid: Any = None
    gclid: Any = None
    fbp: Any = None
    fbc: Any = None
    meta_ad_id: Any = None
    meta_adset_id: Any = None
    meta_campaign_id: Any = None
    ad_id: Any = None
    adset_id: Any = None
    campaign_id: Any = None
    screen_resolution: Any = None
    timezone_offset: Any = None
    language: Any = None
    pixel_detected: Any = None
    meta_pixel_loaded: Any = None
    meta_pixel_data: Any = None
    attribution_quality: Any = None
    attribution_method: Any = None


class AttributionTrackResponse(BaseModel):
    success: bool
    session_id: str
    fingerprint_id: str | None
    attribution_quality: str | None
    attribution_method: str | None


class LinkContactRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=255)
    account_id: UUID
    ghl_contact_id: str = Field(min_length=1, max_length=100)


class LinkContactResponse(BaseModel):
    success: bool
    contact_id: UUID
    attribution_quality: str | None
    attribution_method: str | None
