import pytest

from salesops.db.enums import AttributionMethod, AttributionQuality
from salesops.db.models import Appointment, AttributionSession, Contact
from salesops.services import attribution_service
from salesops.services.attribution_service import AttributionSignals
from salesops.utils.datetime_parsing import utc_now


@pytest.mark.parametrize(
    "signals,expected",
    [
        (AttributionSignals(ad_id="1", campaign_id="2", utm_campaign="spring"), AttributionQuality.PERFECT),
        (AttributionSignals(click_id="fb", utm_campaign="spring"), AttributionQuality.HIGH),
        (AttributionSignals(click_id="fb", ad_id="1"), AttributionQuality.HIGH),
        (AttributionSignals(utm_source="facebook"), AttributionQuality.MEDIUM),
        (AttributionSignals(click_id="fb"), AttributionQuality.MEDIUM),
        (AttributionSignals(), AttributionQuality.LOW),
    ],
)
def test_quality_tiers(signals, expected):
    assert attribution_service.classify_quality(signals) == expected


@pytest.mark.parametrize(
    "signals,expected",
    [
        (AttributionSignals(ad_id="1", utm_content="1"), AttributionMethod.UTM_DIRECT),
        (AttributionSignals(click_id="fb"), AttributionMethod.FBCLID_LOOKUP),
        (AttributionSignals(pixel_detected=True), AttributionMethod.PIXEL_BRIDGE),
        (AttributionSignals(), AttributionMethod.FINGERPRINT_MATCH),
    ],
)
def test_method_priority(signals, expected):
    assert attribution_service.classify_method(signals) == expected


def test_fingerprint_hash_is_stable_and_prefixed():
    components = {"userAgent": "Mozilla/5.0", "language": "en-US", "screen": "1920x1080", "timezoneOffset": 300}

    first = attribution_service.fingerprint_hash(components)
    second = attribution_service.fingerprint_hash(dict(components))

    assert first == second
    assert first.startswith("fp_")
    assert first != attribution_service.fingerprint_hash({**components, "language": "de-DE"})


def test_fingerprint_hash_of_empty_object():
    # "{}" -> 123 * 31 + 125 = 3938
    assert attribution_service.fingerprint_hash({}) == "fp_31e"


def test_sanitize_strips_and_bounds_fields():
    data = attribution_service.sanitize_attribution({
        "utm_source": "  face\x00book\n ",
        "utm_campaign": "x" * 900,
        "landing_url": "https://example.com/" + "a" * 5000,
        "utm_medium": {"nested": "object"},
        "timezone_offset": "99999",
    })

    assert data["utm_source"] == "facebook"
    assert len(data["utm_campaign"]) == 500
    assert len(data["landing_url"]) == 2048
    assert data["utm_medium"] is None
    assert data["timezone_offset"] is None


def test_sanitize_recomputes_unknown_quality_and_method():
    data = attribution_service.sanitize_attribution({
        "fbclid": "fb-1",
        "utm_campaign": "spring",
        "attribution_quality": "<script>",
        "attribution_method": "made_up",
    })

    assert data["attribution_quality"] == AttributionQuality.HIGH.value
    assert data["attribution_method"] == AttributionMethod.FBCLID_LOOKUP.value


def test_sanitize_keeps_known_quality():
    data = attribution_service.sanitize_attribution({"attribution_quality": "perfect"})

    assert data["attribution_quality"] == "perfect"


def test_numeric_utm_values_become_meta_ids():
    data = attribution_service.sanitize_attribution({
        "utm_content": "120200000000000001",
        "utm_term": "120200000000000002",
        "utm_id": "120200000000000003",
        "utm_campaign": "spring",
    })

    assert data["meta_ad_id"] == "120200000000000001"
    assert data["meta_adset_id"] == "120200000000000002"
    assert data["meta_campaign_id"] == "120200000000000003"
    assert data["attribution_quality"] == AttributionQuality.PERFECT.value
    assert data["attribution_method"] == AttributionMethod.UTM_DIRECT.value


def test_track_session_creates_then_merges(db):
    attribution_service.track_session(
        db, "sess-1", {"utm_source": "facebook", "landing_url": "https://example.com"}, "1.2.3.4", "UA"
    )
    session = attribution_service.track_session(db, "sess-1", {"fbclid": "fb-1"}, "1.2.3.4", "UA")

    assert db.query(AttributionSession).count() == 1
    assert session.utm_source == "facebook"
    assert session.fbclid == "fb-1"
    assert session.fingerprint_id.startswith("fp_")
    assert session.ip_address == "1.2.3.4"


def test_follow_up_page_view_keeps_classification(db):
    attribution_service.track_session(
        db, "sess-2", {"utm_source": "facebook", "utm_campaign": "spring", "fbclid": "fb-1"}
    )
    session = attribution_service.track_session(
        db, "sess-2", {"landing_url": "https://example.com/pricing"}
    )

    assert session.fbclid == "fb-1"
    assert session.attribution_quality == AttributionQuality.HIGH.value
    assert session.attribution_method == AttributionMethod.FBCLID_LOOKUP.value
    assert session.raw_attribution_data["attribution_quality"] == AttributionQuality.HIGH.value


def test_merged_signals_upgrade_classification(db):
    attribution_service.track_session(db, "sess-3", {"utm_campaign": "spring"})
    session = attribution_service.track_session(db, "sess-3", {"fbclid": "fb-1"})

    assert session.attribution_quality == AttributionQuality.HIGH.value


def test_link_session_copies_attribution(db, account, contact):
    appointment = Appointment(
        account_id=account.id,
        contact_id=contact.id,
        ghl_appointment_id="appt-1",
        date_booked=utc_now(),
    )
    db.add(appointment)
    db.commit()
    attribution_service.track_session(
        db, "sess-2", {"utm_source": "facebook", "utm_campaign": "spring", "fbclid": "fb-2"}
    )

    linked = attribution_service.link_session_to_contact(db, "sess-2", account.id, "contact-1")

    assert linked.id == contact.id
    assert linked.utm_campaign == "spring"
    assert linked.attribution_quality == AttributionQuality.HIGH.value
    assert linked.attribution_session_id == "sess-2"
    assert linked.attribution_source["session_id"] == "sess-2"
    db.refresh(appointment)
    assert appointment.fbclid == "fb-2"
    session = attribution_service.get_session(db, "sess-2")
    assert session.contact_id == contact.id
    assert session.linked_at is not None


def test_link_keeps_first_touch(db, account, contact):
    attribution_service.track_session(db, "first", {"utm_source": "google"})
    attribution_service.track_session(db, "second", {"utm_source": "facebook"})

    attribution_service.link_session_to_contact(db, "first", account.id, "contact-1")
    linked = attribution_service.link_session_to_contact(db, "second", account.id, "contact-1")

    assert linked.attribution_source["session_id"] == "first"
    assert linked.last_attribution_source["session_id"] == "second"
    assert linked.utm_source == "facebook"


def test_link_unknown_session_raises(db, account, contact):
    with pytest.raises(attribution_service.AttributionNotFound):
        attribution_service.link_session_to_contact(db, "missing", account.id, "contact-1")


# =============================================================================
# Endpoints
# =============================================================================

@pytest.mark.asyncio
async def test_track_endpoint(client, db):
    response = await client.post(
        "/attribution/track",
        json={"session_id": "sess-http", "utm_source": "facebook", "fbclid": "fb-9", "unknown_field": 1},
        headers={"User-Agent": "pytest"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["attribution_quality"] == AttributionQuality.MEDIUM.value
    assert body["attribution_method"] == AttributionMethod.FBCLID_LOOKUP.value
    assert body["fingerprint_id"].startswith("fp_")


@pytest.mark.asyncio
async def test_track_endpoint_accepts_beacon_ad_ids(client, db):
    response = await client.post(
        "/attribution/track",
        json={
            "session_id": "sess-ads",
            "ad_id": "120200000000000001",
            "adset_id": "120200000000000002",
            "campaign_id": "120200000000000003",
            "utm_campaign": "spring",
            "referrer": "https://facebook.com/",
        },
    )

    assert response.status_code == 200
    assert response.json()["attribution_quality"] == AttributionQuality.PERFECT.value
    session = attribution_service.get_session(db, "sess-ads")
    assert session.meta_ad_id == "120200000000000001"
    assert session.meta_adset_id == "120200000000000002"
    assert session.meta_campaign_id == "120200000000000003"
    assert session.referrer_url == "https://facebook.com/"


@pytest.mark.asyncio
async def test_track_endpoint_reads_nested_pixel_data(client, db):
    response = await client.post(
        "/attribution/track",
        json={
            "session_id": "sess-pixel",
            "meta_pixel_data": {"pixel_loaded": True, "fbp": "fb.1.123", "fbc": "fb.1.456.abc"},
        },
    )

    assert response.status_code == 200
    assert response.json()["attribution_method"] == AttributionMethod.PIXEL_BRIDGE.value
    session = attribution_service.get_session(db, "sess-pixel")
    assert session.fbp == "fb.1.123"
    assert session.fbc == "fb.1.456.abc"


@pytest.mark.asyncio
async def test_track_endpoint_requires_session_id(client):
    response = await client.post("/attribution/track", json={"utm_source": "facebook"})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_touch_unknown_session_is_404(client):
    response = await client.patch("/attribution/track/nope")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_touch_refreshes_last_activity(client, db):
    session = attribution_service.track_session(db, "sess-touch", {}, client_ip=None, user_agent=None)
    before = session.last_activity_at

    response = await client.patch("/attribution/track/sess-touch")

    assert response.status_code == 200
    db.refresh(session)
    assert session.last_activity_at >= before


@pytest.mark.asyncio
async def test_link_contact_endpoint(client, db, account, contact):
    await client.post("/attribution/track", json={"session_id": "sess-link", "utm_source": "tiktok"})

    response = await client.post(
        "/attribution/link-contact",
        json={"session_id": "sess-link", "account_id": str(account.id), "ghl_contact_id": "contact-1"},
    )

    assert response.status_code == 200
    assert response.json()["contact_id"] == str(contact.id)
    db.expire_all()
    assert db.get(Contact, contact.id).utm_source == "tiktok"
