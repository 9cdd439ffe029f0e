import json

import pytest

from salesops.db.enums import WebhookProcessingStatus
from salesops.db.models import Dial, WebhookLog
from salesops.services import ghl_api, location_service
from salesops.services.webhooks import ghl as ghl_webhooks


def _call_payload(**overrides):
    payload = {
        "type": "OutboundMessage",
        "messageType": "CALL",
        "webhookId": "wh-1",
        "messageId": "msg-1",
        "locationId": "loc-123",
        "contactId": "contact-1",
        "userId": None,
        "direction": "outbound",
        "callDuration": 95,
        "callStatus": "completed",
        "dateAdded": "2024-05-01T15:00:00Z",
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_status_probe(client):
    response = await client.get("/webhooks/call-events")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_invalid_json_is_400(client, db):
    response = await client.post(
        "/webhooks/call-events",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON payload"}
    log = db.query(WebhookLog).one()
    assert log.processing_status == WebhookProcessingStatus.FAILED.value
    assert log.response_status == 400


@pytest.mark.asyncio
async def test_unsupported_event_is_acknowledged(client, db):
    response = await client.post("/webhooks/call-events", json={"type": "TaskCreate", "locationId": "loc-123"})

    assert response.status_code == 200
    assert response.json() == {"message": "Webhook received but not supported", "type": "TaskCreate"}


@pytest.mark.asyncio
async def test_call_event_creates_dial(client, db, account, contact, no_crm_lookups):
    response = await client.post("/webhooks/call-events", json=_call_payload())

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "processed"
    dial = db.query(Dial).one()
    assert str(dial.id) == body["id"]
    assert dial.answered is True
    log = db.query(WebhookLog).one()
    assert log.processing_status == WebhookProcessingStatus.PROCESSED.value
    assert log.account_id == account.id
    assert log.webhook_type == "OutboundMessage:CALL"


@pytest.mark.asyncio
async def test_out_of_range_date_falls_back_to_receipt_time(client, db, account, contact, no_crm_lookups):
    response = await client.post(
        "/webhooks/call-events", json=_call_payload(dateAdded=99999999999999999)
    )

    assert response.status_code == 200
    assert response.json()["status"] == "processed"
    dial = db.query(Dial).one()
    assert dial.date_called is not None


@pytest.mark.asyncio
async def test_duplicate_delivery_is_ignored(client, db, account, contact, no_crm_lookups):
    first = await client.post("/webhooks/call-events", json=_call_payload())
    second = await client.post("/webhooks/call-events", json=_call_payload())

    assert first.json()["status"] == "processed"
    assert second.status_code == 200
    assert second.json() == {"message": "Webhook already processed"}
    assert db.query(Dial).count() == 1


@pytest.mark.asyncio
async def test_inbound_call_is_skipped(client, db, account, no_crm_lookups):
    response = await client.post(
        "/webhooks/call-events",
        json=_call_payload(direction="inbound"),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "skipped"
    assert db.query(Dial).count() == 0


@pytest.mark.asyncio
async def test_unknown_location_is_skipped(client, db, account, monkeypatch):
    async def fake_list_locations(token):
        return [{"id": "loc-123"}]

    monkeypatch.setattr(ghl_api, "list_locations", fake_list_locations)

    response = await client.post("/webhooks/call-events", json=_call_payload(locationId="loc-elsewhere"))

    assert response.status_code == 200
    assert response.json()["status"] == "skipped"
    log = db.query(WebhookLog).one()
    assert log.processing_status == WebhookProcessingStatus.SKIPPED.value
    assert log.processing_error == "unknown_location"


@pytest.mark.asyncio
async def test_processing_error_is_500_and_not_cached(client, db, account, monkeypatch):
    calls = []

    async def failing_processor(db, account, payload, access_token):
        calls.append(payload["webhookId"])
        raise ghl_api.GhlAuthError("CRM rejected access token", status_code=401)

    monkeypatch.setitem(ghl_webhooks.EVENT_PROCESSORS, "OutboundMessage:CALL", failing_processor)

    first = await client.post("/webhooks/call-events", json=_call_payload())
    second = await client.post("/webhooks/call-events", json=_call_payload())

    assert first.status_code == 500
    assert first.json()["error"] == "Failed to process webhook"
    # Failed deliveries stay retryable
    assert second.status_code == 500
    assert calls == ["wh-1", "wh-1"]
    statuses = {log.processing_status for log in db.query(WebhookLog).all()}
    assert statuses == {WebhookProcessingStatus.FAILED.value}


@pytest.mark.asyncio
async def test_location_resolved_once_per_delivery(client, db, account, contact, no_crm_lookups, monkeypatch):
    calls = []
    original = location_service.resolve_account_for_location

    async def counting_resolve(db, location_id):
        calls.append(location_id)
        return await original(db, location_id)

    monkeypatch.setattr(location_service, "resolve_account_for_location", counting_resolve)

    await client.post("/webhooks/call-events", json=_call_payload())

    assert calls == ["loc-123"]


@pytest.mark.asyncio
async def test_payload_too_large_is_413(client, monkeypatch):
    from salesops.core.config import settings

    monkeypatch.setattr(settings, "WEBHOOK_MAX_PAYLOAD_BYTES", 32)

    response = await client.post(
        "/webhooks/call-events",
        content=json.dumps(_call_payload()).encode(),
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 413


@pytest.mark.asyncio
async def test_signature_required_in_rsa_mode(client, monkeypatch):
    from salesops.core.config import settings
    from salesops.services.webhook_security import reset_signature_verifier

    monkeypatch.setattr(settings, "WEBHOOK_SIGNATURE_MODE", "rsa")
    monkeypatch.setattr(settings, "GHL_WEBHOOK_PUBLIC_KEY", "")
    reset_signature_verifier()

    response = await client.post("/webhooks/call-events", json=_call_payload())

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook not configured"}
