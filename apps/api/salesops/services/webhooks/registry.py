"""Webhook handler registry."""

from __future__ import annotations

from salesops.services.webhooks.base import WebhookHandler
from salesops.services.webhooks.ghl import GhlWebhookHandler

_HANDLERS: dict[str, WebhookHandler] = {
    "ghl": GhlWebhookHandler(),
}


def get_handler(name: str):
    handler = _HANDLERS.get(name)
    if not handler:
        raise KeyError(f"Unknown webhook handler: {name}")
    return handler
