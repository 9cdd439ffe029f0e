"""Webhook handler interface."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol

from fastapi import Request, Response
from sqlalchemy.orm import Session

from salesops.db.models import Account
from salesops.services.event_outcome import EventOutcome

WebhookResult = dict | Response

# (db, resolved account, payload, access token) -> outcome
EventProcessor = Callable[[Session, Account, dict[str, Any], str | None], Awaitable[EventOutcome]]


class WebhookHandler(Protocol):
    async def handle(self, request: Request, db: Session, **kwargs) -> WebhookResult:
        """Handle a webhook request."""
