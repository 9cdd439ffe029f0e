"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    account_id: str | None = None,
    location_id: str | None = None,
    webhook_id: str | None = None,
    event_type: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict.

    Only identifiers are accepted; contact names, emails and phone numbers
    never go through here.
    """
    context: dict[str, Any] = {}
    if account_id:
        context["account_id"] = str(account_id)
    if location_id:
        context["location_id"] = location_id
    if webhook_id:
        context["webhook_id"] = webhook_id
    if event_type:
        context["event_type"] = event_type
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
