"""Webhooks router - inbound CRM events."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from salesops.core.deps import get_db
from salesops.services.webhooks.registry import get_handler

router = APIRouter()


@router.get("/call-events")
async def call_events_status():
    """Reachability probe used when configuring the CRM webhook."""
    return {"status": "ok", "message": "Call events webhook endpoint is active"}


@router.post("/call-events")
async def receive_call_events(
    request: Request,
    db: Session = Depends(get_db),
):
    """Receive GoHighLevel call, appointment and contact webhooks."""
    return await get_handler("ghl").handle(request, db)
