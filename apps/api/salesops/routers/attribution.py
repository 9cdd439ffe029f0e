"""Attribution beacon endpoints (public, rate limited)."""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from salesops.core.deps import get_db
from salesops.core.rate_limit import ATTRIBUTION_LIMIT, limiter
from salesops.schemas.attribution import (
    AttributionTrackRequest,
    AttributionTrackResponse,
    LinkContactRequest,
    LinkContactResponse,
)
from salesops.services import attribution_service

router = APIRouter(prefix="/attribution", tags=["attribution"])


@router.post("/track", response_model=AttributionTrackResponse)
@limiter.limit(ATTRIBUTION_LIMIT)
async def track(
    request: Request,
    body: AttributionTrackRequest,
    db: Session = Depends(get_db),
):
    """Record or refresh a page visit's attribution signals."""
    session = attribution_service.track_session(
        db,
        body.session_id,
        body.model_dump(exclude={"session_id"}),
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return {
        "success": True,
        "session_id": session.session_id,
        "fingerprint_id": session.fingerprint_id,
        "attribution_quality": session.attribution_quality,
        "attribution_method": session.attribution_method,
    }


@router.patch("/track/{session_id}")
@limiter.limit(ATTRIBUTION_LIMIT)
async def touch(
    request: Request,
    session_id: str,
    db: Session = Depends(get_db),
):
    """Activity ping for an existing visit."""
    if not attribution_service.touch_session(db, session_id):
        raise HTTPException(status_code=404, detail="Attribution session not found")
    return {"success": True}


@router.post("/link-contact", response_model=LinkContactResponse)
@limiter.limit(ATTRIBUTION_LIMIT)
async def link_contact(
    request: Request,
    body: LinkContactRequest,
    db: Session = Depends(get_db),
):
    """Attach a visit's attribution to the CRM contact it converted into."""
    try:
        contact = attribution_service.link_session_to_contact(
            db, body.session_id, body.account_id, body.ghl_contact_id
        )
    except attribution_service.AttributionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {
        "success": True,
        "contact_id": contact.id,
        "attribution_quality": contact.attribution_quality,
        "attribution_method": contact.attribution_method,
    }
