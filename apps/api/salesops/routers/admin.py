"""Platform-admin endpoints: call backfill and contact sync."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from salesops.core.deps import get_db, require_platform_admin
from salesops.core.rate_limit import limiter
from salesops.db.models import User
from salesops.schemas.backfill import (
    BackfillCallsRequest,
    BackfillCallsResponse,
    SyncContactsRequest,
    SyncContactsResponse,
)
from salesops.services import backfill_service, contact_sync_service, ghl_api, ghl_token_service
from salesops.services.backfill_service import BackfillError

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.post("/backfill-calls", response_model=BackfillCallsResponse, response_model_by_alias=True)
@limiter.limit("30/minute")
async def backfill_calls(
    request: Request,
    body: BackfillCallsRequest,
    user: User = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    """
    Replay one batch of historical outbound calls into dials.

    Resumable: call again with skip=nextSkip while hasMore is true.
    """
    try:
        account = backfill_service.get_backfill_account(db, body.account_id)
        result = await backfill_service.run_call_backfill(
            db,
            account,
            start_date=body.start_date,
            end_date=body.end_date,
            skip=body.skip,
            batch_size=body.batch_size,
        )
    except BackfillError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

    logger.info("Backfill batch run by user %s", user.id)
    return {"success": True, "results": result.to_response()}


@router.post("/sync-contacts", response_model=SyncContactsResponse)
@limiter.limit("5/minute")
async def sync_contacts(
    request: Request,
    body: SyncContactsRequest,
    user: User = Depends(require_platform_admin),
    db: Session = Depends(get_db),
):
    """Pull every contact of the account's CRM location into contacts."""
    try:
        account = backfill_service.get_backfill_account(db, body.account_id)
    except BackfillError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc

    access_token = await ghl_token_service.get_valid_access_token(db, account)
    if not access_token:
        raise HTTPException(status_code=400, detail="No valid GoHighLevel access token")

    try:
        synced = await contact_sync_service.sync_all_contacts(db, account, access_token)
    except ghl_api.GhlApiError as exc:
        db.rollback()
        logger.exception("Contact sync failed")
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return {"success": True, "synced": synced}
