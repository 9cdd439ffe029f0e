"""Schemas for admin backfill and sync endpoints."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class BackfillCallsRequest(BaseModel):
    """Body of POST /admin/backfill-calls (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    account_id: UUID = Field(alias="accountId")
    start_date: str = Field(alias="startDate", min_length=1)
    end_date: str = Field(alias="endDate", min_length=1)
    skip: int = Field(default=0, ge=0)
    batch_size: int | None = Field(default=None, alias="batchSize")


class BackfillResults(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    batch_total: int = Field(alias="batchTotal")
    batch_start: int = Field(alias="batchStart")
    batch_end: int = Field(alias="batchEnd")
    has_more: bool = Field(alias="hasMore")
    next_skip: int | None = Field(alias="nextSkip")
    processed: int
    skipped: int
    errors: int
    duplicates: int
    inbound: int


class BackfillCallsResponse(BaseModel):
    success: bool
    results: BackfillResults


class SyncContactsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: UUID = Field(alias="accountId")


class SyncContactsResponse(BaseModel):
    success: bool
    synced: int
