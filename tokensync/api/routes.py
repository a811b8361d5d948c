"""
HTTP surface for inspecting sync state and triggering sync jobs by hand.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from tokensync.core.database import get_db
from tokensync.core.errors import ConfigurationError
from tokensync.db.models import SyncRun
from tokensync.db.storage import SqlStorage
from tokensync.ingestion import pipeline
from tokensync.schemas.api import (
    AccountSyncRequest,
    BalanceSyncRequest,
    SyncResult,
    SyncRunResponse,
    TrackedTokenResponse,
)

router = APIRouter()

@router.get("/runs", response_model=List[SyncRunResponse])
async def get_runs(limit: int = 10, db: AsyncSession = Depends(get_db)):
    """
    Last recorded outcome of each sync job.
    """
    result = await db.execute(select(SyncRun).order_by(SyncRun.job_name).limit(limit))
    return result.scalars().all()

@router.get("/tokens", response_model=List[TrackedTokenResponse])
async def get_tokens(db: AsyncSession = Depends(get_db)):
    """
    Tracked tokens with the latest day that has balance snapshots.
    """
    storage = SqlStorage(db)
    tokens = await storage.list_tokens()
    watermarks = await storage.snapshot_watermarks()
    return [
        TrackedTokenResponse(
            id=token.id,
            mint_address=token.mint_address,
            display_name=token.display_name,
            decimals=token.decimals,
            chain=token.chain,
            watermark=watermarks.get(token.id),
        )
        for token in tokens
    ]

@router.post("/sync/accounts", response_model=SyncResult)
async def sync_accounts(request: AccountSyncRequest):
    try:
        written = await pipeline.sync_accounts_for_end_date(request.end_date, request.force_one_day, request.mint_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SyncResult(status="completed", records_written=written)

@router.post("/sync/balances", response_model=SyncResult)
async def sync_balances(request: BalanceSyncRequest):
    try:
        written = await pipeline.sync_balances_for_date_range(request.earliest, request.latest, request.entity_ids)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SyncResult(status="completed", records_written=written)
