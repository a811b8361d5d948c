from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime


class SyncRunResponse(BaseModel):
    job_name: str
    last_status: str
    records_processed: Optional[int] = None
    run_duration_ms: Optional[int] = None
    error_log: Optional[str] = None
    last_target_date: Optional[datetime] = None

    class Config:
        from_attributes = True


class TrackedTokenResponse(BaseModel):
    id: int
    mint_address: str
    display_name: Optional[str] = None
    decimals: int
    chain: str
    watermark: Optional[datetime] = None


class AccountSyncRequest(BaseModel):
    end_date: str
    force_one_day: bool = False
    mint_id: Optional[int] = None


class BalanceSyncRequest(BaseModel):
    earliest: str
    latest: str
    entity_ids: Optional[List[int]] = None


class SyncResult(BaseModel):
    status: str
    records_written: int = 0
