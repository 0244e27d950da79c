"""Plan cache Pydantic schemas"""

from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class PlanSnapshot(BaseModel):
    """Plans for one TDSP and usage tier, served from cache or upstream"""
    cache_key: str = Field(..., description="Canonical serialization of the query parameters")
    tdsp_duns: str = Field(..., description="TDSP DUNS number")
    plans: List[Dict[str, Any]] = Field(..., description="Normalized plan objects")
    plan_count: int = Field(..., description="Number of plans in the snapshot")
    lowest_rate: float = Field(..., description="Lowest rate (cents/kWh) at the requested usage tier")
    cached_at: Optional[datetime] = Field(None, description="When the snapshot was written to the cache")
    expires_at: Optional[datetime] = Field(None, description="When the snapshot stops being served as fresh")
    source: str = Field(..., description="cache, upstream or stale")


class PlanSnapshotResponse(BaseModel):
    success: bool = Field(default=True)
    data: PlanSnapshot


class CacheStats(BaseModel):
    """Plan cache and API log counters"""
    total_cache_entries: int
    active_cache_entries: int
    api_calls_last_24h: int
    timestamp: datetime


class CacheCleanupResult(BaseModel):
    expired_entries_removed: int
    api_logs_removed: int
