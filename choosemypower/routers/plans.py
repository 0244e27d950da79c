"""Plan listing and plan cache admin endpoints"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from choosemypower.auth import verify_api_key
from choosemypower.config import settings
from choosemypower.database import get_db
from choosemypower.schemas.common import ErrorResponse
from choosemypower.schemas.plans import CacheCleanupResult, CacheStats, PlanSnapshotResponse
from choosemypower.services.api_log import ApiLogService
from choosemypower.services.plan_cache import PlanCacheService
from choosemypower.services.pricing_api import PricingAPIClient, get_pricing_client

router = APIRouter()


@router.get(
    "",
    response_model=PlanSnapshotResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def get_plans(
    tdsp_duns: str = Query(..., description="TDSP DUNS number from ZIP resolution"),
    display_usage: int = Query(settings.default_display_usage, description="Monthly usage tier in kWh"),
    db: Session = Depends(get_db),
    client: PricingAPIClient = Depends(get_pricing_client),
):
    """Plans for a TDSP territory, served from the plan cache when fresh"""
    snapshot = await PlanCacheService(db, client=client).get_or_fetch(
        tdsp_duns, {"display_usage": display_usage}
    )
    return {"success": True, "data": snapshot}


@router.get("/cache/stats", response_model=CacheStats)
async def cache_stats(
    db: Session = Depends(get_db),
    client: PricingAPIClient = Depends(get_pricing_client),
    api_key: str = Depends(verify_api_key),
):
    """Plan cache entry counts"""
    return PlanCacheService(db, client=client).get_stats()


@router.post("/cache/cleanup", response_model=CacheCleanupResult)
async def cache_cleanup(
    days: int = Query(settings.api_log_retention_days, ge=1, description="API log retention in days"),
    db: Session = Depends(get_db),
    client: PricingAPIClient = Depends(get_pricing_client),
    api_key: str = Depends(verify_api_key),
):
    """Drop expired cache rows and API logs older than the retention window"""
    return {
        "expired_entries_removed": PlanCacheService(db, client=client).clean_expired(),
        "api_logs_removed": ApiLogService(db).clean_old(days),
    }
