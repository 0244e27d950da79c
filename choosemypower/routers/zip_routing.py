"""ZIP routing endpoints"""

import time
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from prometheus_client import Counter
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from choosemypower.auth import verify_api_key
from choosemypower.database import get_db
from choosemypower.errors import CoverageGapError, InvalidInputError
from choosemypower.models.navigation_event import NavigationEventType
from choosemypower.schemas.common import ErrorResponse
from choosemypower.schemas.zip_routing import (
    BulkResolveRequest, BulkResolveResponse, DeregulatedAreasResponse, ZipResolveResponse,
)
from choosemypower.services.analytics import AnalyticsService
from choosemypower.services.zip_routing import ZipRoutingService

logger = structlog.get_logger()

router = APIRouter()

ZIP_RESOLUTIONS = Counter(
    "zip_resolutions_total",
    "ZIP resolutions by outcome",
    ["outcome"]
)


def _track(db: Session, request: Request, zip_code: str, event_type: NavigationEventType, started: float, **fields):
    """Record a navigation event without failing the lookup"""
    try:
        AnalyticsService(db).record_event(
            zip_code=zip_code,
            event_type=event_type.value,
            response_time_ms=(time.time() - started) * 1000,
            user_agent=request.headers.get("user-agent"),
            referrer=request.headers.get("referer"),
            **fields,
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Failed to record navigation event", zip_code=zip_code, error=str(e))


@router.get(
    "/resolve",
    response_model=ZipResolveResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def resolve_zip(
    request: Request,
    zip: str = Query(..., description="5-digit ZIP code"),
    address: Optional[str] = Query(None, description="Street address; a ZIP+4 in it narrows multi-city ZIPs"),
    include_plan_count: bool = Query(False, description="Attach the cached plan count for the TDSP"),
    db: Session = Depends(get_db),
):
    """Resolve a ZIP code to its city page and TDSP"""
    started = time.time()
    service = ZipRoutingService(db)
    try:
        result = await service.resolve(zip, address=address, include_plan_count=include_plan_count)
    except InvalidInputError as e:
        ZIP_RESOLUTIONS.labels(outcome="invalid").inc()
        _track(db, request, zip, NavigationEventType.LOOKUP_FAILED, started, error_code=e.code)
        raise
    except CoverageGapError as e:
        ZIP_RESOLUTIONS.labels(outcome="coverage_gap").inc()
        _track(db, request, zip, NavigationEventType.COVERAGE_GAP, started, error_code=e.code)
        raise

    ZIP_RESOLUTIONS.labels(outcome=result["match_method"]).inc()
    _track(
        db, request, zip, NavigationEventType.LOOKUP_SUCCESS, started,
        city_slug=result["city_slug"],
    )
    return {"success": True, "data": result}


@router.post(
    "/resolve-bulk",
    response_model=BulkResolveResponse,
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def resolve_zip_bulk(
    payload: BulkResolveRequest,
    db: Session = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Resolve a batch of ZIP codes (admin and coverage audits)"""
    results = await ZipRoutingService(db).resolve_many(
        payload.zip_codes, include_plan_count=payload.include_plan_count
    )
    return {
        "success": True,
        "total": len(results),
        "resolved": len([r for r in results if r["success"]]),
        "results": results,
    }


@router.get("/deregulated-areas", response_model=DeregulatedAreasResponse)
async def list_deregulated_areas(db: Session = Depends(get_db)):
    """Directory of cities in the competitive market"""
    cities = ZipRoutingService(db).list_deregulated_cities()
    return {
        "success": True,
        "total_cities": len(cities),
        "total_zip_codes": sum(city["zip_code_count"] for city in cities),
        "cities": cities,
    }
