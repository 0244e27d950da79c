"""ZIP navigation analytics endpoints"""

from datetime import timezone

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from choosemypower.database import get_db
from choosemypower.errors import ChooseMyPowerError, InvalidInputError
from choosemypower.ratelimit import ANALYTICS_LIMIT, limiter
from choosemypower.schemas.analytics import NavigationAnalyticsResponse, NavigationEventCreate
from choosemypower.schemas.common import ErrorResponse
from choosemypower.services.analytics import AnalyticsService, MAX_WINDOW_HOURS, MIN_WINDOW_HOURS

logger = structlog.get_logger()

router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _parse_hours(raw: str) -> int:
    value = (raw or "").strip()
    if not value.isdigit():
        raise InvalidInputError(
            f"hours must be an integer between {MIN_WINDOW_HOURS} and {MAX_WINDOW_HOURS}, got {raw!r}"
        )
    return int(value)


def _naive_utc(value):
    # Stored timestamps are naive UTC
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _to_response(summary) -> NavigationAnalyticsResponse:
    performance = summary["performance_metrics"]
    return NavigationAnalyticsResponse(
        data={
            "time_range": summary["time_range"],
            "insights": {
                "total_events": summary["total_events"],
                "event_distribution": summary["event_type_distribution"],
                "error_rate": summary["error_rate"],
                "top_zip_codes": summary["top_zips"],
                "coverage_gaps": summary["coverage_gaps"],
                "performance": performance,
            },
        }
    )


@router.get(
    "/zip-navigation",
    response_model=NavigationAnalyticsResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
@limiter.limit(ANALYTICS_LIMIT)
async def zip_navigation_insights(
    request: Request,
    hours: str = Query("24", description="Trailing window in hours (1-168)"),
    performance: bool = Query(True, description="Include latency and cache metrics"),
    db: Session = Depends(get_db),
):
    """Navigation insights over the trailing window"""
    try:
        summary = AnalyticsService(db).summarize(_parse_hours(hours), include_performance=performance)
    except ChooseMyPowerError:
        raise
    except Exception as e:
        logger.error("ZIP navigation analytics failed", hours=hours, error=str(e), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": {"code": "ANALYTICS_ERROR", "message": "Failed to retrieve ZIP navigation analytics"},
            },
        )
    return _to_response(summary)


@router.post("/zip-navigation", status_code=201)
@limiter.limit(ANALYTICS_LIMIT)
async def track_zip_navigation(
    request: Request,
    event: NavigationEventCreate,
    db: Session = Depends(get_db),
):
    """Record a client-side ZIP navigation event"""
    recorded = AnalyticsService(db).record_event(
        zip_code=event.zip_code,
        event_type=event.event_type,
        response_time_ms=event.response_time,
        city_slug=event.city_resolved,
        error_code=event.error_code,
        user_agent=event.user_agent or request.headers.get("user-agent"),
        referrer=event.referrer,
        occurred_at=_naive_utc(event.timestamp),
    )
    return {"success": True, "data": {"recorded": True, "eventId": str(recorded.id)}}


@router.options("/zip-navigation")
async def zip_navigation_options():
    return Response(status_code=204, headers=CORS_HEADERS)
