"""ZIP navigation analytics: event recording and trailing-window summaries"""

from collections import Counter as TallyCounter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from choosemypower.errors import InvalidInputError
from choosemypower.models.api_log import ApiLog
from choosemypower.models.navigation_event import ERROR_EVENT_TYPES, NavigationEventType, ZipNavigationEvent
from choosemypower.services.api_log import ApiLogService
from choosemypower.services.plan_cache import CACHE_LOOKUP_ENDPOINT
from choosemypower.services.pricing_api import PLANS_PATH

logger = structlog.get_logger()

MIN_WINDOW_HOURS = 1
MAX_WINDOW_HOURS = 168
TOP_ZIP_LIMIT = 10
COVERAGE_GAP_LIMIT = 20
FAST_ROUTE_MS = 100


def validate_window_hours(window_hours: Any) -> int:
    if isinstance(window_hours, bool) or not isinstance(window_hours, int):
        raise InvalidInputError(f"hours must be an integer between {MIN_WINDOW_HOURS} and {MAX_WINDOW_HOURS}")
    if window_hours < MIN_WINDOW_HOURS or window_hours > MAX_WINDOW_HOURS:
        raise InvalidInputError(
            f"hours must be between {MIN_WINDOW_HOURS} and {MAX_WINDOW_HOURS}, got {window_hours}"
        )
    return window_hours


def gap_priority(request_count: int) -> str:
    if request_count >= 10:
        return "HIGH"
    if request_count >= 3:
        return "MEDIUM"
    return "LOW"


class AnalyticsService:
    """Record ZIP navigation events and summarize them over a trailing window"""

    def __init__(self, db: Session, clock=None):
        self.db = db
        self._now = clock or datetime.utcnow

    def record_event(
        self,
        zip_code: str,
        event_type: str,
        response_time_ms: float = 0.0,
        city_slug: Optional[str] = None,
        error_code: Optional[str] = None,
        user_agent: Optional[str] = None,
        referrer: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> ZipNavigationEvent:
        """Append one navigation event"""
        if event_type not in {t.value for t in NavigationEventType}:
            raise InvalidInputError(f"Unknown navigation event type: {event_type}")

        event = ZipNavigationEvent(
            zip_code=(zip_code or "")[:10],
            event_type=event_type,
            city_slug=city_slug,
            error_code=error_code,
            error_flag=event_type in ERROR_EVENT_TYPES,
            response_time_ms=float(response_time_ms or 0.0),
            user_agent=user_agent,
            referrer=referrer,
            occurred_at=occurred_at or self._now(),
        )
        self.db.add(event)
        self.db.commit()

        logger.info(
            "ZIP navigation tracked",
            event_type=event_type,
            zip_code=event.zip_code,
            response_time_ms=event.response_time_ms,
        )
        return event

    def summarize(self, window_hours: int, include_performance: bool = True) -> Dict[str, Any]:
        """
        Summarize navigation events in the trailing window.

        Args:
            window_hours: Window size in hours, 1..168
            include_performance: Add latency and cache metrics

        Returns:
            Dict with total_events, event_type_distribution, error_rate,
            top_zips, coverage_gaps, performance_metrics and time_range
        """
        window_hours = validate_window_hours(window_hours)
        end = self._now()
        start = end - timedelta(hours=window_hours)

        events = (
            self.db.query(ZipNavigationEvent)
            .filter(ZipNavigationEvent.occurred_at >= start, ZipNavigationEvent.occurred_at <= end)
            .all()
        )

        total_events = len(events)
        distribution = dict(TallyCounter(e.event_type for e in events))
        error_events = len([e for e in events if e.error_flag])
        error_rate = round(error_events / total_events, 4) if total_events else 0.0

        summary = {
            "time_range": {"hours": window_hours, "start": start, "end": end},
            "total_events": total_events,
            "event_type_distribution": distribution,
            "error_rate": error_rate,
            "top_zips": self._top_zips(events),
            "coverage_gaps": self._coverage_gaps(events),
            "performance_metrics": None,
        }
        if include_performance:
            summary["performance_metrics"] = self._performance(events, start, end)

        logger.info(
            "ZIP navigation summary generated",
            window_hours=window_hours,
            total_events=total_events,
            error_rate=error_rate,
            coverage_gaps=len(summary["coverage_gaps"]),
        )
        return summary

    def _top_zips(self, events: List[ZipNavigationEvent]) -> List[Dict[str, Any]]:
        usage: Dict[str, Dict[str, float]] = {}
        for event in events:
            stats = usage.setdefault(event.zip_code, {"count": 0, "total_time": 0.0})
            stats["count"] += 1
            stats["total_time"] += event.response_time_ms or 0.0

        ranked = sorted(usage.items(), key=lambda item: (-item[1]["count"], item[0]))
        return [
            {
                "zip_code": zip_code,
                "count": int(stats["count"]),
                "avg_response_time": round(stats["total_time"] / stats["count"], 2),
            }
            for zip_code, stats in ranked[:TOP_ZIP_LIMIT]
        ]

    def _coverage_gaps(self, events: List[ZipNavigationEvent]) -> List[Dict[str, Any]]:
        gaps: Dict[str, Dict[str, Any]] = {}
        for event in events:
            if event.event_type != NavigationEventType.COVERAGE_GAP.value:
                continue
            gap = gaps.get(event.zip_code)
            if gap is None:
                gaps[event.zip_code] = {
                    "zip_code": event.zip_code,
                    "request_count": 1,
                    "first_requested": event.occurred_at,
                    "last_requested": event.occurred_at,
                }
                continue
            gap["request_count"] += 1
            gap["first_requested"] = min(gap["first_requested"], event.occurred_at)
            gap["last_requested"] = max(gap["last_requested"], event.occurred_at)

        ranked = sorted(gaps.values(), key=lambda g: (-g["request_count"], g["zip_code"]))[:COVERAGE_GAP_LIMIT]
        for gap in ranked:
            gap["priority"] = gap_priority(gap["request_count"])
        return ranked

    def _performance(self, events: List[ZipNavigationEvent], start: datetime, end: datetime) -> Dict[str, Any]:
        timings = [e.response_time_ms for e in events if e.response_time_ms is not None]
        fast_routes = {
            e.zip_code for e in events
            if e.event_type == NavigationEventType.LOOKUP_SUCCESS.value and (e.response_time_ms or 0) < FAST_ROUTE_MS
        }

        lookups = (
            self.db.query(ApiLog.params)
            .filter(
                ApiLog.endpoint == CACHE_LOOKUP_ENDPOINT,
                ApiLog.created_at >= start,
                ApiLog.created_at <= end,
            )
            .all()
        )
        statuses = [(row.params or {}).get("cache_status") for row in lookups]
        hits = statuses.count("hit")
        misses = len([s for s in statuses if s in ("miss", "stale", "error")])
        cache_effectiveness = round(hits / (hits + misses) * 100, 2) if (hits + misses) else 0.0

        return {
            "average_response_time": round(sum(timings) / len(timings), 2) if timings else 0.0,
            "fast_routes_count": len(fast_routes),
            "cache_effectiveness": cache_effectiveness,
            "upstream": ApiLogService(self.db, clock=self._now).performance_metrics(
                endpoint=PLANS_PATH, since=start, until=end
            ),
        }
