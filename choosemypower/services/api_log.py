"""API call logging service"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from choosemypower.models.api_log import ApiLog

logger = structlog.get_logger()

SLOW_CALL_MS = 5000


def _percentile(sorted_values, fraction: float) -> float:
    if not sorted_values:
        return 0.0
    index = min(int(len(sorted_values) * fraction), len(sorted_values) - 1)
    return float(sorted_values[index])


class ApiLogService:
    """Append-only record of upstream API calls for observability"""

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self._now = clock or datetime.utcnow

    def record(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]],
        response_status: Optional[int],
        response_time_ms: float,
        error_message: Optional[str] = None,
    ) -> Optional[ApiLog]:
        """
        Store one API log row.

        Logging never fails the caller's request: a write failure is rolled
        back and reported through structlog, and None is returned.
        """
        record = ApiLog(
            endpoint=endpoint,
            params=params,
            response_status=response_status,
            response_time_ms=int(round(response_time_ms)),
            error_message=error_message,
            created_at=self._now(),
        )
        try:
            self.db.add(record)
            self.db.commit()
            return record
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to store API log", endpoint=endpoint, error=str(e))
            return None

    def count_since(self, since: datetime, endpoint: Optional[str] = None) -> int:
        query = self.db.query(func.count(ApiLog.id)).filter(ApiLog.created_at >= since)
        if endpoint:
            query = query.filter(ApiLog.endpoint == endpoint)
        return query.scalar() or 0

    def performance_metrics(
        self,
        hours: int = 24,
        endpoint: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Latency and error statistics over the trailing window

        Args:
            hours: Number of hours to look back
            endpoint: Restrict to one endpoint (all endpoints when None)
            since: Window start; overrides ``hours`` when given
            until: Window end (open-ended when None)

        Returns:
            Dict with avg/p95/p99 latency, error rate (%), totals and slow calls
        """
        cutoff_time = since if since is not None else self._now() - timedelta(hours=hours)
        query = self.db.query(ApiLog.response_time_ms, ApiLog.response_status).filter(
            ApiLog.created_at >= cutoff_time
        )
        if until is not None:
            query = query.filter(ApiLog.created_at <= until)
        if endpoint:
            query = query.filter(ApiLog.endpoint == endpoint)
        rows = query.all()

        if not rows:
            return {
                "avg_response_time": 0.0,
                "p95_response_time": 0.0,
                "p99_response_time": 0.0,
                "error_rate": 0.0,
                "total_requests": 0,
                "slow_queries": 0,
            }

        latencies = sorted(r.response_time_ms for r in rows if r.response_time_ms is not None)
        errors = len([r for r in rows if r.response_status is None or r.response_status >= 400])

        return {
            "avg_response_time": round(sum(latencies) / len(latencies), 2) if latencies else 0.0,
            "p95_response_time": _percentile(latencies, 0.95),
            "p99_response_time": _percentile(latencies, 0.99),
            "error_rate": round(errors / len(rows) * 100, 2),
            "total_requests": len(rows),
            "slow_queries": len([v for v in latencies if v > SLOW_CALL_MS]),
        }

    def clean_old(self, days_old: int) -> int:
        """Delete log rows older than ``days_old`` days; returns rows removed"""
        cutoff_time = self._now() - timedelta(days=days_old)
        removed = self.db.query(ApiLog).filter(ApiLog.created_at < cutoff_time).delete(synchronize_session=False)
        self.db.commit()
        logger.info("Cleaned old API logs", removed=removed, days_old=days_old)
        return removed
