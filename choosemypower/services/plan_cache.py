"""Database-backed plan cache in front of the upstream pricing API"""

import asyncio
import json
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog
from prometheus_client import Counter
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from choosemypower.config import settings
from choosemypower.database import upsert_statement
from choosemypower.errors import InvalidInputError, UpstreamFetchError
from choosemypower.models.plan_cache import PlanCacheEntry
from choosemypower.services.api_log import ApiLogService
from choosemypower.services.pricing_api import PLANS_PATH, PricingAPIClient

logger = structlog.get_logger()

CACHE_LOOKUP_ENDPOINT = "plan_cache"

PLAN_CACHE_LOOKUPS = Counter(
    "plan_cache_lookups_total",
    "Plan cache lookups by outcome",
    ["outcome"]
)


def build_cache_key(tdsp_duns: str, usage_params: Optional[Dict[str, Any]] = None) -> str:
    """Canonical key: JSON of {tdsp_duns, **usage_params} with sorted keys"""
    payload = {"tdsp_duns": tdsp_duns, **(usage_params or {})}
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def lowest_rate(plans: List[Dict[str, Any]]) -> float:
    rates = [float(p["pricing"]["rate"]) for p in plans if p.get("pricing") and p["pricing"].get("rate")]
    return min(rates) if rates else 0.0


class InflightFetches:
    """Per-key locks so one process issues at most one upstream fetch per key"""

    def __init__(self):
        self.locks: Dict[str, asyncio.Lock] = {}
        self.waiters: Dict[str, int] = {}

    def _get_lock(self, key: str) -> asyncio.Lock:
        """Get or create lock for key"""
        if key not in self.locks:
            self.locks[key] = asyncio.Lock()
        return self.locks[key]

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._get_lock(key)
        self.waiters[key] = self.waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # Drop the lock once the last holder or waiter for the key is done
            remaining = self.waiters.get(key, 1) - 1
            if remaining:
                self.waiters[key] = remaining
            else:
                self.waiters.pop(key, None)
                self.locks.pop(key, None)

    def clear(self):
        self.locks.clear()
        self.waiters.clear()


inflight_fetches = InflightFetches()


class PlanCacheService:
    """Serve plan snapshots from the plan_cache table, refreshing from upstream on miss"""

    def __init__(
        self,
        db: Session,
        client: Optional[PricingAPIClient] = None,
        ttl_seconds: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
        inflight: Optional[InflightFetches] = None,
    ):
        self.db = db
        self.client = client or PricingAPIClient()
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.plan_cache_ttl_seconds
        self._now = clock or datetime.utcnow
        self.inflight = inflight or inflight_fetches
        self.api_log = ApiLogService(db, clock=self._now)

    async def get_or_fetch(self, tdsp_duns: str, usage_params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Return the plan snapshot for a TDSP and usage parameters.

        A live row (expires_at > now) is returned without an upstream call.
        Otherwise the upstream API is called and the result upserted. If the
        upstream fails and an expired row exists, that row is served with
        source="stale"; without one the UpstreamFetchError propagates.
        """
        tdsp_duns = self._validate_duns(tdsp_duns)
        params = self._normalize_usage(usage_params)
        cache_key = build_cache_key(tdsp_duns, params)
        start_time = time.time()

        entry = self._read_entry(cache_key)
        if self._is_live(entry):
            return self._serve_hit(entry, start_time)

        async with self.inflight.hold(cache_key):
            # Another request may have refreshed the key while we waited
            entry = self._read_entry(cache_key)
            if self._is_live(entry):
                return self._serve_hit(entry, start_time)
            return await self._refresh(cache_key, tdsp_duns, params, entry, start_time)

    def _validate_duns(self, tdsp_duns: Any) -> str:
        if not isinstance(tdsp_duns, str) or not tdsp_duns.strip().isdigit():
            raise InvalidInputError(f"TDSP DUNS must be a numeric string, got {tdsp_duns!r}", code="INVALID_TDSP")
        return tdsp_duns.strip()

    def _normalize_usage(self, usage_params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        params = dict(usage_params or {})
        if "displayUsage" in params:
            params["display_usage"] = params.pop("displayUsage")
        display_usage = params.get("display_usage", settings.default_display_usage)
        if isinstance(display_usage, bool) or not isinstance(display_usage, int) or display_usage <= 0:
            raise InvalidInputError(f"display_usage must be a positive integer, got {display_usage!r}")
        params["display_usage"] = display_usage
        return params

    def _is_live(self, entry: Optional[PlanCacheEntry]) -> bool:
        # An entry expiring exactly now is already expired
        return entry is not None and entry.expires_at > self._now()

    def _read_entry(self, cache_key: str) -> Optional[PlanCacheEntry]:
        """Cache row for the key, or None when missing, unreadable or corrupted"""
        try:
            entry = (
                self.db.query(PlanCacheEntry)
                .filter(PlanCacheEntry.cache_key == cache_key)
                .execution_options(populate_existing=True)
                .first()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Plan cache read failed, falling back to upstream", cache_key=cache_key, error=str(e))
            return None

        if entry is not None and not isinstance(entry.plans_data, list):
            logger.warning("Ignoring corrupted plan cache entry", cache_key=cache_key)
            return None
        return entry

    def _serve_hit(self, entry: PlanCacheEntry, start_time: float) -> Dict[str, Any]:
        PLAN_CACHE_LOOKUPS.labels(outcome="hit").inc()
        snapshot = self._snapshot_from_entry(entry, "cache")
        logger.debug("Plan cache hit", cache_key=entry.cache_key, plan_count=entry.plan_count)
        self._log_lookup(snapshot["cache_key"], snapshot["tdsp_duns"], "hit", 200, start_time)
        return snapshot

    async def _refresh(
        self,
        cache_key: str,
        tdsp_duns: str,
        params: Dict[str, Any],
        stale_entry: Optional[PlanCacheEntry],
        start_time: float,
    ) -> Dict[str, Any]:
        upstream_params = {"tdsp_duns": tdsp_duns, **params}
        stale_snapshot = self._snapshot_from_entry(stale_entry, "stale") if stale_entry is not None else None
        fetch_start = time.time()
        try:
            plans = await self.client.fetch_plans(tdsp_duns, params)
        except UpstreamFetchError as e:
            self.api_log.record(
                PLANS_PATH, upstream_params, e.upstream_status,
                (time.time() - fetch_start) * 1000, error_message=e.message,
            )
            if stale_snapshot is not None:
                PLAN_CACHE_LOOKUPS.labels(outcome="stale").inc()
                logger.warning(
                    "Serving stale plan cache entry after upstream failure",
                    cache_key=cache_key,
                    expired_at=stale_snapshot["expires_at"].isoformat(),
                    error=e.message,
                )
                self._log_lookup(cache_key, tdsp_duns, "stale", 200, start_time, error=e.message)
                return stale_snapshot

            PLAN_CACHE_LOOKUPS.labels(outcome="error").inc()
            logger.error("Plan fetch failed with no cached fallback", cache_key=cache_key, error=e.message)
            self._log_lookup(cache_key, tdsp_duns, "error", e.status_code, start_time, error=e.message)
            raise

        self.api_log.record(
            PLANS_PATH, upstream_params, getattr(self.client, "last_status", None) or 200,
            (time.time() - fetch_start) * 1000,
        )

        now = self._now()
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        rate = lowest_rate(plans)
        try:
            self._upsert(cache_key, tdsp_duns, plans, rate, now, expires_at)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Plan cache write failed, serving fresh upstream result", cache_key=cache_key, error=str(e))

        PLAN_CACHE_LOOKUPS.labels(outcome="miss").inc()
        logger.info("Plan cache refreshed", cache_key=cache_key, plan_count=len(plans), lowest_rate=rate)
        self._log_lookup(cache_key, tdsp_duns, "miss", 200, start_time)

        return {
            "cache_key": cache_key,
            "tdsp_duns": tdsp_duns,
            "plans": plans,
            "plan_count": len(plans),
            "lowest_rate": rate,
            "cached_at": now,
            "expires_at": expires_at,
            "source": "upstream",
        }

    def _upsert(
        self,
        cache_key: str,
        tdsp_duns: str,
        plans: List[Dict[str, Any]],
        rate: float,
        now: datetime,
        expires_at: datetime,
    ):
        """Insert or overwrite the row for cache_key; created_at keeps the first insert's value"""
        stmt = upsert_statement(
            self.db,
            PlanCacheEntry,
            values={
                "cache_key": cache_key,
                "tdsp_duns": tdsp_duns,
                "plans_data": plans,
                "plan_count": len(plans),
                "lowest_rate": rate,
                "cached_at": now,
                "expires_at": expires_at,
                "created_at": now,
            },
            conflict_columns=["cache_key"],
            update_columns=["tdsp_duns", "plans_data", "plan_count", "lowest_rate", "cached_at", "expires_at"],
        )
        self.db.execute(stmt)
        self.db.commit()

    def _log_lookup(
        self,
        cache_key: str,
        tdsp_duns: str,
        outcome: str,
        status: int,
        start_time: float,
        error: Optional[str] = None,
    ):
        self.api_log.record(
            CACHE_LOOKUP_ENDPOINT,
            {"cache_key": cache_key, "tdsp_duns": tdsp_duns, "cache_status": outcome},
            status,
            (time.time() - start_time) * 1000,
            error_message=error,
        )

    def _snapshot_from_entry(self, entry: PlanCacheEntry, source: str) -> Dict[str, Any]:
        return {
            "cache_key": entry.cache_key,
            "tdsp_duns": entry.tdsp_duns,
            "plans": list(entry.plans_data),
            "plan_count": entry.plan_count,
            "lowest_rate": entry.lowest_rate,
            "cached_at": entry.cached_at,
            "expires_at": entry.expires_at,
            "source": source,
        }

    def clean_expired(self) -> int:
        """Delete expired rows; returns rows removed"""
        removed = (
            self.db.query(PlanCacheEntry)
            .filter(PlanCacheEntry.expires_at <= self._now())
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info("Cleaned expired plan cache entries", removed=removed)
        return removed

    def invalidate(self, tdsp_duns: Optional[str] = None) -> int:
        """Drop cached snapshots for one TDSP (or all of them)"""
        query = self.db.query(PlanCacheEntry)
        if tdsp_duns:
            query = query.filter(PlanCacheEntry.tdsp_duns == tdsp_duns)
        removed = query.delete(synchronize_session=False)
        self.db.commit()
        logger.info("Invalidated plan cache entries", tdsp_duns=tdsp_duns, removed=removed)
        return removed

    def get_stats(self) -> Dict[str, Any]:
        """Cache entry counts and API log volume over the last 24 hours"""
        now = self._now()
        total = self.db.query(func.count(PlanCacheEntry.id)).scalar() or 0
        active = self.db.query(func.count(PlanCacheEntry.id)).filter(PlanCacheEntry.expires_at > now).scalar() or 0
        return {
            "total_cache_entries": total,
            "active_cache_entries": active,
            "api_calls_last_24h": self.api_log.count_since(now - timedelta(hours=24)),
            "timestamp": now,
        }
