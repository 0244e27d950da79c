"""ZIP code to city / TDSP routing service"""

import re
from datetime import datetime
from fnmatch import fnmatchcase
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from choosemypower.errors import CoverageGapError, DatastoreError, InvalidInputError
from choosemypower.models.plan_cache import PlanCacheEntry
from choosemypower.models.zip_mapping import ZipMapping

logger = structlog.get_logger()

ZIP5_RE = re.compile(r"^[0-9]{5}$")
ZIP_PLUS4_RE = re.compile(r"\b([0-9]{5})-?([0-9]{4})\b")

BULK_LIMIT = 100

# Texas ZIP ranges (Austin IRS ZIPs 733xx sit outside the 75-79 block)
TEXAS_ZIP_RANGES = [(75000, 79999), (88500, 88599), (73301, 73301), (73344, 73344)]


def is_texas_zip(zip_code: str) -> bool:
    """True when a well-formed 5-digit ZIP falls in a Texas range"""
    value = int(zip_code)
    return any(low <= value <= high for low, high in TEXAS_ZIP_RANGES)


def validate_zip_code(zip_code: Any) -> str:
    """Return the ZIP unchanged or raise InvalidInputError"""
    if not isinstance(zip_code, str) or not ZIP5_RE.match(zip_code):
        raise InvalidInputError(
            f"ZIP code must be exactly 5 digits, got {zip_code!r}",
            code="INVALID_ZIP",
        )
    return zip_code


def extract_plus4(zip_code: str, address: Optional[str]) -> Optional[str]:
    """Find the ZIP+4 extension for ``zip_code`` inside a free-form address"""
    if not address:
        return None
    for match in ZIP_PLUS4_RE.finditer(address):
        if match.group(1) == zip_code:
            return match.group(2)
    return None


class ZipRoutingService:
    """Resolve ZIP codes to a city slug and TDSP using the mapping store"""

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self._now = clock or datetime.utcnow

    async def resolve(
        self,
        zip_code: str,
        address: Optional[str] = None,
        include_plan_count: bool = False,
    ) -> Dict[str, Any]:
        """
        Resolve a ZIP code (and optional street address) to its routing target.

        Selection among several rows for the same ZIP:
        1. rows whose zip_plus4_pattern matches the address's ZIP+4
        2. highest priority
        3. smallest city_slug

        With include_plan_count the result also carries plan_count and
        has_plans, read from live plan cache rows for the resolved TDSP.

        Raises:
            InvalidInputError: malformed ZIP (no datastore access happens)
            CoverageGapError: no mapping row for the ZIP
            DatastoreError: the mapping store could not be read
        """
        zip_code = validate_zip_code(zip_code)
        plus4 = extract_plus4(zip_code, address)

        rows = self._load_candidates(zip_code)
        if not rows:
            texas = is_texas_zip(zip_code)
            logger.info("ZIP coverage gap", zip_code=zip_code, is_texas=texas)
            raise CoverageGapError(
                zip_code,
                message=(
                    f"ZIP code {zip_code} is not in our Texas service area data"
                    if texas else f"ZIP code {zip_code} is outside Texas"
                ),
                details={"is_texas": texas},
            )

        selected, match_method = self._select_candidate(rows, zip_code, plus4)

        logger.info(
            "ZIP resolved",
            zip_code=zip_code,
            plus4=plus4,
            city_slug=selected.city_slug,
            tdsp_duns=selected.tdsp_duns,
            match_method=match_method,
            candidates=len(rows),
        )
        result = self._to_result(selected, match_method, len(rows))
        if include_plan_count:
            plan_count = self.plan_count(selected.tdsp_duns)
            result["plan_count"] = plan_count
            result["has_plans"] = None if plan_count is None else plan_count > 0
        return result

    async def resolve_many(self, zip_codes: List[str], include_plan_count: bool = False) -> List[Dict[str, Any]]:
        """
        Resolve a batch of ZIP codes for admin and analytics use.

        Duplicates are resolved once, in first-seen order. Invalid and unmapped
        ZIPs are reported per entry; a datastore failure aborts the batch.
        """
        if not zip_codes:
            raise InvalidInputError("zip_codes must contain at least one ZIP code")
        unique = list(dict.fromkeys(zip_codes))
        if len(unique) > BULK_LIMIT:
            raise InvalidInputError(f"At most {BULK_LIMIT} ZIP codes per request, got {len(unique)}")

        results = []
        for zip_code in unique:
            try:
                data = await self.resolve(zip_code, include_plan_count=include_plan_count)
            except (InvalidInputError, CoverageGapError) as e:
                results.append({"zip_code": zip_code, "success": False, "error": e.to_dict()["error"]})
                continue
            results.append({"zip_code": zip_code, "success": True, "data": data})

        logger.info(
            "Bulk ZIP resolution complete",
            requested=len(zip_codes),
            resolved=len([r for r in results if r["success"]]),
            failed=len([r for r in results if not r["success"]]),
        )
        return results

    def plan_count(self, tdsp_duns: str) -> Optional[int]:
        """Largest plan count among live cache rows for a TDSP; None when the cache is unreadable"""
        try:
            count = (
                self.db.query(func.max(PlanCacheEntry.plan_count))
                .filter(PlanCacheEntry.tdsp_duns == tdsp_duns, PlanCacheEntry.expires_at > self._now())
                .scalar()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Plan count lookup failed", tdsp_duns=tdsp_duns, error=str(e))
            return None
        return count or 0

    def _load_candidates(self, zip_code: str) -> List[ZipMapping]:
        try:
            return self.db.query(ZipMapping).filter(ZipMapping.zip_code == zip_code).all()
        except SQLAlchemyError as e:
            logger.error("ZIP mapping lookup failed", zip_code=zip_code, error=str(e))
            raise DatastoreError(f"ZIP mapping lookup failed for {zip_code}") from e

    def _select_candidate(self, rows: List[ZipMapping], zip_code: str, plus4: Optional[str]):
        """Deterministic choice among rows for one ZIP; returns (row, match_method)"""
        if len(rows) == 1 and not plus4:
            return rows[0], "zip5"

        pool = rows
        match_method = "priority" if len(rows) > 1 else "zip5"
        if plus4:
            full_zip = f"{zip_code}-{plus4}"
            pattern_hits = [
                row for row in rows
                if row.zip_plus4_pattern and fnmatchcase(full_zip, row.zip_plus4_pattern)
            ]
            if pattern_hits:
                pool = pattern_hits
                match_method = "zip+4"

        ranked = sorted(pool, key=lambda row: (-(row.priority or 0.0), row.city_slug))
        return ranked[0], match_method

    def _to_result(self, row: ZipMapping, match_method: str, candidate_count: int) -> Dict[str, Any]:
        return {
            "zip_code": row.zip_code,
            "city_slug": row.city_slug,
            "city_name": row.city_name,
            "county_name": row.county_name,
            "tdsp_duns": row.tdsp_duns,
            "tdsp_territory": row.tdsp_territory,
            "market_zone": row.market_zone,
            "is_deregulated": bool(row.is_deregulated),
            "is_competitive": bool(row.is_deregulated),
            "match_method": match_method,
            "candidate_count": candidate_count,
            "redirect_url": f"/electricity-plans/{row.city_slug}/",
        }

    def list_deregulated_cities(self) -> List[Dict[str, Any]]:
        """Deregulated city directory with ZIP counts, ordered by city name"""
        try:
            rows = (
                self.db.query(
                    ZipMapping.city_slug,
                    ZipMapping.city_name,
                    ZipMapping.market_zone,
                    ZipMapping.tdsp_territory,
                    ZipMapping.tdsp_duns,
                    func.count(func.distinct(ZipMapping.zip_code)),
                )
                .filter(ZipMapping.is_deregulated.is_(True))
                .group_by(
                    ZipMapping.city_slug,
                    ZipMapping.city_name,
                    ZipMapping.market_zone,
                    ZipMapping.tdsp_territory,
                    ZipMapping.tdsp_duns,
                )
                .order_by(ZipMapping.city_name, ZipMapping.city_slug)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error("Deregulated city listing failed", error=str(e))
            raise DatastoreError("Deregulated city listing failed") from e

        # A city served by two TDSPs shows up once, under the TDSP with more ZIPs
        cities: Dict[str, Dict[str, Any]] = {}
        for slug, name, zone, territory, duns, zip_count in rows:
            current = cities.get(slug)
            if current is None:
                cities[slug] = {
                    "city_name": name,
                    "city_slug": slug,
                    "market_zone": zone,
                    "tdsp_territory": territory,
                    "tdsp_duns": duns,
                    "zip_code_count": zip_count,
                }
                continue
            if zip_count > current["zip_code_count"]:
                current.update(market_zone=zone, tdsp_territory=territory, tdsp_duns=duns)
            current["zip_code_count"] += zip_count

        return list(cities.values())
