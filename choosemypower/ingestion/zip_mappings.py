"""
ZIP mapping ingester

Loads ZIP → city / TDSP territory rows from a CSV export (USPS, TDU, PUCT or
manual research) into the zip_mappings table. Rows are upserted on
(zip_code, city_slug) so re-running an import refreshes existing mappings.
"""

import hashlib
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd
import structlog
from sqlalchemy.orm import Session

from choosemypower.database import upsert_statement
from choosemypower.models.zip_mapping import DataSource, MarketZone, ZipMapping

logger = structlog.get_logger()

REQUIRED_COLUMNS = [
    "zip_code", "city_name", "city_slug", "tdsp_territory", "tdsp_duns", "market_zone",
]

# Accept the camelCase headers of the site's JSON/CSV exports too
COLUMN_ALIASES = {
    "zipCode": "zip_code",
    "zipPlus4Pattern": "zip_plus4_pattern",
    "cityName": "city_name",
    "citySlug": "city_slug",
    "countyName": "county_name",
    "tdspTerritory": "tdsp_territory",
    "tdspDuns": "tdsp_duns",
    "isDeregulated": "is_deregulated",
    "marketZone": "market_zone",
    "lastValidated": "last_validated",
    "dataSource": "data_source",
}

UPDATE_COLUMNS = [
    "zip_plus4_pattern", "city_name", "county_name", "tdsp_territory", "tdsp_duns",
    "is_deregulated", "market_zone", "priority", "last_validated", "data_source", "updated_at",
]

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
TRUE_VALUES = {"true", "t", "yes", "y", "1"}
FALSE_VALUES = {"false", "f", "no", "n", "0"}


def _clean(value: Any) -> Optional[str]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


class ZipMappingIngester:
    """Validate and upsert ZIP mapping rows"""

    def __init__(self, db: Session):
        self.db = db

    def ingest_file(self, path: Union[str, Path], default_source: str = DataSource.MANUAL.value) -> Dict[str, Any]:
        """
        Import a CSV file.

        Returns:
            Summary with rows_read, inserted, updated, rejected (with reasons)
            and the SHA-256 digest of the source file
        """
        path = Path(path)
        content = path.read_bytes()
        digest = hashlib.sha256(content).hexdigest()

        df = pd.read_csv(path, dtype=str, keep_default_na=False)
        logger.info("Loaded ZIP mapping file", path=str(path), rows=len(df), digest=digest[:12])

        result = self.ingest_frame(df, default_source=default_source)
        result["source_file"] = str(path)
        result["digest"] = digest
        return result

    def ingest_frame(self, df: pd.DataFrame, default_source: str = DataSource.MANUAL.value) -> Dict[str, Any]:
        df = df.rename(columns=COLUMN_ALIASES)
        missing = [column for column in REQUIRED_COLUMNS if column not in df.columns]
        if missing:
            raise ValueError(f"ZIP mapping data is missing required columns: {', '.join(missing)}")

        valid_rows: List[Dict[str, Any]] = []
        rejected: List[Dict[str, Any]] = []
        seen = set()

        for position, record in enumerate(df.to_dict(orient="records"), start=1):
            row, error = self._validate_row(record, default_source)
            if error:
                rejected.append({"row": position, "zip_code": _clean(record.get("zip_code")), "reason": error})
                continue
            key = (row["zip_code"], row["city_slug"])
            if key in seen:
                rejected.append({"row": position, "zip_code": row["zip_code"], "reason": "duplicate zip_code/city_slug in file"})
                continue
            seen.add(key)
            valid_rows.append(row)

        existing = {
            (zip_code, slug)
            for zip_code, slug in self.db.query(ZipMapping.zip_code, ZipMapping.city_slug).all()
        }

        now = datetime.utcnow()
        for row in valid_rows:
            values = {**row, "created_at": now, "updated_at": now}
            stmt = upsert_statement(
                self.db, ZipMapping, values,
                conflict_columns=["zip_code", "city_slug"],
                update_columns=UPDATE_COLUMNS,
            )
            self.db.execute(stmt)
        self.db.commit()

        updated = len([r for r in valid_rows if (r["zip_code"], r["city_slug"]) in existing])
        summary = {
            "rows_read": len(df),
            "inserted": len(valid_rows) - updated,
            "updated": updated,
            "rejected": rejected,
        }
        logger.info(
            "ZIP mapping import complete",
            rows_read=summary["rows_read"],
            inserted=summary["inserted"],
            updated=summary["updated"],
            rejected=len(rejected),
        )
        return summary

    def _validate_row(self, record: Dict[str, Any], default_source: str):
        """Return (normalized_row, None) or (None, reason)"""
        zip_code = _clean(record.get("zip_code"))
        if not zip_code or len(zip_code) != 5 or not zip_code.isdigit():
            return None, f"invalid zip_code {zip_code!r}"

        city_slug = _clean(record.get("city_slug"))
        if not city_slug or not SLUG_RE.match(city_slug):
            return None, f"invalid city_slug {city_slug!r}"

        city_name = _clean(record.get("city_name"))
        territory = _clean(record.get("tdsp_territory"))
        if not city_name or not territory:
            return None, "city_name and tdsp_territory are required"

        duns = _clean(record.get("tdsp_duns"))
        if not duns or not duns.isdigit():
            return None, f"invalid tdsp_duns {duns!r}"

        zone = _clean(record.get("market_zone"))
        zones = {z.value.lower(): z.value for z in MarketZone}
        if not zone or zone.lower() not in zones:
            return None, f"unknown market_zone {zone!r}"

        source = (_clean(record.get("data_source")) or default_source).upper()
        if source not in {s.value for s in DataSource}:
            return None, f"unknown data_source {source!r}"

        pattern = _clean(record.get("zip_plus4_pattern"))
        if pattern and len(pattern) > 10:
            return None, f"zip_plus4_pattern longer than 10 characters: {pattern!r}"

        raw_priority = _clean(record.get("priority"))
        try:
            priority = float(raw_priority) if raw_priority is not None else 1.0
        except ValueError:
            return None, f"invalid priority {raw_priority!r}"

        raw_dereg = (_clean(record.get("is_deregulated")) or "true").lower()
        if raw_dereg in TRUE_VALUES:
            is_deregulated = True
        elif raw_dereg in FALSE_VALUES:
            is_deregulated = False
        else:
            return None, f"invalid is_deregulated {raw_dereg!r}"

        raw_validated = _clean(record.get("last_validated"))
        last_validated = None
        if raw_validated:
            try:
                last_validated = pd.Timestamp(raw_validated).to_pydatetime().replace(tzinfo=None)
            except ValueError:
                return None, f"invalid last_validated {raw_validated!r}"

        return {
            "zip_code": zip_code,
            "zip_plus4_pattern": pattern,
            "city_name": city_name,
            "city_slug": city_slug,
            "county_name": _clean(record.get("county_name")),
            "tdsp_territory": territory,
            "tdsp_duns": duns,
            "is_deregulated": is_deregulated,
            "market_zone": zones[zone.lower()],
            "priority": priority,
            "last_validated": last_validated,
            "data_source": source,
        }, None
