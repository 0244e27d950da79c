"""Command-line interface for ChooseMyPower routing API operations"""

import asyncio
import json
import sys
from typing import Optional

import click
import structlog

from choosemypower.config import settings
from choosemypower.database import Base, SessionLocal, engine
from choosemypower.errors import ChooseMyPowerError
from choosemypower.ingestion.zip_mappings import ZipMappingIngester
from choosemypower.log_config import configure_logging
from choosemypower.services.analytics import AnalyticsService
from choosemypower.services.api_log import ApiLogService
from choosemypower.services.plan_cache import PlanCacheService
from choosemypower.services.zip_routing import ZipRoutingService
import choosemypower.models  # noqa: F401

logger = structlog.get_logger()


def _echo_json(payload):
    click.echo(json.dumps(payload, indent=2, default=str))


@click.group()
def cli():
    """ChooseMyPower Routing API Management CLI"""
    configure_logging()


@cli.command("init-db")
def init_db():
    """Create any missing tables"""
    Base.metadata.create_all(bind=engine)
    click.echo("✅ Database tables ready")


@cli.command("import-zip-mappings")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--source", default="MANUAL", help="Data source for rows without a data_source column")
def import_zip_mappings(csv_path: str, source: str):
    """Load ZIP → city/TDSP mappings from a CSV file"""
    db = SessionLocal()
    try:
        result = ZipMappingIngester(db).ingest_file(csv_path, default_source=source.upper())
    except ValueError as e:
        click.echo(f"❌ Import failed: {e}", err=True)
        logger.error("CLI ZIP mapping import failed", path=csv_path, error=str(e))
        sys.exit(1)
    finally:
        db.close()

    click.echo("✅ ZIP mapping import completed")
    click.echo(f"   Rows read: {result['rows_read']}")
    click.echo(f"   Inserted: {result['inserted']}")
    click.echo(f"   Updated: {result['updated']}")
    click.echo(f"   Digest: {result['digest']}")
    if result["rejected"]:
        click.echo(f"⚠️  Rejected: {len(result['rejected'])}")
        for rejection in result["rejected"]:
            click.echo(f"   - row {rejection['row']}: {rejection['reason']}")


@cli.command()
@click.argument("zip_code")
@click.option("--address", "-a", help="Street address containing a ZIP+4")
def resolve(zip_code: str, address: Optional[str]):
    """Resolve a ZIP code to its city slug and TDSP"""
    db = SessionLocal()
    try:
        result = asyncio.run(ZipRoutingService(db).resolve(zip_code, address=address))
    except ChooseMyPowerError as e:
        click.echo(f"❌ {e.code}: {e.message}", err=True)
        sys.exit(1)
    finally:
        db.close()

    _echo_json(result)


@cli.command("resolve-bulk")
@click.argument("zip_codes", nargs=-1, required=True)
@click.option("--plan-count", is_flag=True, help="Attach cached plan counts")
def resolve_bulk(zip_codes, plan_count: bool):
    """Resolve several ZIP codes and report gaps"""
    db = SessionLocal()
    try:
        results = asyncio.run(ZipRoutingService(db).resolve_many(list(zip_codes), include_plan_count=plan_count))
    except ChooseMyPowerError as e:
        click.echo(f"❌ {e.code}: {e.message}", err=True)
        sys.exit(1)
    finally:
        db.close()

    _echo_json(results)
    failed = [r["zip_code"] for r in results if not r["success"]]
    if failed:
        click.echo(f"⚠️  {len(failed)} of {len(results)} ZIP codes unresolved: {', '.join(failed)}", err=True)


@cli.command("cache-stats")
def cache_stats():
    """Show plan cache counters"""
    db = SessionLocal()
    try:
        _echo_json(PlanCacheService(db).get_stats())
    finally:
        db.close()


@cli.command("clean-cache")
def clean_cache():
    """Delete expired plan cache rows"""
    db = SessionLocal()
    try:
        removed = PlanCacheService(db).clean_expired()
    finally:
        db.close()
    click.echo(f"🧹 Removed {removed} expired plan cache entries")


@cli.command("invalidate-cache")
@click.option("--duns", help="Only drop snapshots for this TDSP DUNS")
def invalidate_cache(duns: Optional[str]):
    """Drop cached plan snapshots regardless of expiry"""
    db = SessionLocal()
    try:
        removed = PlanCacheService(db).invalidate(duns)
    finally:
        db.close()
    scope = f"TDSP {duns}" if duns else "all TDSPs"
    click.echo(f"🗑️  Invalidated {removed} plan cache entries for {scope}")


@cli.command("clean-api-logs")
@click.option("--days", "-d", type=int, default=settings.api_log_retention_days, show_default=True,
              help="Delete API logs older than this many days")
def clean_api_logs(days: int):
    """Delete old API log rows"""
    db = SessionLocal()
    try:
        removed = ApiLogService(db).clean_old(days)
    finally:
        db.close()
    click.echo(f"🧹 Removed {removed} API log rows older than {days} days")


@cli.command()
@click.option("--hours", type=int, default=24, show_default=True, help="Trailing window (1-168)")
@click.option("--no-performance", is_flag=True, help="Skip latency and cache metrics")
def summarize(hours: int, no_performance: bool):
    """Summarize ZIP navigation events"""
    db = SessionLocal()
    try:
        summary = AnalyticsService(db).summarize(hours, include_performance=not no_performance)
    except ChooseMyPowerError as e:
        click.echo(f"❌ {e.code}: {e.message}", err=True)
        sys.exit(1)
    finally:
        db.close()

    _echo_json(summary)


if __name__ == "__main__":
    cli()
