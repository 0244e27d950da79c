"""Operations CLI tests"""

import json

from click.testing import CliRunner

from choosemypower.cli import cli

HEADER = "zip_code,city_name,city_slug,county_name,tdsp_territory,tdsp_duns,market_zone\n"


def test_import_then_resolve(db_session, tmp_path):
    csv_path = tmp_path / "mappings.csv"
    csv_path.write_text(HEADER + "75201,Dallas,dallas-tx,Dallas,Oncor Electric Delivery,1039940674000,North\n")
    runner = CliRunner()

    result = runner.invoke(cli, ["import-zip-mappings", str(csv_path)])
    assert result.exit_code == 0, result.output
    assert "Inserted: 1" in result.output

    result = runner.invoke(cli, ["resolve", "75201"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["city_slug"] == "dallas-tx"


def test_resolve_unknown_zip_exits_nonzero(db_session):
    result = CliRunner().invoke(cli, ["resolve", "00000"])

    assert result.exit_code == 1


def test_summarize_rejects_out_of_range_hours(db_session):
    result = CliRunner().invoke(cli, ["summarize", "--hours", "169"])

    assert result.exit_code == 1


def test_maintenance_commands(db_session):
    runner = CliRunner()

    assert runner.invoke(cli, ["cache-stats"]).exit_code == 0
    assert "Removed 0 expired" in runner.invoke(cli, ["clean-cache"]).output
    assert "older than 7 days" in runner.invoke(cli, ["clean-api-logs", "--days", "7"]).output
    assert "for TDSP 1039940674000" in runner.invoke(cli, ["invalidate-cache", "--duns", "1039940674000"]).output


def test_resolve_bulk_reports_unresolved(db_session, add_mapping):
    add_mapping("75201", "dallas-tx")

    result = CliRunner().invoke(cli, ["resolve-bulk", "75201", "00000"])

    assert result.exit_code == 0, result.output
    assert '"city_slug": "dallas-tx"' in result.output
    assert '"code": "ZIP_NOT_FOUND"' in result.output
    assert "1 of 2 ZIP codes unresolved: 00000" in result.output
