"""ZIP mapping CSV import tests"""

import hashlib

import pandas as pd
import pytest

from choosemypower.ingestion.zip_mappings import ZipMappingIngester
from choosemypower.models.zip_mapping import ZipMapping

HEADER = "zip_code,zip_plus4_pattern,city_name,city_slug,county_name,tdsp_territory,tdsp_duns,is_deregulated,market_zone,priority,data_source\n"


@pytest.fixture
def mapping_csv(tmp_path):
    path = tmp_path / "zip_mappings.csv"
    path.write_text(
        HEADER
        + "75201,,Dallas,dallas-tx,Dallas,Oncor Electric Delivery,1039940674000,true,North,1.0,USPS\n"
        + "77002,,Houston,houston-tx,Harris,CenterPoint Energy,957877905,true,Coast,1.0,USPS\n"
        + "07001,,Avenel,avenel-nj,Middlesex,PSEG,123456789,true,North,1.0,USPS\n"
        + "7520,,Dallas,dallas-tx,Dallas,Oncor Electric Delivery,1039940674000,true,North,1.0,USPS\n"
        + "75002,,Allen,allen-tx,Collin,Oncor Electric Delivery,1039940674000,true,Panhandle,0.8,USPS\n"
        + "75002,75002-12345*,Plano,plano-tx,Collin,Oncor Electric Delivery,1039940674000,true,North,0.8,TDU\n"
        + "75401,,Greenville,greenville-tx,Hunt,Farmers Electric Coop,,false,North,0.3,MANUAL\n"
    )
    return path


class TestZipMappingIngester:

    def test_valid_rows_inserted_and_invalid_rejected(self, db_session, mapping_csv):
        result = ZipMappingIngester(db_session).ingest_file(mapping_csv)

        assert result["rows_read"] == 7
        assert result["inserted"] == 3
        assert result["updated"] == 0
        reasons = {r["row"]: r["reason"] for r in result["rejected"]}
        assert set(reasons) == {4, 5, 6, 7}
        assert "zip_code" in reasons[4]
        assert "market_zone" in reasons[5]
        assert "zip_plus4_pattern" in reasons[6]
        assert "tdsp_duns" in reasons[7]

        leading_zero = db_session.query(ZipMapping).filter(ZipMapping.zip_code == "07001").one()
        assert leading_zero.city_slug == "avenel-nj"

    def test_digest_is_sha256_of_file(self, db_session, mapping_csv):
        result = ZipMappingIngester(db_session).ingest_file(mapping_csv)

        assert result["digest"] == hashlib.sha256(mapping_csv.read_bytes()).hexdigest()

    def test_reimport_updates_existing_rows(self, db_session, mapping_csv, tmp_path):
        ingester = ZipMappingIngester(db_session)
        ingester.ingest_file(mapping_csv)

        updated_csv = tmp_path / "update.csv"
        updated_csv.write_text(
            HEADER + "75201,,Dallas,dallas-tx,Dallas,Oncor,1039940674000,true,North,0.9,TDU\n"
        )
        result = ingester.ingest_file(updated_csv)

        assert result["inserted"] == 0
        assert result["updated"] == 1
        row = db_session.query(ZipMapping).filter(ZipMapping.zip_code == "75201").populate_existing().one()
        assert row.priority == 0.9
        assert row.tdsp_territory == "Oncor"
        assert db_session.query(ZipMapping).count() == 3

    def test_camel_case_headers_and_defaults(self, db_session):
        frame = pd.DataFrame([{
            "zipCode": "78701", "cityName": "Austin", "citySlug": "austin-tx",
            "tdspTerritory": "Austin Energy", "tdspDuns": "000000001", "marketZone": "central",
            "isDeregulated": "no",
        }])

        result = ZipMappingIngester(db_session).ingest_frame(frame)

        assert result["inserted"] == 1
        row = db_session.query(ZipMapping).one()
        assert row.market_zone == "Central"
        assert row.is_deregulated is False
        assert row.priority == 1.0
        assert row.data_source == "MANUAL"

    def test_duplicate_rows_in_file_rejected(self, db_session):
        frame = pd.DataFrame([
            {"zip_code": "75201", "city_name": "Dallas", "city_slug": "dallas-tx",
             "tdsp_territory": "Oncor", "tdsp_duns": "1039940674000", "market_zone": "North"},
        ] * 2)

        result = ZipMappingIngester(db_session).ingest_frame(frame)

        assert result["inserted"] == 1
        assert result["rejected"][0]["reason"].startswith("duplicate")

    def test_missing_columns_raise(self, db_session):
        with pytest.raises(ValueError, match="city_slug"):
            ZipMappingIngester(db_session).ingest_frame(pd.DataFrame([{"zip_code": "75201"}]))
