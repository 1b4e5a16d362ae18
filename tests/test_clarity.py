"""
Tests for the Clarity data source.

Covers row layout handling, timestamp parsing, bundle construction and the
open-data endpoints with mocked HTTP responses.
"""

import pandas as pd
import pytest
import responses

from airsensor.config import ClarityConfig
from airsensor.exceptions import EmptyResultError, FetchError
from airsensor.sources.clarity import (
    build_clarity_bundle,
    fetch_clarity_all_open,
    fetch_clarity_datasource,
    parse_clarity_timestamps,
)

BASE_URL = "https://clarity-data-api.clarity.io/v1/open"
ALL_OPEN_URL = f"{BASE_URL}/all-recent-measurement/pm25/hourly"


@pytest.fixture
def config():
    return ClarityConfig(api_key="TEST-KEY")


# ============================================================================
# Parsing
# ============================================================================


def test_parse_hourly_timestamps():
    result = parse_clarity_timestamps(pd.Series(["2023-03-07T14Z", "2023-03-07T14:05:00Z"]))

    assert result.iloc[0] == pd.Timestamp("2023-03-07 14:00", tz="UTC")
    assert result.iloc[1] == pd.Timestamp("2023-03-07 14:05", tz="UTC")


class TestBuildClarityBundle:
    def test_synoptic_has_latest_row_per_sensor(self, clarity_records):
        bundle = build_clarity_bundle(clarity_records)
        synoptic = bundle.synoptic.data

        assert bundle.synoptic.vendor == "Clarity"
        assert synoptic["datasourceId"].tolist() == ["DAABL1560", "DAAOD3418", "DLONDON01"]
        assert (synoptic["datetime"] == pd.Timestamp("2023-03-07 14:00", tz="UTC")).all()
        assert synoptic["pm2.5"].tolist() == [10.5, 20.0, 5.0]

    def test_calibration_columns_always_present(self, clarity_records):
        synoptic = build_clarity_bundle(clarity_records).synoptic.data

        assert synoptic["calibrationId"].iloc[0] == "CAL-1"
        assert synoptic["calibrationCategory"].iloc[0] == "global"
        assert synoptic["calibrationId"].iloc[1:].isna().all()

    def test_wide_matrices(self, clarity_records):
        matrices = build_clarity_bundle(clarity_records).matrices

        assert set(matrices) == {"pm2.5", "pm2.5_QC", "nowcast", "nowcast_QC"}

        pm25 = matrices["pm2.5"]
        assert list(pm25.columns) == ["datetime", "DAABL1560", "DAAOD3418", "DLONDON01"]
        assert pm25["datetime"].is_monotonic_increasing
        assert pm25["DAABL1560"].tolist() == [8.0, 99.0, 10.5]
        assert pd.isna(pm25["DAAOD3418"].iloc[0])

    def test_shared_qc_flag_for_hourly_rows(self, clarity_records):
        matrices = build_clarity_bundle(clarity_records).matrices

        assert matrices["pm2.5_QC"]["DAABL1560"].tolist() == [1, 0, 1]
        assert matrices["nowcast_QC"]["DAABL1560"].tolist() == [1, 0, 1]

    def test_separate_qc_columns(self):
        records = [
            {
                "datasourceId": "D1",
                "lat": 47.6,
                "lon": -122.3,
                "data": [["2023-03-07T14Z", 1, 10.5, 0, 11.0]],
            }
        ]

        matrices = build_clarity_bundle(records).matrices

        assert matrices["pm2.5_QC"]["D1"].tolist() == [1]
        assert matrices["nowcast_QC"]["D1"].tolist() == [0]

    def test_individual_rows_have_no_nowcast(self):
        records = [
            {"datasourceId": "D1", "lat": 47.6, "lon": -122.3, "data": [["2023-03-07T14:05:00Z", 1, 10.5]]}
        ]

        matrices = build_clarity_bundle(records).matrices

        assert set(matrices) == {"pm2.5", "pm2.5_QC"}

    def test_unknown_row_width(self):
        records = [{"datasourceId": "D1", "lat": 0, "lon": 0, "data": [["2023-03-07T14Z", 1]]}]
        with pytest.raises(ValueError, match="row width"):
            build_clarity_bundle(records)

    def test_no_measurements(self):
        with pytest.raises(EmptyResultError):
            build_clarity_bundle([{"datasourceId": "D1", "lat": 0, "lon": 0, "data": []}])


# ============================================================================
# Endpoints
# ============================================================================


class TestFetchClarity:
    @responses.activate
    def test_all_open(self, config, clarity_records):
        responses.add(responses.GET, ALL_OPEN_URL, json=clarity_records, status=200)

        bundle = fetch_clarity_all_open(config)

        assert len(bundle.synoptic) == 3
        request = responses.calls[0].request
        assert request.headers["x-api-key"] == "TEST-KEY"
        assert "format=USFS" in request.url

    @responses.activate
    def test_usfs2_format(self, clarity_records):
        responses.add(responses.GET, ALL_OPEN_URL, json=clarity_records, status=200)

        fetch_clarity_all_open(ClarityConfig(api_key="TEST-KEY", format="USFS2"))

        assert "format=USFS2" in responses.calls[0].request.url

    @responses.activate
    def test_vendor_error(self, config):
        responses.add(
            responses.GET,
            ALL_OPEN_URL,
            json={"Code": "Forbidden", "Message": "Invalid API key"},
            status=403,
        )

        with pytest.raises(FetchError, match="403 Forbidden - Invalid API key"):
            fetch_clarity_all_open(config)

    @responses.activate
    def test_no_datasources(self, config):
        responses.add(responses.GET, ALL_OPEN_URL, json=[], status=200)
        with pytest.raises(EmptyResultError):
            fetch_clarity_all_open(config)

    def test_invalid_resolution(self, config):
        with pytest.raises(ValueError, match="resolution"):
            fetch_clarity_all_open(config, resolution="daily")

    @responses.activate
    def test_single_datasource(self, config):
        responses.add(
            responses.GET,
            f"{BASE_URL}/datasource-measurement/pm25/hourly",
            json={"lat": 47.61, "lon": -122.33, "data": [["2023-03-07T14Z", 1, 10.5, 11.0]]},
            status=200,
        )

        bundle = fetch_clarity_datasource(config, "DAABL1560")

        assert bundle.synoptic.data["datasourceId"].tolist() == ["DAABL1560"]
        assert "datasourceId=DAABL1560" in responses.calls[0].request.url
