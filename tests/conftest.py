"""
Pytest configuration and shared fixtures.

This module provides a fake spatial lookup, raw vendor payloads and example
enriched tables used across the tests.
"""

import pandas as pd
import pytest

from airsensor.synoptic import normalize_synoptic
from airsensor.types import RawSynopticTable, RawTimeseriesTable

# ============================================================================
# Fake spatial lookup
# ============================================================================

# (west, east, south, north, countryCode, stateCode, countyName, timezone)
SPATIAL_RULES = [
    (-125.0, -117.0, 45.5, 49.0, "US", "WA", "King", "America/Los_Angeles"),
    (-125.0, -114.0, 32.0, 42.0, "US", "CA", "Los Angeles", "America/Los_Angeles"),
    (-140.0, -52.0, 49.0, 60.0, "CA", "BC", None, "America/Vancouver"),
    (-8.0, 2.0, 49.0, 59.0, "GB", "ENG", None, "Europe/London"),
]


class FakeSpatialLookup:
    """
    Box-based stand-in for the polygon lookups.

    Points outside every box (e.g. open ocean) resolve to None. Calls are
    recorded so tests can check which points were looked up.
    """

    def __init__(self, rules=SPATIAL_RULES):
        self.rules = rules
        self.calls = []

    def _rule(self, lon, lat):
        for rule in self.rules:
            west, east, south, north = rule[:4]
            if west <= lon <= east and south <= lat <= north:
                return rule
        return None

    def _values(self, name, index, longitude, latitude):
        self.calls.append((name, len(list(longitude))))
        values = []
        for lon, lat in zip(longitude, latitude):
            rule = self._rule(lon, lat)
            values.append(None if rule is None else rule[index])
        return values

    def country_code_at(self, longitude, latitude):
        return self._values("country", 4, longitude, latitude)

    def state_code_at(self, longitude, latitude, country_codes=None):
        return self._values("state", 5, longitude, latitude)

    def county_name_at(self, longitude, latitude, state_codes=None):
        return self._values("county", 6, longitude, latitude)

    def timezone_at(self, longitude, latitude, country_codes=None):
        return self._values("timezone", 7, longitude, latitude)


@pytest.fixture
def fake_lookup():
    return FakeSpatialLookup()


# ============================================================================
# PurpleAir payloads
# ============================================================================

PURPLEAIR_FIELDS = [
    "sensor_index",
    "name",
    "icon",
    "latitude",
    "longitude",
    "altitude",
    "location_type",
    "private",
    "model",
    "hardware",
    "last_seen",
    "last_modified",
    "date_created",
    "humidity",
    "pm2.5_60minute",
]


@pytest.fixture
def purpleair_sensors_response():
    """Mock /v1/sensors response: Seattle, Los Angeles, London and mid-Atlantic."""
    return {
        "api_version": "V1.0.11-0.0.41",
        "fields": PURPLEAIR_FIELDS,
        "data": [
            [76545, "Seattle A", 0, 47.6062, -122.3321, 200, 0, 0, "PA-II", "2.0", 1704067200, 1700000000, 1609459200, 45, 7.2],
            [76546, "Seattle B", 0, 47.6062, -122.3321, 200, 0, 1, "PA-II", "2.0", 1704067300, 1700000000, 1609459200, 46, 7.8],
            [90001, "Los Angeles", 0, 34.0522, -118.2437, "300", "1", 0, "PA-II-SD", "3.0", 1704067200, 1700000000, 1609459200, 30, 15.1],
            [131075, "London", 0, 51.5074, -0.1278, 100, 0, 0, "PA-II", "2.0", 1704067200, 1700000000, 1609459200, 80, 12.0],
            [200000, "Mid-Atlantic", 0, 30.0, -40.0, 0, 0, 0, "PA-II", "2.0", 1704067200, 1700000000, 1609459200, 90, 3.0],
        ],
    }


@pytest.fixture
def purpleair_raw(purpleair_sensors_response):
    df = pd.DataFrame(
        purpleair_sensors_response["data"], columns=purpleair_sensors_response["fields"]
    )
    return RawSynopticTable(data=df, vendor="PurpleAir")


@pytest.fixture
def purpleair_synoptic(purpleair_raw, fake_lookup):
    return normalize_synoptic(purpleair_raw, fake_lookup)


@pytest.fixture
def make_chunk():
    """Factory for raw PurpleAir history chunks from (time_stamp, humidity, pm2.5_cf_1) rows."""

    def make(rows, sensor_index="76545"):
        df = pd.DataFrame(
            [[str(t), sensor_index, str(h), str(pm)] for t, h, pm in rows],
            columns=["time_stamp", "sensor_index", "humidity", "pm2.5_cf_1"],
        )
        return RawTimeseriesTable(data=df, vendor="PurpleAir", sensor_id=sensor_index)

    return make


@pytest.fixture
def history_csv():
    """Mock /history/csv body, rows out of order as the API returns them."""
    return (
        "time_stamp,sensor_index,humidity,temperature,pressure,pm2.5_atm,pm2.5_cf_1\n"
        "2023-01-01T02:00:00Z,76545,52,45,1010.2,9.1,10.0\n"
        "2023-01-01T00:00:00Z,76545,50,44,1010.0,7.5,8.0\n"
        "2023-01-01T01:00:00Z,76545,51,44,1010.1,8.2,9.0\n"
    )


# ============================================================================
# Clarity payloads
# ============================================================================


@pytest.fixture
def clarity_records():
    """Mock all-recent-measurement/pm25/hourly response (USFS2 format)."""
    return [
        {
            "datasourceId": "DAABL1560",
            "lat": 47.61,
            "lon": -122.33,
            "calibrationId": "CAL-1",
            "calibrationCategory": "global",
            "data": [
                ["2023-03-07T14Z", 1, 10.5, 11.0],
                ["2023-03-07T13Z", 0, 99.0, 12.0],
                ["2023-03-07T12Z", 1, 8.0, 9.5],
            ],
        },
        {
            "datasourceId": "DAAOD3418",
            "lat": 34.05,
            "lon": -118.24,
            "data": [
                ["2023-03-07T14Z", 1, 20.0, 21.0],
                ["2023-03-07T13Z", 1, 22.0, 21.5],
            ],
        },
        {
            "datasourceId": "DLONDON01",
            "lat": 51.5,
            "lon": -0.12,
            "data": [["2023-03-07T14Z", 1, 5.0, 5.5]],
        },
    ]
