# AirSensor: normalise, enrich and reshape low-cost air sensor data
# Copyright (C) 2025 Ruaraidh Dobson, South London Scientific

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.

# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
PurpleAir Data Source.

Raw fetchers for the PurpleAir v1 API:

- ``fetch_purpleair_synoptic``: current state of many sensors (GET /v1/sensors)
- ``fetch_purpleair_timeseries_chunk``: one sub-window of a single sensor's
  history (GET /v1/sensors/{sensor_index}/history/csv)
- group and key-check endpoints

The functions here only download and flatten. Renaming, typing and spatial
enrichment happen in ``airsensor.synoptic`` and ``airsensor.timeseries``.

API Documentation: https://api.purpleair.com/
Developer Portal: https://develop.purpleair.com/
"""

import io
from datetime import datetime
from logging import getLogger
from typing import Any

import pandas as pd
import requests

from ..config import BoundingBox, PurpleAirConfig
from ..exceptions import EmptyResultError
from ..http_client import get, get_json
from ..transforms import as_utc, coerce_string
from ..types import RawSynopticTable, RawTimeseriesTable

logger = getLogger(__name__)

VENDOR = "PurpleAir"

# ============================================================================
# CONSTANTS
# ============================================================================

# Allowed values of the history "average" parameter, in minutes
AVERAGE_VALUES = (0, 10, 30, 60, 360, 1440, 10080, 44640, 53560)

# Longest window (days) the history endpoint accepts per request, by average
MAX_LOOKBACK_DAYS = {0: 30, 10: 60, 30: 90, 60: 180}
DEFAULT_MAX_LOOKBACK_DAYS = 365

LOCATION_TYPES = {0: "outside", 1: "inside"}

# One week, the API default
DEFAULT_MAX_AGE = 604800

# Station information plus PM2.5 averages for synoptic requests
SYNOPTIC_FIELDS = (
    "name,icon,model,hardware,location_type,private,"
    "latitude,longitude,altitude,position_rating,"
    "firmware_version,firmware_upgrade,rssi,uptime,"
    "last_seen,last_modified,date_created,confidence,"
    "humidity,temperature,pressure,"
    "pm2.5_10minute,pm2.5_30minute,pm2.5_60minute,"
    "pm2.5_6hour,pm2.5_24hour,pm2.5_1week"
)

# Hourly history fields required by the EPA correction
HISTORY_HOURLY_FIELDS = "humidity,temperature,pressure,pm2.5_atm,pm2.5_cf_1"

# Raw (2-minute) history fields for channel QC
HISTORY_RAW_FIELDS = (
    "rssi,uptime,memory,humidity,temperature,pressure,"
    "pm2.5_atm_a,pm2.5_atm_b,pm2.5_cf_1_a,pm2.5_cf_1_b"
)

# Fields the API returns as numbers (or stringified numbers)
NUMERIC_FIELDS = [
    "latitude",
    "longitude",
    "altitude",
    "led_brightness",
    "rssi",
    "uptime",
    "pa_latency",
    "memory",
    "confidence",
    "confidence_auto",
    "confidence_manual",
    "channel_state",
    "channel_flags",
    "channel_flags_manual",
    "channel_flags_auto",
    "humidity",
    "humidity_a",
    "humidity_b",
    "temperature",
    "temperature_a",
    "temperature_b",
    "pressure",
    "pressure_a",
    "pressure_b",
    "voc",
    "ozone1",
    "analog_input",
    "pm1.0",
    "pm1.0_a",
    "pm1.0_b",
    "pm1.0_atm",
    "pm1.0_atm_a",
    "pm1.0_atm_b",
    "pm1.0_cf_1",
    "pm1.0_cf_1_a",
    "pm1.0_cf_1_b",
    "pm2.5_alt",
    "pm2.5_alt_a",
    "pm2.5_alt_b",
    "pm2.5",
    "pm2.5_a",
    "pm2.5_b",
    "pm2.5_atm",
    "pm2.5_atm_a",
    "pm2.5_atm_b",
    "pm2.5_cf_1",
    "pm2.5_cf_1_a",
    "pm2.5_cf_1_b",
    "pm2.5_10minute",
    "pm2.5_30minute",
    "pm2.5_60minute",
    "pm2.5_6hour",
    "pm2.5_24hour",
    "pm2.5_1week",
    "pm10.0",
    "pm10.0_a",
    "pm10.0_b",
    "pm10.0_atm",
    "pm10.0_atm_a",
    "pm10.0_atm_b",
    "pm10.0_cf_1",
    "pm10.0_cf_1_a",
    "pm10.0_cf_1_b",
    "0.3_um_count",
    "0.5_um_count",
    "1.0_um_count",
    "2.5_um_count",
    "5.0_um_count",
    "10.0_um_count",
]

# Epoch-second fields
TIMESTAMP_FIELDS = ["last_seen", "last_modified", "date_created"]


# ============================================================================
# API CLIENT
# ============================================================================


def _purpleair_error_message(response: requests.Response) -> str:
    """PurpleAir errors look like {"error": "...", "description": "..."}."""
    try:
        content = response.json()
    except ValueError:
        return (response.text or str(response.reason)).strip()
    return f"{content.get('error')} - {content.get('description')}"


def _call_purpleair_api(
    config: PurpleAirConfig, url: str, query: dict | None = None
) -> dict:
    """
    Low-level PurpleAir JSON caller.

    Raises:
        FetchError: If the API returns an error status
    """
    return get_json(
        url,
        headers=config.headers(),
        query=query,
        timeout=config.timeout,
        error_message=_purpleair_error_message,
    )


def _fields_param(fields: str | list[str] | tuple[str, ...]) -> str:
    if isinstance(fields, str):
        return fields.replace(" ", "")
    return ",".join(fields)


def _table_from_response(response: dict) -> pd.DataFrame:
    # Response format: {"fields": [...], "data": [[...], [...], ...]}
    fields = response.get("fields", [])
    data = response.get("data", [])
    df = pd.DataFrame(data, columns=fields)
    # The API returns sensor_index as a number or a string depending on endpoint
    return coerce_string("sensor_index")(df)


def check_purpleair_api_key(config: PurpleAirConfig) -> dict[str, Any]:
    """
    Check a PurpleAir key.

    Returns:
        dict: Key information, e.g. {"api_key_type": "READ", ...}

    Raises:
        FetchError: If the key is rejected
    """
    return _call_purpleair_api(config, config.keys_url)


# ============================================================================
# SYNOPTIC FETCHER
# ============================================================================


def fetch_purpleair_synoptic(
    config: PurpleAirConfig,
    fields: str | list[str] = SYNOPTIC_FIELDS,
    location_type: int | None = 0,
    max_age: int | None = DEFAULT_MAX_AGE,
    bbox: BoundingBox | None = None,
    show_only: str | list[str] | None = None,
    modified_since: int | datetime | None = None,
    read_keys: str | list[str] | None = None,
) -> RawSynopticTable:
    """
    Fetch the current state of many PurpleAir sensors.

    Args:
        config: PurpleAir connection settings
        fields: Fields to request (comma separated or a list)
        location_type: 0 for outside, 1 for inside, None for both
        max_age: Only sensors seen within this many seconds
        bbox: Bounding box limiting the sensors returned
        show_only: Sensor indices to return. Overrides ``bbox``.
        modified_since: Only sensors modified after this time
        read_keys: Read keys for private sensors

    Returns:
        RawSynopticTable: One row per sensor; columns are the vendor's field names

    Raises:
        ValueError: If location_type is not 0, 1 or None
        FetchError: If the request fails
        EmptyResultError: If no sensors match

    Example:
        >>> raw = fetch_purpleair_synoptic(
        ...     PurpleAirConfig.from_env(),
        ...     bbox=BoundingBox(west=-122.5, east=-122.0, south=47.4, north=47.8),
        ... )
    """
    if location_type is not None and location_type not in LOCATION_TYPES:
        raise ValueError("location_type must be 0 (outside), 1 (inside) or None")

    query: dict[str, Any] = {
        "fields": _fields_param(fields),
        "location_type": location_type,
        "max_age": max_age,
    }

    if show_only is not None:
        if not isinstance(show_only, str):
            show_only = ",".join(str(s) for s in show_only)
        query["show_only"] = show_only
        if bbox is not None:
            logger.debug("show_only given, ignoring bounding box")
    elif bbox is not None:
        bbox = bbox.normalized()
        query["nwlng"] = bbox.west
        query["nwlat"] = bbox.north
        query["selng"] = bbox.east
        query["selat"] = bbox.south

    if modified_since is not None:
        if isinstance(modified_since, datetime):
            modified_since = int(as_utc(modified_since).timestamp())
        query["modified_since"] = modified_since

    if read_keys is not None:
        if not isinstance(read_keys, str):
            read_keys = ",".join(read_keys)
        query["read_keys"] = read_keys

    logger.info("Fetching PurpleAir synoptic data...")
    response = _call_purpleair_api(config, config.sensors_url, query)
    df = _table_from_response(response)

    if df.empty:
        raise EmptyResultError("PurpleAir returned no sensors for this request")

    logger.debug(f"PurpleAir synoptic: {len(df)} sensors")
    return RawSynopticTable(data=df, vendor=VENDOR)


# ============================================================================
# GROUPS
# ============================================================================


def fetch_purpleair_group_list(config: PurpleAirConfig) -> pd.DataFrame:
    """Groups owned by the key's user, one row per group."""
    response = _call_purpleair_api(config, config.groups_url)
    groups = pd.DataFrame(response.get("groups", []))
    if "created" in groups.columns:
        groups["created"] = pd.to_datetime(groups["created"], unit="s", utc=True)
    return groups


def fetch_purpleair_group_detail(config: PurpleAirConfig, group_id: int | str) -> pd.DataFrame:
    """Members of a group, one row per member."""
    response = _call_purpleair_api(config, f"{config.groups_url}/{group_id}")
    members = pd.DataFrame(response.get("members", []))
    if "created" in members.columns:
        members["created"] = pd.to_datetime(members["created"], unit="s", utc=True)
    return coerce_string("sensor_index")(members)


def fetch_purpleair_group_members(
    config: PurpleAirConfig,
    group_id: int | str,
    fields: str | list[str] = SYNOPTIC_FIELDS,
    location_type: int | None = None,
    max_age: int | None = DEFAULT_MAX_AGE,
) -> RawSynopticTable:
    """
    Synoptic data for the members of a group.

    Same output as ``fetch_purpleair_synoptic``.
    """
    if location_type is not None and location_type not in LOCATION_TYPES:
        raise ValueError("location_type must be 0 (outside), 1 (inside) or None")

    query = {
        "fields": _fields_param(fields),
        "location_type": location_type,
        "max_age": max_age,
    }
    response = _call_purpleair_api(
        config, f"{config.groups_url}/{group_id}/members", query
    )
    df = _table_from_response(response)
    if df.empty:
        raise EmptyResultError(f"PurpleAir group {group_id} has no matching members")
    return RawSynopticTable(data=df, vendor=VENDOR)


# ============================================================================
# TIMESERIES FETCHER
# ============================================================================


def max_lookback_days(average: int) -> int:
    """
    Longest window, in days, that one history request may cover.

    Raises:
        ValueError: If ``average`` is not an allowed value
    """
    if average not in AVERAGE_VALUES:
        raise ValueError(
            f"'average' must be one of: {', '.join(str(a) for a in AVERAGE_VALUES)}"
        )
    return MAX_LOOKBACK_DAYS.get(average, DEFAULT_MAX_LOOKBACK_DAYS)


def timeseries_windows(
    start: datetime | str, end: datetime | str, average: int = 60
) -> list[tuple[pd.Timestamp, pd.Timestamp]]:
    """
    Split [start, end] into consecutive request windows.

    Window boundaries step by ``max_lookback_days(average)`` from ``start``
    and the last window always ends exactly at ``end``.

    Example:
        >>> timeseries_windows("2023-01-01", "2023-01-10", average=0)
        [(Timestamp('2023-01-01 00:00:00+0000', tz='UTC'),
          Timestamp('2023-01-10 00:00:00+0000', tz='UTC'))]
    """
    start = as_utc(start)
    end = as_utc(end)
    if start >= end:
        raise ValueError(f"start ({start}) must be before end ({end})")

    step = pd.Timedelta(days=max_lookback_days(average))
    boundaries = [start]
    while boundaries[-1] + step < end:
        boundaries.append(boundaries[-1] + step)
    boundaries.append(end)

    return list(zip(boundaries[:-1], boundaries[1:]))


def fetch_purpleair_timeseries_chunk(
    config: PurpleAirConfig,
    sensor_index: str | int,
    start: datetime | str,
    end: datetime | str,
    fields: str | list[str] = HISTORY_HOURLY_FIELDS,
    average: int = 60,
    read_key: str | None = None,
) -> RawTimeseriesTable:
    """
    Download one window of a sensor's history as CSV.

    The API excludes ``end_timestamp``, so one second is added to ``end`` to
    keep the final record.

    Args:
        config: PurpleAir connection settings
        sensor_index: PurpleAir sensor index
        start: Start of the window (UTC)
        end: End of the window (UTC)
        fields: History fields to request
        average: Averaging period in minutes (see AVERAGE_VALUES)
        read_key: Read key for a private sensor

    Returns:
        RawTimeseriesTable: Rows as strings, exactly as in the CSV. Empty if
        the sensor reported nothing in the window.

    Raises:
        ValueError: If ``average`` is invalid
        FetchError: If the request fails
    """
    max_lookback_days(average)
    start = as_utc(start)
    end = as_utc(end)
    sensor_index = str(sensor_index)

    query = {
        "start_timestamp": int(start.timestamp()),
        "end_timestamp": int(end.timestamp()) + 1,
        "average": average,
        "fields": _fields_param(fields),
        "read_key": read_key,
    }

    logger.debug(f"Fetching PurpleAir history for {sensor_index}: {start} to {end}")
    response = get(
        f"{config.sensors_url}/{sensor_index}/history/csv",
        headers=config.headers(),
        query=query,
        timeout=config.timeout,
        error_message=_purpleair_error_message,
    )

    text = response.text or ""
    if not text.strip():
        df = pd.DataFrame(columns=["time_stamp", "sensor_index"])
    else:
        df = pd.read_csv(io.StringIO(text), dtype=str)

    if "sensor_index" not in df.columns:
        df = df.assign(sensor_index=sensor_index)
    df = coerce_string("sensor_index")(df)

    return RawTimeseriesTable(
        data=df, vendor=VENDOR, sensor_id=sensor_index, start=start, end=end
    )
