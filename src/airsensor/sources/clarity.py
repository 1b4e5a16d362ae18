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
Clarity Data Source.

Raw fetchers for the Clarity open data API. One request returns every open
sensor together with its recent measurements:

    [
      {
        "datasourceId": "DABCX1234",
        "lat": 42.194576,
        "lon": -122.709480,
        "data": [
          ["2023-03-07T14Z", 1, 14.02, 14.43],
          ["2023-03-07T13Z", 1, 13.97, 12.78]
        ]
      },
      ...
    ]

Each data row is [start of hour (UTC), QC flag, 1-hour mean, NowCast],
sorted descending in time. USFS2 responses add ``calibrationId`` and
``calibrationCategory`` to each sensor.

The response is exploded into a synoptic snapshot (latest row per sensor)
and wide matrices, one per value and QC column.

API Documentation: https://api-guide.clarity.io
"""

from logging import getLogger
from typing import Any

import pandas as pd
import requests

from ..config import ClarityConfig
from ..exceptions import EmptyResultError
from ..http_client import get_json
from ..transforms import coerce_numeric
from ..types import ClarityBundle, RawSynopticTable

logger = getLogger(__name__)

VENDOR = "Clarity"

# ============================================================================
# CONSTANTS
# ============================================================================

RESOLUTIONS = ("hourly", "individual")

# Data row layouts, by row width
ROW_LAYOUTS = {
    3: ["timestamp", "QCFlag", "pm2.5"],
    4: ["timestamp", "QCFlag", "pm2.5", "nowcast"],
    5: ["timestamp", "pm2.5_QC", "pm2.5", "nowcast_QC", "nowcast"],
}

VALUE_COLUMNS = ["pm2.5", "nowcast"]

# Default countries for monitor creation
DEFAULT_COUNTRY_CODES = ("CA", "US", "MX")


# ============================================================================
# API CLIENT
# ============================================================================


def _clarity_error_message(response: requests.Response) -> str:
    """Clarity errors look like {"Code": "...", "Message": "..."}."""
    try:
        content = response.json()
    except ValueError:
        return (response.text or str(response.reason)).strip()
    return f"{content.get('Code')} - {content.get('Message')}"


def _call_clarity_api(config: ClarityConfig, url: str, query: dict | None = None):
    return get_json(
        url,
        headers=config.headers(),
        query=query,
        timeout=config.timeout,
        error_message=_clarity_error_message,
    )


def _check_resolution(resolution: str) -> None:
    if resolution not in RESOLUTIONS:
        raise ValueError(f"resolution must be one of {RESOLUTIONS}, got {resolution!r}")


# ============================================================================
# PARSING
# ============================================================================


def parse_clarity_timestamps(values: pd.Series) -> pd.Series:
    """
    Parse Clarity timestamps as UTC.

    Hourly timestamps omit minutes and seconds ("2023-03-07T14Z").
    """
    text = values.astype(str).str.replace(r"T(\d{2})Z$", r"T\1:00:00Z", regex=True)
    return pd.to_datetime(text, utc=True, format="ISO8601")


def _explode_datasources(records: list[dict[str, Any]]) -> pd.DataFrame:
    """One row per (datasourceId, timestamp), static fields carried forward."""
    frames = []
    for record in records:
        rows = record.get("data") or []
        if not rows:
            continue

        width = len(rows[0])
        if width not in ROW_LAYOUTS:
            raise ValueError(
                f"Unexpected Clarity data row width {width} for {record.get('datasourceId')}"
            )

        frames.append(
            pd.DataFrame(rows, columns=ROW_LAYOUTS[width]).assign(
                datasourceId=str(record.get("datasourceId")),
                longitude=record.get("lon"),
                latitude=record.get("lat"),
                # Always present so every Clarity table has the same schema
                calibrationId=record.get("calibrationId"),
                calibrationCategory=record.get("calibrationCategory"),
            )
        )

    if not frames:
        raise EmptyResultError("Clarity returned no measurements")

    long = pd.concat(frames, ignore_index=True)
    return long.assign(datetime=parse_clarity_timestamps(long["timestamp"]))


def _wide_matrix(long: pd.DataFrame, column: str) -> pd.DataFrame:
    matrix = (
        long.drop_duplicates(subset=["datetime", "datasourceId"])
        .pivot(index="datetime", columns="datasourceId", values=column)
        .sort_index()
        .apply(pd.to_numeric, errors="coerce")
    )
    matrix.columns.name = None
    return matrix.reset_index()


def build_clarity_bundle(records: list[dict[str, Any]]) -> ClarityBundle:
    """
    Explode a Clarity response into a synoptic table and wide matrices.

    Returns:
        ClarityBundle: ``synoptic`` holds the latest row per sensor;
        ``matrices`` holds "pm2.5" and "pm2.5_QC" (plus "nowcast" and
        "nowcast_QC" when the response has NowCast values)

    Raises:
        ValueError: If a sensor's data rows have an unknown width
        EmptyResultError: If no sensor has any measurements
    """
    long = _explode_datasources(records)

    synoptic = (
        long.sort_values("datetime", kind="mergesort")
        .groupby("datasourceId", sort=False)
        .tail(1)
        .reset_index(drop=True)
    )
    synoptic = coerce_numeric("longitude", "latitude")(synoptic)

    matrices = {}
    for value in VALUE_COLUMNS:
        if value not in long.columns:
            continue
        qc_column = f"{value}_QC" if f"{value}_QC" in long.columns else "QCFlag"
        matrices[value] = _wide_matrix(long, value)
        matrices[f"{value}_QC"] = _wide_matrix(long, qc_column)

    logger.debug(
        f"Clarity: {len(synoptic)} sensors, {len(matrices.get('pm2.5', []))} timesteps"
    )
    return ClarityBundle(
        synoptic=RawSynopticTable(data=synoptic, vendor=VENDOR),
        matrices=matrices,
    )


# ============================================================================
# FETCHERS
# ============================================================================


def fetch_clarity_all_open(
    config: ClarityConfig, resolution: str = "hourly"
) -> ClarityBundle:
    """
    Fetch recent measurements for every open Clarity sensor.

    Args:
        config: Clarity connection settings (``format`` selects USFS/USFS2)
        resolution: "hourly" or "individual"

    Returns:
        ClarityBundle: Synoptic snapshot plus wide value and QC matrices

    Raises:
        FetchError: If the request fails
        EmptyResultError: If no sensors are returned

    Example:
        >>> bundle = fetch_clarity_all_open(ClarityConfig.from_env())
        >>> bundle.matrices["pm2.5"].head()
    """
    _check_resolution(resolution)

    logger.info(f"Fetching all open Clarity {resolution} data...")
    records = _call_clarity_api(
        config,
        f"{config.base_url}/all-recent-measurement/pm25/{resolution}",
        {"format": config.format},
    )
    if not records:
        raise EmptyResultError("Clarity returned no datasources")

    return build_clarity_bundle(records)


def fetch_clarity_datasource(
    config: ClarityConfig, datasource_id: str, resolution: str = "hourly"
) -> ClarityBundle:
    """
    Fetch recent measurements for a single open Clarity sensor.

    Returns:
        ClarityBundle: As ``fetch_clarity_all_open`` but for one sensor
    """
    _check_resolution(resolution)

    response = _call_clarity_api(
        config,
        f"{config.base_url}/datasource-measurement/pm25/{resolution}",
        {"datasourceId": datasource_id, "format": config.format},
    )
    if not response:
        raise EmptyResultError(f"Clarity returned nothing for {datasource_id}")

    records = response if isinstance(response, list) else [response]
    records = [{"datasourceId": datasource_id, **record} for record in records]
    return build_clarity_bundle(records)
