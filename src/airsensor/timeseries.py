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
Single-sensor time series.

Vendor history endpoints limit how much time one request may cover, so a
long series is downloaded as several sub-window chunks and then stitched
back together here:

    windows -> fetch_timeseries_chunks -> build_timeseries -> SensorTimeseries

Chunks may be fetched one after another (with a polite pause between
requests) or concurrently. Either way the first failed chunk aborts the whole
build.
"""

import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from datetime import datetime
from logging import getLogger
from typing import Iterable

import pandas as pd

from .config import PurpleAirConfig
from .exceptions import EmptyResultError, FetchError, InvalidTimeseriesError
from .sources.clarity import parse_clarity_timestamps
from .sources.purpleair import (
    HISTORY_HOURLY_FIELDS,
    fetch_purpleair_timeseries_chunk,
    timeseries_windows,
)
from .transforms import as_utc, drop_columns, pipe, rename_columns, select_columns
from .types import (
    CALIBRATION_COLUMNS,
    ChunkFetcher,
    RawTimeseriesTable,
    SensorTimeseries,
    SynopticTable,
)

logger = getLogger(__name__)

# Pause between sequential requests, in seconds
DEFAULT_SLEEP = 0.5

# Length of the default request period, in days
DEFAULT_DAYS = 2

# Vendor timestamp column in raw history tables
TIME_COLUMNS = {"PurpleAir": "time_stamp", "Clarity": "timestamp"}

# Columns that identify the sensor rather than measure anything
ID_DATA_COLUMNS = ["sensor_index", "datasourceId"]

# Metadata carried from the synoptic record to a single-sensor series
TIMESERIES_META_COLUMNS = [
    "deviceDeploymentID",
    "deviceID",
    "locationID",
    "locationName",
    "longitude",
    "latitude",
    "elevation",
    "countryCode",
    "stateCode",
    "countyName",
    "timezone",
    "houseNumber",
    "street",
    "city",
    "zip",
    "postalCode",
    "sensor_index",
    "datasourceId",
    "last_modified",
    "date_created",
    "privacy",
    "name",
    "location_type",
    "model",
    "hardware",
    "firmware_version",
    "firmware_upgrade",
    "sensorManufacturer",
    *CALIBRATION_COLUMNS,
]

REQUIRED_META_COLUMNS = ["deviceDeploymentID", "longitude", "latitude", "timezone"]


# ============================================================================
# FETCHING
# ============================================================================


def _fetch_window(
    fetch_chunk: ChunkFetcher, start: datetime, end: datetime
) -> RawTimeseriesTable:
    try:
        return fetch_chunk(start, end)
    except FetchError as e:
        raise FetchError(
            e.status_code,
            f"{e.vendor_message} (while fetching {start} to {end})",
            e.url,
        ) from e


def fetch_timeseries_chunks(
    fetch_chunk: ChunkFetcher,
    windows: Iterable[tuple[datetime, datetime]],
    parallel: bool = False,
    sleep: float = DEFAULT_SLEEP,
    max_workers: int | None = None,
) -> list[RawTimeseriesTable]:
    """
    Fetch every window, sequentially or in a thread pool.

    Args:
        fetch_chunk: Called as ``fetch_chunk(start, end)`` for each window
        windows: (start, end) pairs
        parallel: Fetch windows concurrently
        sleep: Seconds to wait between sequential requests (ignored when parallel)
        max_workers: Thread pool size; None lets the executor decide

    Returns:
        list[RawTimeseriesTable]: One chunk per window, in window order

    Raises:
        FetchError: From the first window that failed, naming that window
    """
    windows = list(windows)

    if not parallel:
        chunks = []
        for i, (start, end) in enumerate(windows):
            if i > 0 and sleep > 0:
                time.sleep(sleep)
            chunks.append(_fetch_window(fetch_chunk, start, end))
        return chunks

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [
            executor.submit(_fetch_window, fetch_chunk, start, end)
            for start, end in windows
        ]
        done, not_done = wait(futures, return_when=FIRST_EXCEPTION)
        for future in not_done:
            future.cancel()
        for future in done:
            if future.exception() is not None:
                raise future.exception()

    return [future.result() for future in futures]


# ============================================================================
# NORMALISATION
# ============================================================================


def _parse_datetime(values: pd.Series) -> pd.Series:
    # Epoch seconds or ISO 8601 strings
    numeric = pd.to_numeric(values, errors="coerce")
    if numeric.notna().all():
        return pd.to_datetime(numeric, unit="s", utc=True)
    return parse_clarity_timestamps(values)


def _coerce_measurements(df: pd.DataFrame) -> pd.DataFrame:
    measurement_columns = [
        col for col in df.columns if col != "datetime" and col not in ID_DATA_COLUMNS
    ]
    return df.assign(
        **{col: pd.to_numeric(df[col], errors="coerce") for col in measurement_columns}
    )


def distinct_timeseries(df: pd.DataFrame) -> pd.DataFrame:
    """
    Leave exactly one row per ``datetime``, in ascending order.

    Exact duplicate rows are dropped. Rows that still share a timestamp (chunk
    boundaries overlap) are averaged column by column; non-numeric columns
    keep their first value.
    """
    df = df[df["datetime"].notna()].drop_duplicates()
    df = df.sort_values("datetime", kind="mergesort")

    if df["datetime"].is_unique:
        return df.reset_index(drop=True)

    numeric = [
        col for col in df.select_dtypes("number").columns if col != "datetime"
    ]
    others = [col for col in df.columns if col not in numeric and col != "datetime"]
    aggregations = {**{col: "mean" for col in numeric}, **{col: "first" for col in others}}

    if not aggregations:
        return df.drop_duplicates(subset=["datetime"]).reset_index(drop=True)

    merged = df.groupby("datetime", sort=True, as_index=False).agg(aggregations)
    return merged[list(df.columns)].reset_index(drop=True)


def _match_meta(synoptic: SynopticTable, sensor_id: str) -> pd.DataFrame:
    rows = synoptic.match(sensor_id)
    if len(rows) == 0:
        raise InvalidTimeseriesError(f"No synoptic record matches '{sensor_id}'")
    if len(rows) > 1:
        raise InvalidTimeseriesError(f"Multiple synoptic records match '{sensor_id}'")

    missing = [col for col in REQUIRED_META_COLUMNS if col not in rows.columns]
    if missing:
        raise InvalidTimeseriesError(
            f"Metadata for '{sensor_id}' is missing required fields: {', '.join(missing)}"
        )
    empty = [
        col
        for col in ("deviceDeploymentID", "longitude", "latitude")
        if pd.isna(rows[col].iloc[0])
    ]
    if empty:
        raise InvalidTimeseriesError(
            f"Metadata for '{sensor_id}' has no value for: {', '.join(empty)}"
        )

    return pipe(rows, select_columns(*TIMESERIES_META_COLUMNS)).reset_index(drop=True)


def build_timeseries(
    sensor_id: str,
    synoptic: SynopticTable,
    chunks: list[RawTimeseriesTable],
) -> SensorTimeseries:
    """
    Stitch raw chunks into a SensorTimeseries.

    Args:
        sensor_id: Native id, deviceID or deviceDeploymentID of the sensor
        synoptic: Enriched synoptic table containing exactly one matching row
        chunks: Raw history chunks, in any order

    Returns:
        SensorTimeseries: ``data`` has strictly increasing, unique UTC
        datetimes; ``meta`` is the sensor's synoptic row without snapshot
        measurement columns

    Raises:
        InvalidTimeseriesError: If the metadata join fails
        EmptyResultError: If the chunks hold no rows at all
    """
    sensor_id = str(sensor_id)
    meta = _match_meta(synoptic, sensor_id)

    frames = [chunk.data for chunk in chunks if len(chunk) > 0]
    if not frames:
        raise EmptyResultError(f"No time series data for '{sensor_id}'")

    vendor = chunks[0].vendor
    time_column = TIME_COLUMNS.get(vendor, "datetime")

    df = pd.concat(frames, ignore_index=True)
    df = pipe(df, rename_columns({time_column: "datetime"}))
    df = df.assign(datetime=_parse_datetime(df["datetime"]))
    df = _coerce_measurements(df)
    df = distinct_timeseries(df)
    df = pipe(df, drop_columns(*ID_DATA_COLUMNS))

    logger.debug(f"Built time series for {sensor_id}: {len(df)} rows")
    return SensorTimeseries(meta=meta, data=df)


def filter_date(
    timeseries: SensorTimeseries,
    start: datetime | str | None = None,
    end: datetime | str | None = None,
) -> SensorTimeseries:
    """Keep rows with ``start <= datetime < end``."""
    mask = pd.Series(True, index=timeseries.data.index)
    if start is not None:
        mask &= timeseries.data["datetime"] >= as_utc(start)
    if end is not None:
        mask &= timeseries.data["datetime"] < as_utc(end)
    return SensorTimeseries(
        meta=timeseries.meta, data=timeseries.data[mask].reset_index(drop=True)
    )


# ============================================================================
# REQUEST PERIOD
# ============================================================================


def _local(value: datetime | str, timezone: str) -> pd.Timestamp:
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        return ts.tz_localize(timezone)
    return ts.tz_convert(timezone)


def timeseries_date_range(
    start: datetime | str | None = None,
    end: datetime | str | None = None,
    timezone: str = "UTC",
    days: int = DEFAULT_DAYS,
    now: datetime | None = None,
) -> tuple[pd.Timestamp, pd.Timestamp]:
    """
    Resolve a requested period to UTC timestamps.

    Naive dates are read in ``timezone``. With both ``start`` and ``end``
    given they are used as they are; otherwise the period covers ``days``
    whole local days:

    - only ``start``: from local midnight on ``start``
    - only ``end``: up to the end of the local day holding ``end``
    - neither: up to the end of today

    Example:
        >>> timeseries_date_range("2023-01-01", timezone="America/Los_Angeles")
        (Timestamp('2023-01-01 08:00:00+0000', tz='UTC'),
         Timestamp('2023-01-03 08:00:00+0000', tz='UTC'))
    """
    if start is not None and end is not None:
        first = _local(start, timezone)
        last = _local(end, timezone)
    else:
        span = pd.DateOffset(days=days)
        if start is not None:
            first = _local(start, timezone).normalize()
            last = first + span
        else:
            if end is None:
                end = now if now is not None else pd.Timestamp.now(tz="UTC")
            last = _local(end, timezone).normalize() + pd.DateOffset(days=1)
            first = last - span

    return first.tz_convert("UTC"), last.tz_convert("UTC")


# ============================================================================
# PURPLEAIR
# ============================================================================


def create_purpleair_timeseries(
    config: PurpleAirConfig,
    synoptic: SynopticTable,
    sensor_index: str | int,
    start: datetime | str | None = None,
    end: datetime | str | None = None,
    timezone: str | None = "UTC",
    average: int = 60,
    fields: str | list[str] = HISTORY_HOURLY_FIELDS,
    parallel: bool = False,
    sleep: float = DEFAULT_SLEEP,
    read_key: str | None = None,
) -> SensorTimeseries:
    """
    Download and build a PurpleAir sensor's time series.

    The sensor must appear exactly once in ``synoptic``; that row becomes
    the series metadata.

    Args:
        config: PurpleAir connection settings
        synoptic: Enriched PurpleAir synoptic table
        sensor_index: PurpleAir sensor index
        start: Start of the period; see ``timeseries_date_range`` for the
            default when it or ``end`` is omitted
        end: End of the period
        timezone: Olson timezone naive dates are read in. None uses the
            sensor's own timezone (UTC when it has none).
        average: Averaging period in minutes
        fields: History fields to request
        parallel: Fetch the request windows concurrently
        sleep: Pause between sequential requests
        read_key: Read key for a private sensor

    Returns:
        SensorTimeseries: The stitched series

    Raises:
        InvalidTimeseriesError: If the sensor is not in ``synoptic`` exactly once
        FetchError: If any window fails to download
        EmptyResultError: If the sensor reported nothing in the period

    Example:
        >>> pat = create_purpleair_timeseries(
        ...     config, synoptic, "76545", "2023-01-01", "2023-01-08"
        ... )
    """
    sensor_index = str(sensor_index)
    meta = _match_meta(synoptic, sensor_index)

    if timezone is None:
        timezone = meta["timezone"].iloc[0]
        if pd.isna(timezone):
            logger.warning(f"Sensor {sensor_index} has no timezone; reading dates as UTC")
            timezone = "UTC"

    start, end = timeseries_date_range(start, end, timezone)
    windows = timeseries_windows(start, end, average)
    logger.info(
        f"Fetching PurpleAir sensor {sensor_index} in {len(windows)} request(s)"
    )

    def fetch_chunk(window_start, window_end):
        return fetch_purpleair_timeseries_chunk(
            config,
            sensor_index,
            window_start,
            window_end,
            fields=fields,
            average=average,
            read_key=read_key,
        )

    chunks = fetch_timeseries_chunks(fetch_chunk, windows, parallel=parallel, sleep=sleep)
    return build_timeseries(sensor_index, synoptic, chunks)
