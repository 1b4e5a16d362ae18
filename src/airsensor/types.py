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
Core type definitions for AirSensor.

Every stage of the pipeline has its own named type so that it is always clear
which transformations a table has already been through:

    RawSynopticTable / RawTimeseriesTable / ClarityBundle   (fetched)
    SynopticTable                                           (normalised + enriched)
    SensorTimeseries                                        (single sensor)
    Monitor                                                 (multi-sensor, wide)

All of them wrap pandas DataFrames. Transform functions return new objects and
never modify the tables they are given.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, TypeAlias

import pandas as pd

from .exceptions import AlignmentError

# ============================================================================
# Column names
# ============================================================================

# Identity columns always come first in an enriched synoptic table
ID_COLUMNS = ["deviceDeploymentID", "deviceID", "locationID"]

SPATIAL_COLUMNS = [
    "longitude",
    "latitude",
    "elevation",
    "countryCode",
    "stateCode",
    "countyName",
    "timezone",
]

# Address fields that no vendor fills in but downstream tools expect
CORE_METADATA_COLUMNS = ["houseNumber", "street", "city", "zip"]

CALIBRATION_COLUMNS = ["calibrationId", "calibrationCategory"]

# Native sensor identifier column for each vendor
VENDOR_ID_COLUMNS = {
    "PurpleAir": "sensor_index",
    "Clarity": "datasourceId",
}


# ============================================================================
# Raw (fetched) tables
# ============================================================================


@dataclass(frozen=True, eq=False)
class RawSynopticTable:
    """
    A flat synoptic table exactly as returned by a vendor fetcher.

    Column names are the vendor's raw field names. No renaming, typing or
    enrichment has been applied.
    """

    data: pd.DataFrame
    vendor: str

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True, eq=False)
class RawTimeseriesTable:
    """One raw time-series chunk covering a single request sub-window."""

    data: pd.DataFrame
    vendor: str
    sensor_id: str
    start: datetime | None = None
    end: datetime | None = None

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True, eq=False)
class ClarityBundle:
    """
    Clarity synoptic snapshot plus wide per-sensor matrices.

    ``matrices`` maps a value name ("pm2.5", "nowcast") or its QC companion
    ("pm2.5_QC", "nowcast_QC") to a wide DataFrame with a ``datetime`` column
    and one column per ``datasourceId``.
    """

    synoptic: RawSynopticTable
    matrices: dict[str, pd.DataFrame] = field(default_factory=dict)


# ============================================================================
# Enriched synoptic records
# ============================================================================


@dataclass(frozen=True)
class CalibrationInfo:
    """Vendor calibration assignment for a sensor (Clarity USFS2 only)."""

    calibration_id: str
    calibration_category: str | None = None


def _nullable(value: Any) -> Any:
    return None if value is None or pd.isna(value) else value


@dataclass(frozen=True)
class SensorSynopticRecord:
    """
    One sensor deployment at observation time.

    Attributes:
        deviceDeploymentID: ``locationID + "_" + deviceID``, the durable key
        deviceID: Vendor-prefixed sensor id, e.g. "pa.76545"
        locationID: Geohash of the sensor position
        calibration: Present only when the vendor reported calibration fields
        extra: All remaining (vendor-specific) columns of the row
    """

    deviceDeploymentID: str
    deviceID: str
    locationID: str
    locationName: str | None
    longitude: float
    latitude: float
    elevation: float | None
    countryCode: str
    stateCode: str | None
    countyName: str | None
    timezone: str | None
    privacy: str | None
    sensorManufacturer: str | None
    calibration: CalibrationInfo | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_series(cls, row: pd.Series) -> "SensorSynopticRecord":
        base_names = [
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
            "privacy",
            "sensorManufacturer",
        ]
        base = {name: _nullable(row.get(name)) for name in base_names}

        calibration = None
        calibration_id = _nullable(row.get("calibrationId"))
        if calibration_id is not None:
            calibration = CalibrationInfo(
                calibration_id=str(calibration_id),
                calibration_category=_nullable(row.get("calibrationCategory")),
            )

        skip = set(base_names) | set(CALIBRATION_COLUMNS)
        extra = {k: v for k, v in row.items() if k not in skip}

        return cls(**base, calibration=calibration, extra=extra)


@dataclass(frozen=True, eq=False)
class SynopticTable:
    """
    Normalised, spatially enriched synoptic table.

    ``deviceDeploymentID`` is unique and every row has a resolved
    ``countryCode``.
    """

    data: pd.DataFrame
    vendor: str

    def __len__(self) -> int:
        return len(self.data)

    @property
    def id_column(self) -> str:
        """Name of the vendor's native sensor id column."""
        return VENDOR_ID_COLUMNS.get(self.vendor, "deviceID")

    def records(self) -> Iterator[SensorSynopticRecord]:
        for _, row in self.data.iterrows():
            yield SensorSynopticRecord.from_series(row)

    def match(self, key: str) -> pd.DataFrame:
        """
        Return the rows whose deviceDeploymentID, deviceID or native id equal ``key``.
        """
        key = str(key)
        df = self.data
        mask = (df["deviceDeploymentID"] == key) | (df["deviceID"] == key)
        if self.id_column in df.columns:
            mask = mask | (df[self.id_column].astype(str) == key)
        return df[mask]


# ============================================================================
# Time series and monitors
# ============================================================================


@dataclass(frozen=True, eq=False)
class SensorTimeseries:
    """
    A single sensor's measurements.

    ``meta`` has exactly one row. ``data`` has a UTC ``datetime`` column that
    is strictly increasing.
    """

    meta: pd.DataFrame
    data: pd.DataFrame

    @property
    def device_deployment_id(self) -> str:
        return self.meta["deviceDeploymentID"].iloc[0]


@dataclass(frozen=True, eq=False)
class Monitor:
    """
    Multi-sensor, time-aligned PM2.5 data.

    ``meta`` has one row per deviceDeploymentID. ``data`` has a ``datetime``
    column followed by one column per deviceDeploymentID, in the same order
    as the rows of ``meta``.
    """

    meta: pd.DataFrame
    data: pd.DataFrame

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Check the meta/data invariants.

        Raises:
            AlignmentError: If meta and data disagree or keys are not unique
        """
        if "deviceDeploymentID" not in self.meta.columns:
            raise AlignmentError("Monitor meta has no 'deviceDeploymentID' column")
        if "datetime" not in self.data.columns or self.data.columns[0] != "datetime":
            raise AlignmentError("Monitor data must start with a 'datetime' column")

        ids = self.meta["deviceDeploymentID"].tolist()
        columns = list(self.data.columns[1:])

        if len(ids) != len(set(ids)):
            raise AlignmentError("Monitor meta deviceDeploymentID values are not unique")
        if len(ids) != len(columns):
            raise AlignmentError(
                f"{len(ids)} rows of meta cannot be matched to "
                f"{len(columns)} data columns"
            )
        if ids != columns:
            raise AlignmentError(
                "Monitor data columns are not in the same order as meta rows"
            )

    @property
    def device_deployment_ids(self) -> list[str]:
        return self.meta["deviceDeploymentID"].tolist()


# ============================================================================
# Function type aliases
# ============================================================================

Transformer: TypeAlias = Callable[[pd.DataFrame], pd.DataFrame]
"""
A function that transforms a DataFrame (e.g., renaming columns, adding fields).

Args:
    df: Input DataFrame

Returns:
    pd.DataFrame: Transformed DataFrame
"""

ChunkFetcher: TypeAlias = Callable[[datetime, datetime], RawTimeseriesTable]
"""
A function that downloads one time-series sub-window.

Args:
    start: Start of the window (inclusive)
    end: End of the window

Returns:
    RawTimeseriesTable: The raw rows for that window
"""

ErrorMessageParser: TypeAlias = Callable[[Any], str]
"""Extracts a human readable vendor error message from an HTTP response."""
