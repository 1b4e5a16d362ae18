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
Synoptic normalisation: raw vendor tables to enriched ``SynopticTable``s.

Every step is a pure Transformer and the steps run in a fixed order:

1. vendor-specific renaming and type coercion
2. deviceID, privacy and other derived descriptive fields
3. drop rows with missing or out-of-range coordinates
4. locationID (geohash) and deviceDeploymentID
5. spatial enrichment (rows with no country are dropped) and scope filters
6. one row per deviceDeploymentID, keeping the most recently observed
7. identity columns first

Example:
    >>> raw = fetch_purpleair_synoptic(config, bbox=bbox)
    >>> synoptic = normalize_synoptic(raw, lookup, country_codes=["US"])
    >>> synoptic.data[["deviceDeploymentID", "stateCode", "timezone"]]
"""

from datetime import datetime
from logging import getLogger
from typing import Callable, Sequence

import pandas as pd

from .config import BoundingBox
from .locations import (
    deployment_ids,
    haversine_distance,
    location_ids,
    parse_radius,
    valid_coordinates,
)
from .sources.purpleair import LOCATION_TYPES, NUMERIC_FIELDS, TIMESTAMP_FIELDS
from .spatial import SpatialLookup, enrich_spatial, get_spatial_lookup
from .transforms import (
    add_column,
    as_utc,
    coerce_numeric,
    coerce_string,
    compose,
    convert_timestamps,
    drop_columns,
    ensure_columns,
    filter_rows,
    map_values,
    pipe,
    rename_columns,
    reorder_columns,
    reset_index,
)
from .types import (
    CALIBRATION_COLUMNS,
    CORE_METADATA_COLUMNS,
    ID_COLUMNS,
    ClarityBundle,
    RawSynopticTable,
    SynopticTable,
    Transformer,
)

logger = getLogger(__name__)

FEET_TO_METRES = 0.3048

CLARITY_NUMERIC_FIELDS = [
    "longitude",
    "latitude",
    "QCFlag",
    "pm2.5",
    "nowcast",
    "pm2.5_QC",
    "nowcast_QC",
]


# ============================================================================
# VENDOR PIPELINES
# ============================================================================


def _elevation_from_altitude(df: pd.DataFrame):
    if "altitude" not in df.columns:
        return None
    return (df["altitude"] * FEET_TO_METRES).round()


def _column_or_none(column: str) -> Callable[[pd.DataFrame], pd.Series | None]:
    def value(df: pd.DataFrame):
        return df[column] if column in df.columns else None

    return value


def create_purpleair_enhancer() -> Transformer:
    """
    Rename, type and describe a raw PurpleAir synoptic table.

    ``private`` becomes ``privacy`` ("0" public, anything else private),
    ``location_type`` becomes "outside"/"inside", altitude in feet becomes
    ``elevation`` in metres.
    """
    return compose(
        rename_columns({"private": "privacy"}),
        coerce_string("sensor_index"),
        coerce_numeric(*NUMERIC_FIELDS),
        convert_timestamps(*TIMESTAMP_FIELDS, unit="s"),
        map_values("privacy", {0: "public"}, default="private"),
        map_values("location_type", LOCATION_TYPES),
        add_column("elevation", _elevation_from_altitude),
        add_column("sensorManufacturer", "Purple Air"),
        add_column("deviceID", lambda df: "pa." + df["sensor_index"]),
        add_column("locationName", _column_or_none("name")),
        drop_columns("icon"),
    )


def create_clarity_enhancer() -> Transformer:
    """Rename, type and describe a raw Clarity synoptic table."""
    return compose(
        rename_columns({"lat": "latitude", "lon": "longitude"}),
        coerce_string("datasourceId"),
        coerce_numeric(*CLARITY_NUMERIC_FIELDS),
        ensure_columns(*CALIBRATION_COLUMNS),
        ensure_columns("elevation"),
        add_column("sensorManufacturer", "Clarity"),
        add_column("deviceID", lambda df: "clarity." + df["datasourceId"]),
        add_column("privacy", "public"),
        add_column("locationName", lambda df: df["datasourceId"]),
    )


VENDOR_ENHANCERS: dict[str, Callable[[], Transformer]] = {
    "PurpleAir": create_purpleair_enhancer,
    "Clarity": create_clarity_enhancer,
}

# Column used to decide which of two colliding rows is newer
RECENCY_COLUMNS = {"PurpleAir": "last_seen", "Clarity": "datetime"}


# ============================================================================
# SHARED STEPS
# ============================================================================


def add_identity_columns() -> Transformer:
    """Drop unusable coordinates, then derive locationID and deviceDeploymentID."""
    return compose(
        filter_rows(valid_coordinates),
        add_column("locationID", lambda df: location_ids(df["longitude"], df["latitude"])),
        add_column(
            "deviceDeploymentID",
            lambda df: deployment_ids(df["locationID"], df["deviceID"]),
        ),
        ensure_columns(*CORE_METADATA_COLUMNS),
    )


def spatially_enrich(
    lookup: SpatialLookup,
    country_codes: Sequence[str] | None = None,
    state_codes: Sequence[str] | None = None,
    counties: Sequence[str] | None = None,
) -> Transformer:
    def transform(df: pd.DataFrame) -> pd.DataFrame:
        return enrich_spatial(
            df,
            lookup,
            country_codes=country_codes,
            state_codes=state_codes,
            counties=counties,
        )

    return transform


def keep_latest_deployment(recency_column: str | None) -> Transformer:
    """
    Return a function leaving one row per deviceDeploymentID.

    The row with the latest ``recency_column`` wins; without that column the
    first row wins. Surviving rows keep their original order.
    """

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        if recency_column in df.columns:
            ordered = df.sort_values(
                recency_column, ascending=False, kind="mergesort", na_position="last"
            )
        else:
            ordered = df
        kept = ordered.drop_duplicates(subset=["deviceDeploymentID"], keep="first")
        dropped = len(df) - len(kept)
        if dropped:
            logger.debug(f"Dropped {dropped} older rows with duplicate deviceDeploymentID")
        return kept.sort_index()

    return transform


# ============================================================================
# NORMALIZER
# ============================================================================


def normalize_synoptic(
    raw: RawSynopticTable | ClarityBundle,
    lookup: SpatialLookup | None = None,
    country_codes: Sequence[str] | None = None,
    state_codes: Sequence[str] | None = None,
    counties: Sequence[str] | None = None,
) -> SynopticTable:
    """
    Turn a raw synoptic table into an enriched, uniquely keyed SynopticTable.

    Args:
        raw: Output of a vendor synoptic fetcher
        lookup: Spatial lookup; defaults to the process-wide one
        country_codes: Keep only these countries
        state_codes: Keep only these states (needs exactly one country)
        counties: Keep only these US counties (needs exactly one state)

    Returns:
        SynopticTable: Rows without valid coordinates or a resolvable
        country are dropped; ``deviceDeploymentID`` is unique

    Raises:
        ValueError: For an unknown vendor or inconsistent scope hints
    """
    if isinstance(raw, ClarityBundle):
        raw = raw.synoptic

    if raw.vendor not in VENDOR_ENHANCERS:
        raise ValueError(f"No synoptic normalizer for vendor {raw.vendor!r}")

    if lookup is None:
        lookup = get_spatial_lookup()

    logger.info(f"Normalising {len(raw)} {raw.vendor} synoptic records")

    df = pipe(
        raw.data.reset_index(drop=True),
        VENDOR_ENHANCERS[raw.vendor](),
        add_identity_columns(),
        spatially_enrich(lookup, country_codes, state_codes, counties),
        keep_latest_deployment(RECENCY_COLUMNS.get(raw.vendor)),
        reorder_columns(*ID_COLUMNS),
        reset_index(),
    )

    logger.info(f"Kept {len(df)} of {len(raw)} {raw.vendor} synoptic records")
    return SynopticTable(data=df, vendor=raw.vendor)


def normalize_purpleair_synoptic(raw: RawSynopticTable, lookup=None, **scope) -> SynopticTable:
    if raw.vendor != "PurpleAir":
        raise ValueError(f"Expected a PurpleAir table, got {raw.vendor!r}")
    return normalize_synoptic(raw, lookup, **scope)


def normalize_clarity_synoptic(
    raw: RawSynopticTable | ClarityBundle, lookup=None, **scope
) -> SynopticTable:
    if isinstance(raw, ClarityBundle):
        raw = raw.synoptic
    if raw.vendor != "Clarity":
        raise ValueError(f"Expected a Clarity table, got {raw.vendor!r}")
    return normalize_synoptic(raw, lookup, **scope)


# ============================================================================
# FILTERS
# ============================================================================


def filter_synoptic(
    table: SynopticTable, predicate: Callable[[pd.DataFrame], pd.Series]
) -> SynopticTable:
    """Keep the rows of ``table`` where ``predicate`` is True."""
    df = pipe(table.data, filter_rows(predicate), reset_index())
    return SynopticTable(data=df, vendor=table.vendor)


def filter_area(table: SynopticTable, bbox: BoundingBox | None = None) -> SynopticTable:
    """
    Keep sensors inside a bounding box.

    Without a box every sensor is kept (the box defaults to the data extent).
    """
    if bbox is None:
        return table
    bbox = bbox.normalized()
    return filter_synoptic(
        table,
        lambda df: df["longitude"].between(bbox.west, bbox.east)
        & df["latitude"].between(bbox.south, bbox.north),
    )


def filter_near(
    table: SynopticTable,
    longitude: float,
    latitude: float,
    radius: str | float = "1 km",
) -> SynopticTable:
    """
    Keep sensors within ``radius`` of a point.

    Args:
        radius: "10 km", "500 m", or a number of metres
    """
    metres = parse_radius(radius)
    return filter_synoptic(
        table,
        lambda df: pd.Series(
            haversine_distance(df["longitude"], df["latitude"], longitude, latitude)
            <= metres,
            index=df.index,
        ),
    )


def filter_date(
    table: SynopticTable,
    start: datetime | str | None = None,
    end: datetime | str | None = None,
) -> SynopticTable:
    """
    Keep sensors that were alive at some point between ``start`` and ``end``.

    PurpleAir tables use ``last_seen >= start`` and ``date_created <= end``.
    Other tables use the observation ``datetime``.
    """
    start = None if start is None else as_utc(start)
    end = None if end is None else as_utc(end)

    def in_range(df: pd.DataFrame) -> pd.Series:
        mask = pd.Series(True, index=df.index)
        if "last_seen" in df.columns and "date_created" in df.columns:
            if start is not None:
                mask &= df["last_seen"] >= start
            if end is not None:
                mask &= df["date_created"] <= end
        elif "datetime" in df.columns:
            if start is not None:
                mask &= df["datetime"] >= start
            if end is not None:
                mask &= df["datetime"] < end
        else:
            raise ValueError("Table has no date columns to filter on")
        return mask

    return filter_synoptic(table, in_range)
