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
Spatial enrichment: country, state, county and timezone for sensor positions.

The lookups are defined by the ``SpatialLookup`` protocol. The bundled
``PolygonSpatialLookup`` answers them with point-in-polygon joins against
GeoDataFrames that use these column names:

    countries  countryCode                (EEZ-inclusive country polygons)
    states     countryCode, stateCode     (admin-1 boundaries)
    counties   stateCode, countyName      (US counties)
    timezones  timezone[, countryCode]    (timezone boundaries)

Polygon layers are loaded once per process with ``initialize_spatial()`` and
are read-only afterwards, so lookups are safe to share between threads.

A point that no polygon contains gets None. That is a result, not an error.
"""

import warnings
from collections.abc import Iterable, Sequence
from logging import getLogger
from pathlib import Path
from typing import Protocol

import geopandas as gpd
import numpy as np
import pandas as pd

logger = getLogger(__name__)

# Default CRS for all geospatial operations (WGS 84)
DEFAULT_CRS = "EPSG:4326"

# Tolerance for buffered lookups, in degrees (roughly 1 km)
DEFAULT_BUFFER = 0.01


class SpatialLookup(Protocol):
    """Parallel-array spatial lookups; one value or None per input point."""

    def country_code_at(
        self, longitude: Sequence[float], latitude: Sequence[float]
    ) -> list[str | None]: ...

    def state_code_at(
        self,
        longitude: Sequence[float],
        latitude: Sequence[float],
        country_codes: Iterable[str] | None = None,
    ) -> list[str | None]: ...

    def county_name_at(
        self,
        longitude: Sequence[float],
        latitude: Sequence[float],
        state_codes: Iterable[str] | None = None,
    ) -> list[str | None]: ...

    def timezone_at(
        self,
        longitude: Sequence[float],
        latitude: Sequence[float],
        country_codes: Iterable[str] | None = None,
    ) -> list[str | None]: ...


# ============================================================================
# POLYGON LOOKUP
# ============================================================================


def _prepare_layer(
    layer: gpd.GeoDataFrame, required: list[str], name: str
) -> gpd.GeoDataFrame:
    missing_cols = [col for col in required if col not in layer.columns]
    if missing_cols:
        raise ValueError(f"{name} layer is missing required columns: {missing_cols}")

    if layer.crs is None:
        layer = layer.set_crs(DEFAULT_CRS)
    elif layer.crs != DEFAULT_CRS:
        logger.debug(f"Reprojecting {name} layer from {layer.crs} to {DEFAULT_CRS}")
        layer = layer.to_crs(DEFAULT_CRS)

    return layer


class PolygonSpatialLookup:
    """
    ``SpatialLookup`` backed by geopandas spatial joins.

    Country lookups are exact (``within``). State, county and timezone
    lookups are buffered: points left unresolved by the exact join are
    matched to the nearest polygon no further than ``buffer`` degrees away.

    Args:
        countries: Country (+EEZ) polygons with a ``countryCode`` column
        states: Admin-1 polygons with ``countryCode`` and ``stateCode``
        counties: Optional US county polygons with ``stateCode`` and ``countyName``
        timezones: Optional timezone polygons with ``timezone``
        buffer: Tolerance for buffered lookups, in degrees
    """

    def __init__(
        self,
        countries: gpd.GeoDataFrame,
        states: gpd.GeoDataFrame,
        counties: gpd.GeoDataFrame | None = None,
        timezones: gpd.GeoDataFrame | None = None,
        buffer: float = DEFAULT_BUFFER,
    ):
        self.countries = _prepare_layer(countries, ["countryCode"], "countries")
        self.states = _prepare_layer(states, ["countryCode", "stateCode"], "states")
        self.counties = (
            None
            if counties is None
            else _prepare_layer(counties, ["stateCode", "countyName"], "counties")
        )
        self.timezones = (
            None
            if timezones is None
            else _prepare_layer(timezones, ["timezone"], "timezones")
        )
        self.buffer = buffer

    @classmethod
    def from_files(
        cls,
        countries: str | Path,
        states: str | Path,
        counties: str | Path | None = None,
        timezones: str | Path | None = None,
        buffer: float = DEFAULT_BUFFER,
    ) -> "PolygonSpatialLookup":
        """Read each layer from any file format geopandas can open."""
        logger.info("Loading spatial datasets")
        return cls(
            countries=gpd.read_file(countries),
            states=gpd.read_file(states),
            counties=None if counties is None else gpd.read_file(counties),
            timezones=None if timezones is None else gpd.read_file(timezones),
            buffer=buffer,
        )

    # ------------------------------------------------------------------------

    def _lookup(
        self,
        layer: gpd.GeoDataFrame | None,
        value_column: str,
        longitude: Sequence[float],
        latitude: Sequence[float],
        scope_column: str | None = None,
        scope: Iterable[str] | None = None,
        buffered: bool = False,
    ) -> list[str | None]:
        n = len(longitude)
        if n == 0:
            return []
        if layer is None:
            return [None] * n

        polygons = layer
        if scope is not None and scope_column in layer.columns:
            polygons = layer[layer[scope_column].isin(list(scope))]
        polygons = polygons[[value_column, "geometry"]]
        if polygons.empty:
            return [None] * n

        points = gpd.GeoDataFrame(
            {"_point": np.arange(n)},
            geometry=gpd.points_from_xy(longitude, latitude),
            crs=DEFAULT_CRS,
        )

        joined = gpd.sjoin(points, polygons, how="left", predicate="within")
        values = joined.groupby("_point")[value_column].first().reindex(np.arange(n))

        unresolved = values.isna().to_numpy()
        if buffered and self.buffer > 0 and unresolved.any():
            # Distances in degrees trigger a geographic CRS warning
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", UserWarning)
                nearest = gpd.sjoin_nearest(
                    points[unresolved],
                    polygons,
                    how="left",
                    max_distance=self.buffer,
                )
            values = values.fillna(nearest.groupby("_point")[value_column].first())

        return [None if pd.isna(v) else v for v in values]

    def country_code_at(self, longitude, latitude):
        return self._lookup(self.countries, "countryCode", longitude, latitude)

    def state_code_at(self, longitude, latitude, country_codes=None):
        return self._lookup(
            self.states,
            "stateCode",
            longitude,
            latitude,
            scope_column="countryCode",
            scope=country_codes,
            buffered=True,
        )

    def county_name_at(self, longitude, latitude, state_codes=None):
        return self._lookup(
            self.counties,
            "countyName",
            longitude,
            latitude,
            scope_column="stateCode",
            scope=state_codes,
            buffered=True,
        )

    def timezone_at(self, longitude, latitude, country_codes=None):
        return self._lookup(
            self.timezones,
            "timezone",
            longitude,
            latitude,
            scope_column="countryCode",
            scope=country_codes,
            buffered=True,
        )


# ============================================================================
# PROCESS-WIDE LOOKUP
# ============================================================================

_SPATIAL_LOOKUP: SpatialLookup | None = None


def initialize_spatial(lookup: SpatialLookup) -> None:
    """
    Install the spatial lookup used when none is passed explicitly.

    Call once, before any pipeline runs.

    Example:
        >>> initialize_spatial(PolygonSpatialLookup.from_files(
        ...     "EEZCountries.gpkg", "NaturalEarthAdm1.gpkg",
        ...     "USCensusCounties.gpkg", "OSMTimezones.gpkg",
        ... ))
    """
    global _SPATIAL_LOOKUP
    _SPATIAL_LOOKUP = lookup


def spatial_is_initialized() -> bool:
    return _SPATIAL_LOOKUP is not None


def get_spatial_lookup() -> SpatialLookup:
    if _SPATIAL_LOOKUP is None:
        raise RuntimeError(
            "Spatial lookups have not been initialised. "
            "Call airsensor.spatial.initialize_spatial() first."
        )
    return _SPATIAL_LOOKUP


# ============================================================================
# ENRICHMENT
# ============================================================================


def normalize_county_name(name: str) -> str:
    """'los angeles county' -> 'Los Angeles'"""
    name = str(name).strip().title()
    if name.endswith(" County"):
        name = name[: -len(" County")]
    return name


def validate_scope(
    country_codes: Sequence[str] | None = None,
    state_codes: Sequence[str] | None = None,
    counties: Sequence[str] | None = None,
) -> tuple[list[str] | None, list[str] | None, list[str] | None]:
    """
    Check and normalise spatial scope hints.

    Returns:
        tuple: Upper-cased country codes, upper-cased state codes and
        normalised county names (each None when not given)

    Raises:
        ValueError: If state codes are given without exactly one country
            code, or counties without exactly one state code
    """
    if isinstance(country_codes, str):
        country_codes = [country_codes]
    if isinstance(state_codes, str):
        state_codes = [state_codes]
    if isinstance(counties, str):
        counties = [counties]

    countries = [c.upper() for c in country_codes] if country_codes else None
    states = [s.upper() for s in state_codes] if state_codes else None
    county_names = [normalize_county_name(c) for c in counties] if counties else None

    if states is not None and (countries is None or len(countries) != 1):
        raise ValueError(
            "Please limit countryCodes to a single country when using stateCodes."
        )
    if county_names is not None and (states is None or len(states) != 1):
        raise ValueError(
            "Please limit stateCodes to a single state when using counties."
        )

    return countries, states, county_names


def enrich_spatial(
    df: pd.DataFrame,
    lookup: SpatialLookup,
    country_codes: Sequence[str] | None = None,
    state_codes: Sequence[str] | None = None,
    counties: Sequence[str] | None = None,
) -> pd.DataFrame:
    """
    Add countryCode, stateCode, countyName and timezone columns.

    Rows with no resolvable country are dropped. Scope hints filter the
    result further and narrow the polygon search.

    Args:
        df: Table with numeric ``longitude`` and ``latitude`` columns
        lookup: The spatial lookup to use
        country_codes: Keep only these ISO 3166-1 alpha-2 countries
        state_codes: Keep only these ISO 3166-2 alpha-2 states
        counties: Keep only these (US) county names

    Returns:
        pd.DataFrame: A new, spatially enriched table
    """
    countries, states, county_names = validate_scope(country_codes, state_codes, counties)

    df = df.assign(countryCode=lookup.country_code_at(df["longitude"], df["latitude"]))
    df = df[df["countryCode"].notna()]
    if countries is not None:
        df = df[df["countryCode"].isin(countries)]

    resolved_countries = sorted(df["countryCode"].unique())
    df = df.assign(
        stateCode=lookup.state_code_at(
            df["longitude"], df["latitude"], country_codes=resolved_countries
        )
    )
    if states is not None:
        df = df[df["stateCode"].isin(states)]

    # County names only exist for the US
    is_us = (df["countryCode"] == "US").to_numpy()
    county = pd.Series([None] * len(df), index=df.index, dtype=object)
    if is_us.any():
        us = df[is_us]
        us_states = sorted(us["stateCode"].dropna().unique())
        county.iloc[np.flatnonzero(is_us)] = lookup.county_name_at(
            us["longitude"], us["latitude"], state_codes=us_states or None
        )
    df = df.assign(countyName=county)
    if county_names is not None:
        df = df[df["countyName"].isin(county_names)]

    df = df.assign(
        timezone=lookup.timezone_at(
            df["longitude"], df["latitude"], country_codes=resolved_countries
        )
    )

    logger.debug(f"Spatial enrichment kept {len(df)} rows")
    return df
