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
User-facing entry points for AirSensor.

These functions run whole pipelines (FETCH -> NORMALIZE+ENRICH -> ASSEMBLE)
and are the only place that falls back to the API key registry and the
process-wide spatial lookup when no explicit config or lookup is given.

Basic usage:
    >>> import airsensor
    >>> from airsensor.spatial import PolygonSpatialLookup, initialize_spatial
    >>>
    >>> initialize_spatial(PolygonSpatialLookup.from_files(...))
    >>> airsensor.set_api_key("PurpleAir", "ABCD-1234")
    >>>
    >>> synoptic = airsensor.create_purpleair_synoptic(
    ...     bbox=airsensor.BoundingBox(west=-122.5, east=-122.0, south=47.4, north=47.8),
    ...     country_codes=["US"],
    ... )
    >>> monitor = airsensor.create_purpleair_monitors(
    ...     synoptic, synoptic.data["sensor_index"], "2023-01-01", "2023-01-08"
    ... )
"""

from datetime import datetime
from logging import getLogger
from typing import Iterable, Sequence

from . import monitor as _monitor
from . import timeseries as _timeseries
from .config import BoundingBox, ClarityConfig, PurpleAirConfig
from .decorators import with_logging
from .exceptions import AirSensorError, EmptyResultError, InvalidTimeseriesError
from .registry import get_api_key
from .sources.clarity import (
    DEFAULT_COUNTRY_CODES,
    fetch_clarity_all_open,
    fetch_clarity_datasource,
)
from .sources.purpleair import HISTORY_HOURLY_FIELDS, fetch_purpleair_synoptic
from .spatial import SpatialLookup
from .synoptic import normalize_synoptic
from .types import Monitor, SensorTimeseries, SynopticTable

logger = getLogger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================


def _purpleair_config(config: PurpleAirConfig | None) -> PurpleAirConfig:
    if config is not None:
        return config
    api_key = get_api_key("PurpleAir")
    if not api_key:
        raise ValueError(
            "PurpleAir API key required. Pass a PurpleAirConfig, call "
            "airsensor.set_api_key('PurpleAir', key) or set PURPLEAIR_API_KEY."
        )
    return PurpleAirConfig(api_key=api_key)


def _clarity_config(config: ClarityConfig | None) -> ClarityConfig:
    if config is not None:
        return config
    api_key = get_api_key("Clarity")
    if not api_key:
        raise ValueError(
            "Clarity API key required. Pass a ClarityConfig, call "
            "airsensor.set_api_key('Clarity', key) or set CLARITY_API_KEY."
        )
    return ClarityConfig(api_key=api_key)


# ============================================================================
# PURPLEAIR
# ============================================================================


@with_logging()
def create_purpleair_synoptic(
    config: PurpleAirConfig | None = None,
    lookup: SpatialLookup | None = None,
    bbox: BoundingBox | None = None,
    country_codes: Sequence[str] | None = None,
    state_codes: Sequence[str] | None = None,
    counties: Sequence[str] | None = None,
    **fetch_options,
) -> SynopticTable:
    """
    Download and enrich a PurpleAir synoptic table.

    Args:
        config: PurpleAir settings; defaults to the registered key
        lookup: Spatial lookup; defaults to the process-wide one
        bbox: Bounding box to request
        country_codes: Keep only these countries
        state_codes: Keep only these states
        counties: Keep only these US counties
        **fetch_options: Passed to ``fetch_purpleair_synoptic``
            (fields, location_type, max_age, show_only, ...)

    Returns:
        SynopticTable: Enriched, uniquely keyed sensors
    """
    raw = fetch_purpleair_synoptic(_purpleair_config(config), bbox=bbox, **fetch_options)
    return normalize_synoptic(
        raw,
        lookup,
        country_codes=country_codes,
        state_codes=state_codes,
        counties=counties,
    )


@with_logging()
def create_purpleair_timeseries(
    synoptic: SynopticTable,
    sensor_index: str | int,
    start: datetime | str | None = None,
    end: datetime | str | None = None,
    config: PurpleAirConfig | None = None,
    timezone: str | None = "UTC",
    average: int = 60,
    fields: str | list[str] = HISTORY_HOURLY_FIELDS,
    parallel: bool = False,
    sleep: float = _timeseries.DEFAULT_SLEEP,
    read_key: str | None = None,
) -> SensorTimeseries:
    """Download one PurpleAir sensor's history as a SensorTimeseries."""
    return _timeseries.create_purpleair_timeseries(
        _purpleair_config(config),
        synoptic,
        sensor_index,
        start,
        end,
        timezone=timezone,
        average=average,
        fields=fields,
        parallel=parallel,
        sleep=sleep,
        read_key=read_key,
    )


def _purpleair_monitor(
    config: PurpleAirConfig,
    synoptic: SynopticTable,
    sensor_index: str | int,
    start: datetime | str | None,
    end: datetime | str | None,
    timezone: str | None,
    average: int,
    parallel: bool,
    apply_correction: bool,
    correction: str,
    read_key: str | None = None,
) -> Monitor:
    timeseries = _timeseries.create_purpleair_timeseries(
        config,
        synoptic,
        sensor_index,
        start,
        end,
        timezone=timezone,
        average=average,
        parallel=parallel,
        read_key=read_key,
    )
    return _monitor.timeseries_to_monitor(
        timeseries, apply_correction=apply_correction, correction=correction
    )


@with_logging()
def create_purpleair_monitor(
    synoptic: SynopticTable,
    sensor_index: str | int,
    start: datetime | str | None = None,
    end: datetime | str | None = None,
    config: PurpleAirConfig | None = None,
    timezone: str | None = "UTC",
    average: int = 60,
    parallel: bool = False,
    apply_correction: bool = True,
    correction: str = "EPA_FASM",
    read_key: str | None = None,
) -> Monitor:
    """
    Download one PurpleAir sensor and turn it into a single-sensor Monitor.

    The data column holds corrected PM2.5 (or raw ``pm2.5_cf_1`` when
    ``apply_correction`` is False). Dates follow
    ``timeseries.create_purpleair_timeseries``.
    """
    return _purpleair_monitor(
        _purpleair_config(config),
        synoptic,
        sensor_index,
        start,
        end,
        timezone,
        average,
        parallel,
        apply_correction,
        correction,
        read_key=read_key,
    )


@with_logging()
def create_purpleair_monitors(
    synoptic: SynopticTable,
    sensor_indices: Iterable[str | int],
    start: datetime | str | None = None,
    end: datetime | str | None = None,
    config: PurpleAirConfig | None = None,
    timezone: str | None = "UTC",
    average: int = 60,
    parallel: bool = False,
    apply_correction: bool = True,
    correction: str = "EPA_FASM",
) -> Monitor:
    """
    Build one Monitor covering many PurpleAir sensors.

    A sensor that fails (no data, bad metadata, download error) is logged
    as a warning and skipped; the others are still combined. With
    ``timezone=None`` each sensor's dates are read in its own timezone.

    Raises:
        EmptyResultError: If no sensor could be built
    """
    config = _purpleair_config(config)

    monitors = []
    for sensor_index in sensor_indices:
        try:
            monitors.append(
                _purpleair_monitor(
                    config,
                    synoptic,
                    sensor_index,
                    start,
                    end,
                    timezone,
                    average,
                    parallel,
                    apply_correction,
                    correction,
                )
            )
        except AirSensorError as e:
            logger.warning(f"Skipping PurpleAir sensor {sensor_index}: {e}")

    if not monitors:
        raise EmptyResultError("No PurpleAir monitors could be created")

    logger.info(f"Combining {len(monitors)} PurpleAir monitors")
    return _monitor.combine_monitors(*monitors)


# ============================================================================
# CLARITY
# ============================================================================


@with_logging()
def create_clarity_synoptic(
    config: ClarityConfig | None = None,
    lookup: SpatialLookup | None = None,
    resolution: str = "hourly",
    country_codes: Sequence[str] | None = None,
    state_codes: Sequence[str] | None = None,
    counties: Sequence[str] | None = None,
) -> SynopticTable:
    """Download and enrich the latest state of every open Clarity sensor."""
    bundle = fetch_clarity_all_open(_clarity_config(config), resolution=resolution)
    return normalize_synoptic(
        bundle,
        lookup,
        country_codes=country_codes,
        state_codes=state_codes,
        counties=counties,
    )


@with_logging()
def create_all_clarity_monitors(
    config: ClarityConfig | None = None,
    lookup: SpatialLookup | None = None,
    country_codes: Sequence[str] | None = DEFAULT_COUNTRY_CODES,
    parameter: str = "pm2.5",
    apply_qc: bool = True,
    resolution: str = "hourly",
) -> Monitor:
    """
    Build a Monitor of every open Clarity sensor in ``country_codes``.

    Args:
        config: Clarity settings; defaults to the registered key
        lookup: Spatial lookup; defaults to the process-wide one
        country_codes: Countries to keep (North America by default)
        parameter: "pm2.5" or "nowcast"
        apply_qc: Mask values whose QC flag is missing or 0
        resolution: "hourly" or "individual"
    """
    bundle = fetch_clarity_all_open(_clarity_config(config), resolution=resolution)
    synoptic = normalize_synoptic(bundle, lookup, country_codes=country_codes)
    return _monitor.create_clarity_monitor(
        bundle, synoptic, parameter=parameter, apply_qc=apply_qc
    )


@with_logging()
def update_all_clarity_monitors(
    monitor: Monitor,
    config: ClarityConfig | None = None,
    lookup: SpatialLookup | None = None,
    country_codes: Sequence[str] | None = DEFAULT_COUNTRY_CODES,
    parameter: str = "pm2.5",
    apply_qc: bool = True,
    resolution: str = "hourly",
) -> Monitor:
    """
    Refresh an existing Clarity Monitor with the latest data.

    The fresh data replaces the old wherever both cover the same timestamp
    and sensor; nothing is trimmed.
    """
    latest = create_all_clarity_monitors(
        config,
        lookup,
        country_codes=country_codes,
        parameter=parameter,
        apply_qc=apply_qc,
        resolution=resolution,
    )
    return _monitor.merge_monitors(monitor, latest)


@with_logging()
def create_clarity_open_monitor(
    synoptic: SynopticTable,
    datasource_id: str,
    config: ClarityConfig | None = None,
    parameter: str = "pm2.5",
    apply_qc: bool = True,
    resolution: str = "hourly",
) -> Monitor:
    """
    Build a single-sensor Monitor for one open Clarity sensor.

    ``datasource_id`` may be the Clarity datasourceId, deviceID or
    deviceDeploymentID, and must match exactly one row of ``synoptic``.

    Raises:
        InvalidTimeseriesError: If ``datasource_id`` does not match exactly
            one synoptic row
    """
    rows = synoptic.match(datasource_id)
    if len(rows) != 1:
        raise InvalidTimeseriesError(
            f"{len(rows)} synoptic records match '{datasource_id}'; expected 1"
        )
    sensor = SynopticTable(data=rows.reset_index(drop=True), vendor=synoptic.vendor)

    bundle = fetch_clarity_datasource(
        _clarity_config(config), str(rows["datasourceId"].iloc[0]), resolution=resolution
    )
    return _monitor.create_clarity_monitor(
        bundle, sensor, parameter=parameter, apply_qc=apply_qc
    )


@with_logging()
def update_clarity_open_monitor(
    monitor: Monitor,
    synoptic: SynopticTable,
    datasource_id: str,
    config: ClarityConfig | None = None,
    parameter: str = "pm2.5",
    apply_qc: bool = True,
    resolution: str = "hourly",
) -> Monitor:
    """Refresh a single-sensor Clarity Monitor; fresh values replace old ones."""
    latest = create_clarity_open_monitor(
        synoptic,
        datasource_id,
        config,
        parameter=parameter,
        apply_qc=apply_qc,
        resolution=resolution,
    )
    return _monitor.merge_monitors(monitor, latest)
