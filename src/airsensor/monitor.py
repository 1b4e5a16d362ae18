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
Monitor assembly: multi-sensor, time-aligned PM2.5 tables.

A ``Monitor`` pairs a ``meta`` table (one row per deviceDeploymentID) with a
wide ``data`` table (a ``datetime`` column, then one column per
deviceDeploymentID in meta row order). Monitors are built from

- a synoptic table plus wide value/QC matrices (Clarity), or
- a single corrected SensorTimeseries (PurpleAir),

and are combined with ``merge_monitors``, where incoming data replaces
existing data wherever both have a value slot.
"""

from functools import reduce
from logging import getLogger

import pandas as pd

from .correction import CORRECTED_COLUMN
from .correction import apply_correction as correct
from .exceptions import AlignmentError, MissingFieldError
from .transforms import (
    add_column,
    compose,
    drop_duplicates,
    ensure_columns,
    pipe,
    reset_index,
    select_columns,
)
from .types import (
    CORE_METADATA_COLUMNS,
    VENDOR_ID_COLUMNS,
    ClarityBundle,
    Monitor,
    SensorTimeseries,
    SynopticTable,
    Transformer,
)

logger = getLogger(__name__)

MONITOR_META_COLUMNS = [
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
    *CORE_METADATA_COLUMNS,
    "sensor_index",
    "datasourceId",
    "privacy",
    "sensorManufacturer",
]

# Fields downstream monitor tools expect; null unless set below
MONITOR_EXTRA_COLUMNS = [
    "pollutant",
    "units",
    "dataIngestSource",
    "dataIngestUnitID",
    "deviceType",
    "address",
    "dataIngestUrl",
    "AQSID",
    "fullAQSID",
    "deploymentType",
    "deviceDescription",
    "deviceExtra",
    "dataIngestURL",
    "dataIngestExtra",
    "dataIngestDescription",
]

POLLUTANT = "PM2.5"
UNITS = "UG/M3"


# ============================================================================
# METADATA
# ============================================================================


def _vendor_of(meta: pd.DataFrame) -> str | None:
    for vendor, column in VENDOR_ID_COLUMNS.items():
        if column in meta.columns:
            return vendor
    return None


def create_monitor_meta(vendor: str | None) -> Transformer:
    """
    Return a function turning synoptic rows into monitor ``meta`` rows.

    Keeps the identity, location and descriptive columns, adds the extra
    monitor fields and removes repeated deviceDeploymentIDs (first wins).
    """
    id_column = VENDOR_ID_COLUMNS.get(vendor)

    def unit_id(df: pd.DataFrame):
        if id_column in df.columns:
            return df[id_column].astype(str)
        return None

    def device_type(df: pd.DataFrame):
        return df["model"] if "model" in df.columns else None

    def zip_code(df: pd.DataFrame):
        if "postalCode" in df.columns:
            return df["zip"].fillna(df["postalCode"])
        return df["zip"]

    keep = [
        col
        for col in MONITOR_META_COLUMNS
        if col not in VENDOR_ID_COLUMNS.values() or col == id_column
    ]

    return compose(
        ensure_columns(*keep),
        add_column("zip", zip_code),
        add_column("pollutant", POLLUTANT),
        add_column("units", UNITS),
        add_column("dataIngestSource", vendor),
        add_column("dataIngestUnitID", unit_id),
        add_column("deviceType", device_type),
        ensure_columns(*MONITOR_EXTRA_COLUMNS),
        select_columns(*keep, *MONITOR_EXTRA_COLUMNS),
        drop_duplicates(subset=["deviceDeploymentID"]),
        reset_index(),
    )


# ============================================================================
# QC MASKING
# ============================================================================


def apply_qc_mask(values: pd.DataFrame, qc: pd.DataFrame) -> pd.DataFrame:
    """
    Null out every value whose QC flag is missing or 0.

    ``qc`` is matched to ``values`` by ``datetime`` and column name. A value
    with no QC counterpart is treated as unflagged and masked. Masking is
    idempotent.
    """
    columns = [col for col in values.columns if col != "datetime"]
    flags = qc.set_index("datetime").reindex(index=values["datetime"], columns=columns)
    bad = (flags.isna() | (flags == 0)).to_numpy()

    masked = values.copy()
    masked[columns] = values[columns].mask(bad)
    return masked


# ============================================================================
# ASSEMBLY
# ============================================================================


def assemble_from_synoptic(
    synoptic: SynopticTable,
    matrices: dict[str, pd.DataFrame],
    parameter: str = "pm2.5",
    apply_qc: bool = True,
) -> Monitor:
    """
    Build a Monitor from an enriched synoptic table and wide data matrices.

    Args:
        synoptic: Enriched synoptic table; its native id column names the
            matrix columns
        matrices: Wide tables keyed by value name, QC matrices under
            ``"<parameter>_QC"``
        parameter: Which value matrix to use, e.g. "pm2.5" or "nowcast"
        apply_qc: Mask values whose QC flag is missing or 0

    Returns:
        Monitor: meta rows and data columns in the same order

    Raises:
        ValueError: If ``matrices`` has no ``parameter`` matrix
        AlignmentError: If meta rows cannot be matched 1:1 to matrix columns
    """
    if parameter not in matrices:
        raise ValueError(
            f"No {parameter!r} data. Available: {', '.join(sorted(matrices))}"
        )

    id_column = synoptic.id_column
    meta = pipe(synoptic.data, create_monitor_meta(synoptic.vendor))

    values = matrices[parameter]
    if apply_qc:
        qc = matrices.get(f"{parameter}_QC")
        if qc is None:
            raise ValueError(f"No QC flags for {parameter!r}; use apply_qc=False")
        values = apply_qc_mask(values, qc)

    native_ids = meta[id_column].astype(str).tolist()
    matched = [sensor_id for sensor_id in native_ids if sensor_id in values.columns]
    if len(matched) != len(native_ids):
        raise AlignmentError(
            f"{len(meta)} rows of meta cannot be matched to "
            f"{len(matched)} data columns"
        )

    data = values[["datetime", *native_ids]].set_axis(
        ["datetime", *meta["deviceDeploymentID"]], axis=1
    )

    logger.info(f"Assembled monitor: {len(meta)} sensors, {len(data)} timesteps")
    return Monitor(meta=meta, data=data.reset_index(drop=True))


def create_clarity_monitor(
    bundle: ClarityBundle,
    synoptic: SynopticTable,
    parameter: str = "pm2.5",
    apply_qc: bool = True,
) -> Monitor:
    """Assemble a Monitor from a Clarity bundle and its enriched synoptic table."""
    if synoptic.vendor != "Clarity":
        raise ValueError(f"Expected a Clarity synoptic table, got {synoptic.vendor!r}")
    return assemble_from_synoptic(synoptic, bundle.matrices, parameter, apply_qc)


def timeseries_to_monitor(
    timeseries: SensorTimeseries,
    apply_correction: bool = True,
    correction: str = "EPA_FASM",
) -> Monitor:
    """
    Turn one sensor's time series into a single-column Monitor.

    Args:
        timeseries: Single-sensor time series
        apply_correction: Use the corrected PM2.5 values; otherwise raw
            ``pm2.5_cf_1``
        correction: Name of the correction to apply

    Raises:
        MissingFieldError: If the PM2.5 column (or correction inputs) is missing
    """
    if apply_correction:
        timeseries = correct(timeseries, correction)
        column = CORRECTED_COLUMN
    else:
        column = "pm2.5_cf_1"

    if column not in timeseries.data.columns:
        raise MissingFieldError([column], context="monitor data")

    meta = pipe(timeseries.meta, create_monitor_meta(_vendor_of(timeseries.meta)))
    data = pd.DataFrame(
        {
            "datetime": timeseries.data["datetime"],
            timeseries.device_deployment_id: pd.to_numeric(
                timeseries.data[column], errors="coerce"
            ),
        }
    )
    return Monitor(meta=meta, data=data.reset_index(drop=True))


# ============================================================================
# MERGING
# ============================================================================


def validate_monitor(monitor: Monitor) -> None:
    """
    Check a Monitor's invariants.

    Raises:
        AlignmentError: If meta and data disagree, keys repeat, or datetimes
            are not unique and increasing
    """
    monitor.validate()
    datetimes = monitor.data["datetime"]
    if not (datetimes.is_unique and datetimes.is_monotonic_increasing):
        raise AlignmentError("Monitor datetimes must be unique and increasing")


def merge_monitors(existing: Monitor, incoming: Monitor) -> Monitor:
    """
    Merge ``incoming`` into ``existing``, replacing on overlap.

    - meta: incoming rows replace existing rows with the same
      deviceDeploymentID; new deployments are appended
    - data: the union of both time axes; at every timestamp ``incoming``
      has, its columns replace the existing values, missing values included

    Returns:
        Monitor: A new Monitor; neither input is modified
    """
    existing_ids = existing.device_deployment_ids
    incoming_ids = incoming.device_deployment_ids
    ids = existing_ids + [i for i in incoming_ids if i not in set(existing_ids)]

    meta = (
        pd.concat([existing.meta, incoming.meta], ignore_index=True)
        .drop_duplicates(subset=["deviceDeploymentID"], keep="last")
        .set_index("deviceDeploymentID")
        .reindex(ids)
        .reset_index()
    )

    old = existing.data.set_index("datetime")
    new = incoming.data.set_index("datetime")
    index = old.index.union(new.index).sort_values()

    data = old.reindex(index=index, columns=ids).astype(float)
    data.loc[new.index, incoming_ids] = new[incoming_ids].to_numpy()
    data = data.rename_axis("datetime").reset_index()

    logger.debug(
        f"Merged monitors: {len(existing_ids)} + {len(incoming_ids)} -> {len(ids)} sensors"
    )
    return Monitor(meta=meta, data=data)


def combine_monitors(*monitors: Monitor) -> Monitor:
    """Merge monitors left to right; later monitors win on overlap."""
    if not monitors:
        raise ValueError("At least one monitor is required")
    return reduce(merge_monitors, monitors)
