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
PM2.5 correction equations for low-cost sensors.

Corrections are plain functions from a data table to a Series of corrected
values, registered by name in ``CORRECTIONS``.
"""

from logging import getLogger
from typing import Callable

import numpy as np
import pandas as pd

from .exceptions import MissingFieldError
from .types import SensorTimeseries

logger = getLogger(__name__)

CORRECTED_COLUMN = "correctedPM25"

# cf_1 concentration (ug/m3) above which the high-concentration fit applies
EPA_FASM_BREAKPOINT = 343


def _require(data: pd.DataFrame, columns: list[str], name: str) -> None:
    missing = [col for col in columns if col not in data.columns]
    if missing:
        raise MissingFieldError(missing, context=name)


def epa_fasm(data: pd.DataFrame) -> pd.Series:
    """
    US EPA Fire and Smoke Map correction for PurpleAir PM2.5.

    Piecewise on the cf_1 reading:

        cf1 <= 343:  0.52 * cf1 - 0.086 * humidity + 5.75
        cf1 >  343:  0.46 * cf1 + 0.000393 * cf1**2 + 2.97

    Rows with a missing cf_1 fall in the low-concentration branch, so they
    come out as NaN through the arithmetic.

    Raises:
        MissingFieldError: If ``pm2.5_cf_1`` or ``humidity`` is absent
    """
    _require(data, ["pm2.5_cf_1", "humidity"], "EPA_FASM")

    cf1 = pd.to_numeric(data["pm2.5_cf_1"], errors="coerce")
    humidity = pd.to_numeric(data["humidity"], errors="coerce")

    low = (cf1 <= EPA_FASM_BREAKPOINT) | cf1.isna()
    corrected = np.where(
        low,
        0.52 * cf1 - 0.086 * humidity + 5.75,
        0.46 * cf1 + 0.000393 * cf1**2 + 2.97,
    )
    return pd.Series(corrected, index=data.index, name=CORRECTED_COLUMN)


CORRECTIONS: dict[str, Callable[[pd.DataFrame], pd.Series]] = {
    "EPA_FASM": epa_fasm,
}


def apply_correction(
    timeseries: SensorTimeseries, name: str = "EPA_FASM"
) -> SensorTimeseries:
    """
    Add a ``correctedPM25`` column to a sensor's data.

    Args:
        timeseries: Single-sensor time series
        name: Name of a registered correction

    Returns:
        SensorTimeseries: A new series; ``timeseries`` is left unchanged

    Raises:
        ValueError: If ``name`` is not a registered correction
        MissingFieldError: If the data lacks the correction's input columns
    """
    if name not in CORRECTIONS:
        raise ValueError(
            f"Unknown correction {name!r}. Available: {', '.join(CORRECTIONS)}"
        )

    logger.debug(f"Applying {name} correction to {timeseries.device_deployment_id}")
    data = timeseries.data.assign(**{CORRECTED_COLUMN: CORRECTIONS[name](timeseries.data)})
    return SensorTimeseries(meta=timeseries.meta, data=data)
