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

"""Normalise, enrich and reshape low-cost air sensor data"""

from .api import (
    create_all_clarity_monitors,
    create_clarity_open_monitor,
    create_clarity_synoptic,
    create_purpleair_monitor,
    create_purpleair_monitors,
    create_purpleair_synoptic,
    create_purpleair_timeseries,
    update_all_clarity_monitors,
    update_clarity_open_monitor,
)
from .config import BoundingBox, ClarityConfig, PurpleAirConfig
from .correction import apply_correction
from .exceptions import (
    AirSensorError,
    AlignmentError,
    EmptyResultError,
    FetchError,
    InvalidTimeseriesError,
    MissingFieldError,
)
from .monitor import combine_monitors, merge_monitors
from .registry import clear_api_keys, get_api_key, list_providers, set_api_key
from .spatial import initialize_spatial
from .synoptic import normalize_synoptic
from .types import Monitor, SensorTimeseries, SynopticTable

__version__ = "0.1.0"
