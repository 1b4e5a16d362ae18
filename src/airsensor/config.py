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
Explicit configuration objects for vendor APIs.

Fetch functions take one of these instead of looking credentials up in a
global table. ``from_env()`` is provided for scripts that keep keys in
environment variables.
"""

import os
from dataclasses import dataclass

PURPLEAIR_KEY_VARIABLE = "PURPLEAIR_API_KEY"
CLARITY_KEY_VARIABLE = "CLARITY_API_KEY"

CLARITY_FORMATS = ("USFS", "USFS2")

DEFAULT_TIMEOUT = 60  # seconds


@dataclass(frozen=True)
class PurpleAirConfig:
    """
    Connection settings for the PurpleAir API.

    Args:
        api_key: PurpleAir read key
        sensors_url: Base URL of the sensors endpoint
        keys_url: URL of the key check endpoint
        groups_url: Base URL of the groups endpoint
        timeout: Request timeout in seconds
    """

    api_key: str
    sensors_url: str = "https://api.purpleair.com/v1/sensors"
    keys_url: str = "https://api.purpleair.com/v1/keys"
    groups_url: str = "https://api.purpleair.com/v1/groups"
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self):
        if not self.api_key:
            raise ValueError(
                "PurpleAir API key required. Get your free key at: "
                "https://develop.purpleair.com/"
            )

    def __repr__(self) -> str:
        return f"PurpleAirConfig(sensors_url={self.sensors_url!r})"

    @classmethod
    def from_env(cls, **overrides) -> "PurpleAirConfig":
        api_key = os.getenv(PURPLEAIR_KEY_VARIABLE)
        if not api_key:
            raise ValueError(
                f"PurpleAir API key required. Set {PURPLEAIR_KEY_VARIABLE} in your "
                "environment. Get your free key at: https://develop.purpleair.com/"
            )
        return cls(api_key=api_key, **overrides)

    def headers(self) -> dict[str, str]:
        return {"X-API-Key": self.api_key}


@dataclass(frozen=True)
class ClarityConfig:
    """
    Connection settings for the Clarity open data API.

    Args:
        api_key: Clarity read key
        base_url: Base URL of the open data endpoints
        format: Response format, "USFS" or "USFS2" (adds calibration fields)
        timeout: Request timeout in seconds
    """

    api_key: str
    base_url: str = "https://clarity-data-api.clarity.io/v1/open"
    format: str = "USFS"
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self):
        if not self.api_key:
            raise ValueError("Clarity API key required.")
        if self.format not in CLARITY_FORMATS:
            raise ValueError(
                f"Clarity format must be one of {CLARITY_FORMATS}, got {self.format!r}"
            )

    def __repr__(self) -> str:
        return f"ClarityConfig(base_url={self.base_url!r}, format={self.format!r})"

    @classmethod
    def from_env(cls, **overrides) -> "ClarityConfig":
        api_key = os.getenv(CLARITY_KEY_VARIABLE)
        if not api_key:
            raise ValueError(
                f"Clarity API key required. Set {CLARITY_KEY_VARIABLE} in your "
                "environment."
            )
        return cls(api_key=api_key, **overrides)

    def headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key}


@dataclass(frozen=True)
class BoundingBox:
    """
    Geographic bounding box in decimal degrees (WGS84).

    Example:
        >>> BoundingBox(west=-122.5, east=-122.0, south=47.4, north=47.8)
    """

    west: float
    east: float
    south: float
    north: float

    def __post_init__(self):
        for name in ("west", "east"):
            if not -180 <= getattr(self, name) <= 180:
                raise ValueError(f"{name} must be between -180 and 180")
        for name in ("south", "north"):
            if not -90 <= getattr(self, name) <= 90:
                raise ValueError(f"{name} must be between -90 and 90")

    def normalized(self) -> "BoundingBox":
        """Return a copy with west < east and south < north."""
        return BoundingBox(
            west=min(self.west, self.east),
            east=max(self.west, self.east),
            south=min(self.south, self.north),
            north=max(self.south, self.north),
        )

    @classmethod
    def from_tuple(cls, bbox: tuple[float, float, float, float]) -> "BoundingBox":
        """Build from the (min_lon, min_lat, max_lon, max_lat) convention."""
        min_lon, min_lat, max_lon, max_lat = bbox
        return cls(west=min_lon, east=max_lon, south=min_lat, north=max_lat).normalized()
