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
Location and deployment identifiers.

A ``locationID`` is the geohash of a sensor's position at precision 10. A
precision 10 cell is 2**25 steps of longitude by 2**25 steps of latitude,
about 1.2 m x 0.6 m at the equator, so two devices reported at the same spot
share a ``locationID`` while a device that moves gets a new one.

    deviceDeploymentID = locationID + "_" + deviceID
"""

import math

import numpy as np
import pandas as pd
import pygeohash as pgh

LOCATION_ID_PRECISION = 10

EARTH_RADIUS_M = 6371008.8


def encode_geohash(latitude: float, longitude: float, precision: int = LOCATION_ID_PRECISION) -> str:
    """
    Encode a position as a geohash string.

    Args:
        latitude: Latitude in decimal degrees
        longitude: Longitude in decimal degrees
        precision: Number of characters in the result

    Returns:
        str: The geohash

    Example:
        >>> encode_geohash(57.64911, 10.40744, precision=11)
        'u4pruydqqvj'
    """
    if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
        raise ValueError(f"Invalid position: latitude={latitude}, longitude={longitude}")

    return pgh.encode(latitude, longitude, precision=precision)


def geohash_cell_degrees(precision: int = LOCATION_ID_PRECISION) -> tuple[float, float]:
    """
    Size of a geohash cell as (longitude degrees, latitude degrees).

    Longitude takes the extra bit when ``5 * precision`` is odd.
    """
    bits = 5 * precision
    lon_bits = math.ceil(bits / 2)
    lat_bits = bits // 2
    return 360.0 / 2**lon_bits, 180.0 / 2**lat_bits


def location_ids(longitude: pd.Series, latitude: pd.Series) -> pd.Series:
    """Return the locationID for each (longitude, latitude) pair."""
    return pd.Series(
        [encode_geohash(lat, lon) for lon, lat in zip(longitude, latitude)],
        index=longitude.index,
        dtype=object,
    )


def deployment_ids(location_id: pd.Series, device_id: pd.Series) -> pd.Series:
    return location_id.astype(str) + "_" + device_id.astype(str)


def valid_coordinates(df: pd.DataFrame) -> pd.Series:
    """
    Boolean mask of rows with usable longitude/latitude.

    Missing values and positions outside |longitude| <= 180,
    |latitude| <= 90 are invalid.
    """
    lon = pd.to_numeric(df["longitude"], errors="coerce")
    lat = pd.to_numeric(df["latitude"], errors="coerce")
    return lon.notna() & lat.notna() & lon.abs().le(180) & lat.abs().le(90)


def haversine_distance(
    longitude: pd.Series | np.ndarray,
    latitude: pd.Series | np.ndarray,
    target_longitude: float,
    target_latitude: float,
) -> np.ndarray:
    """Great-circle distance in metres from each point to the target."""
    lon1 = np.radians(np.asarray(longitude, dtype=float))
    lat1 = np.radians(np.asarray(latitude, dtype=float))
    lon2 = math.radians(target_longitude)
    lat2 = math.radians(target_latitude)

    a = (
        np.sin((lat2 - lat1) / 2) ** 2
        + np.cos(lat1) * math.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * np.arcsin(np.sqrt(a))


def parse_radius(radius: str | float) -> float:
    """
    Parse a radius such as "10 km" or "500 m" into metres.

    Bare numbers are taken as metres.
    """
    if isinstance(radius, (int, float)):
        return float(radius)

    text = str(radius).strip().lower()
    for suffix, factor in (("km", 1000.0), ("m", 1.0)):
        if text.endswith(suffix):
            number = text[: -len(suffix)].strip()
            try:
                return float(number) * factor
            except ValueError:
                break
    raise ValueError(f"Radius must look like '10 km' or '500 m', got {radius!r}")
