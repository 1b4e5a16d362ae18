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
Exception types raised by the AirSensor pipeline.

Spatial lookups that cannot be resolved are not errors: they produce dropped
rows (no country) or null fields (no state, county or timezone).
"""


class AirSensorError(Exception):
    """Base class for all AirSensor errors."""


class FetchError(AirSensorError):
    """
    A vendor request failed, either with a non-2xx response or in transport.

    Attributes:
        status_code: HTTP status code, or None for transport failures
        vendor_message: Error text reported by the vendor
        url: The URL that was requested
    """

    def __init__(
        self,
        status_code: int | None,
        vendor_message: str,
        url: str | None = None,
    ):
        self.status_code = status_code
        self.vendor_message = vendor_message
        self.url = url
        super().__init__(str(self))

    def __str__(self) -> str:
        prefix = f"{self.status_code} " if self.status_code is not None else ""
        return f"{prefix}{self.vendor_message}"


class EmptyResultError(AirSensorError):
    """The vendor returned zero rows."""


class InvalidTimeseriesError(AirSensorError):
    """A time series could not be joined to exactly one valid metadata record."""


class AlignmentError(AirSensorError):
    """Monitor meta rows and data columns do not line up."""


class MissingFieldError(AirSensorError):
    """Columns required by a calculation are missing."""

    def __init__(self, missing: list[str], context: str = ""):
        self.missing = list(missing)
        where = f" for {context}" if context else ""
        super().__init__(
            f"Required fields missing{where}: {', '.join(self.missing)}"
        )
