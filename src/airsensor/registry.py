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
API key registry for AirSensor.

A convenience for scripts and notebooks: keys are stored once, by provider
name, and looked up by the application layer (``airsensor.api``) when no
explicit config object is given. Core fetchers never read this registry.

The registry is just a dictionary - no magic, no complexity.

Example:
    >>> from airsensor.registry import set_api_key, get_api_key
    >>>
    >>> set_api_key("PurpleAir", "ABCD-1234")
    >>> get_api_key("PURPLEAIR")
    'ABCD-1234'
"""

import os
import warnings
from typing import Dict

# The global registry - just a dictionary mapping provider names to keys
_API_KEYS: Dict[str, str] = {}


def set_api_key(provider: str, key: str) -> None:
    """
    Store an API key for a provider.

    Providers are identified by name (case-insensitive). If a key is already
    stored for the provider, it will be replaced with a warning.

    Args:
        provider: Provider name (e.g., "PurpleAir", "Clarity")
        key: The API key
    """
    normalized_name = provider.upper()

    if normalized_name in _API_KEYS and _API_KEYS[normalized_name] != key:
        warnings.warn(
            f"API key for '{normalized_name}' is already set and will be replaced",
            UserWarning,
            stacklevel=2,
        )

    _API_KEYS[normalized_name] = key


def get_api_key(provider: str) -> str | None:
    """
    Look up the API key for a provider.

    Keys set with ``set_api_key`` take precedence over the
    ``<PROVIDER>_API_KEY`` environment variable.

    Args:
        provider: Provider name (case-insensitive)

    Returns:
        str | None: The key, or None if none is configured
    """
    normalized_name = provider.upper()
    if normalized_name in _API_KEYS:
        return _API_KEYS[normalized_name]
    return os.getenv(f"{normalized_name}_API_KEY")


def list_providers() -> list[str]:
    """
    Get a list of providers that have a key stored in the registry.

    Returns:
        list[str]: Provider names (uppercase)
    """
    return sorted(_API_KEYS.keys())


def clear_api_keys() -> None:
    """
    Remove every stored key.

    This is primarily useful for testing.
    """
    _API_KEYS.clear()
