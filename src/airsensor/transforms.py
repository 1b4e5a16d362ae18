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
Composable DataFrame transformation functions.

Each function here takes configuration and returns a ``Transformer``: a pure
function from DataFrame to DataFrame. Normalisation pipelines are built by
chaining them with ``pipe()`` or ``compose()``, so no step ever mutates the
table handed to it.

Example:
    >>> normalise = compose(
    ...     rename_columns({"lat": "latitude", "lon": "longitude"}),
    ...     coerce_numeric("latitude", "longitude"),
    ...     add_column("sensorManufacturer", "Clarity"),
    ... )
    >>> df = normalise(raw)
"""

from functools import reduce
from typing import Any, Callable

import pandas as pd

from .types import Transformer


def pipe(df: pd.DataFrame, *functions: Transformer) -> pd.DataFrame:
    """
    Apply transformer functions to a DataFrame in order.

    Args:
        df: Input DataFrame
        *functions: Transformers to apply, first to last

    Returns:
        pd.DataFrame: Result of the last transformer

    Example:
        >>> result = pipe(
        ...     raw,
        ...     rename_columns({"private": "privacy"}),
        ...     drop_columns("icon"),
        ... )
    """
    return reduce(lambda data, func: func(data), functions, df)


def compose(*functions: Transformer) -> Transformer:
    """
    Compose transformer functions into one reusable Transformer.

    Args:
        *functions: Transformers to apply, first to last

    Returns:
        Transformer: A function applying all of them in sequence
    """

    def composed(df: pd.DataFrame) -> pd.DataFrame:
        return pipe(df, *functions)

    return composed


def rename_columns(mapping: dict[str, str]) -> Transformer:
    """Return a function that renames columns; missing columns are ignored."""

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        return df.rename(columns=mapping)

    return transform


def add_column(name: str, value: Any | Callable[[pd.DataFrame], Any]) -> Transformer:
    """
    Return a function that adds (or replaces) a column.

    Args:
        name: Name of the column
        value: Static value for every row, or a callable taking the DataFrame
            and returning a value or Series

    Example:
        >>> add_column("deviceID", lambda df: "pa." + df["sensor_index"])
    """

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        if callable(value):
            return df.assign(**{name: value(df)})
        return df.assign(**{name: value})

    return transform


def ensure_columns(*columns: str, value: Any = None) -> Transformer:
    """
    Return a function that adds any of ``columns`` not already present.

    Missing columns are filled with ``value`` (None by default) so that every
    table from the same stage has the same schema.
    """

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        missing = [col for col in columns if col not in df.columns]
        if not missing:
            return df
        return df.assign(**{col: value for col in missing})

    return transform


def drop_columns(*columns: str) -> Transformer:
    """Return a function that drops the named columns that exist."""

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        cols_to_drop = [col for col in columns if col in df.columns]
        if not cols_to_drop:
            return df
        return df.drop(columns=cols_to_drop)

    return transform


def select_columns(*columns: str) -> Transformer:
    """Return a function that keeps only the named columns that exist, in order."""

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        return df[[col for col in columns if col in df.columns]]

    return transform


def reorder_columns(*first: str) -> Transformer:
    """
    Return a function that moves ``first`` to the front, keeping the rest.

    Example:
        >>> reorder_columns("deviceDeploymentID", "deviceID", "locationID")
    """

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        leading = [col for col in first if col in df.columns]
        others = [col for col in df.columns if col not in leading]
        return df[leading + others]

    return transform


def coerce_numeric(*columns: str) -> Transformer:
    """
    Return a function that parses columns as numbers.

    Vendor APIs frequently return numbers as strings. Unparseable values
    become NaN. Columns that are not present are ignored.
    """

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        present = [col for col in columns if col in df.columns]
        if not present:
            return df
        return df.assign(
            **{col: pd.to_numeric(df[col], errors="coerce") for col in present}
        )

    return transform


def coerce_string(*columns: str) -> Transformer:
    """Return a function that casts columns to str, leaving nulls as None."""

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        present = [col for col in columns if col in df.columns]
        if not present:
            return df
        return df.assign(**{col: _map_present(df[col], _as_id) for col in present})

    return transform


def _map_present(series: pd.Series, func: Callable[[Any], Any]) -> pd.Series:
    # Object dtype so that nulls stay None instead of turning back into NaN
    values = [None if pd.isna(v) else func(v) for v in series]
    return pd.Series(values, index=series.index, dtype=object)


def _as_id(value: Any) -> str:
    # 131075.0 -> "131075"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def convert_timestamps(*columns: str, **kwargs) -> Transformer:
    """
    Return a function that converts columns to UTC datetimes.

    Args:
        *columns: Columns to convert; missing columns are ignored
        **kwargs: Passed to ``pd.to_datetime`` (e.g. ``unit="s"``).
            ``utc=True`` and ``errors="coerce"`` are applied by default.

    Example:
        >>> convert_timestamps("last_seen", "date_created", unit="s")
    """
    options = {"utc": True, "errors": "coerce", **kwargs}

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        present = [col for col in columns if col in df.columns]
        if not present:
            return df
        return df.assign(
            **{
                col: pd.to_datetime(pd.to_numeric(df[col], errors="coerce"), **options)
                if "unit" in options
                else pd.to_datetime(df[col], **options)
                for col in present
            }
        )

    return transform


def map_values(
    column: str, mapping: dict[Any, Any], default: Any = None
) -> Transformer:
    """
    Return a function that replaces values of ``column`` through ``mapping``.

    Values not in ``mapping`` become ``default``; nulls stay None. Keys are
    compared as strings, so "0" and 0 map the same way.
    """
    string_mapping = {str(k): v for k, v in mapping.items()}

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        if column not in df.columns:
            return df
        return df.assign(
            **{
                column: _map_present(
                    df[column], lambda v: string_mapping.get(_as_id(v), default)
                )
            }
        )

    return transform


def filter_rows(predicate: Callable[[pd.DataFrame], pd.Series]) -> Transformer:
    """
    Return a function that keeps rows where ``predicate`` is True.

    Example:
        >>> filter_rows(lambda df: df["countryCode"].notna())
    """

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        return df[predicate(df)]

    return transform


def drop_duplicates(
    subset: list[str] | None = None, keep: str = "first"
) -> Transformer:
    """Return a function that drops duplicate rows (on ``subset`` if given)."""

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        return df.drop_duplicates(subset=subset, keep=keep)

    return transform


def reset_index(drop: bool = True) -> Transformer:
    """Return a function that resets the index."""

    def transform(df: pd.DataFrame) -> pd.DataFrame:
        return df.reset_index(drop=drop)

    return transform


def as_utc(value) -> pd.Timestamp:
    """
    Convert a date, datetime or string to a UTC ``pd.Timestamp``.

    Naive values are taken to be UTC already.
    """
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")
