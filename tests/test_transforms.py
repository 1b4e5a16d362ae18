"""
Tests for transforms.py - DataFrame transformation functions.

These are pure functions, so they're easy to test and provide high value.
"""

from datetime import datetime, timezone

import pandas as pd
import pytest

from airsensor.transforms import (
    add_column,
    as_utc,
    coerce_numeric,
    coerce_string,
    compose,
    convert_timestamps,
    drop_columns,
    ensure_columns,
    filter_rows,
    map_values,
    pipe,
    rename_columns,
    reorder_columns,
    select_columns,
)

# ============================================================================
# Tests for pipe() and compose()
# ============================================================================


def test_pipe_applies_functions_in_order():
    """Test that pipe applies functions in the correct order."""
    df = pd.DataFrame({"a": [1, 2, 3]})

    result = pipe(
        df,
        lambda d: d.assign(b=d["a"] * 2),
        lambda d: d.assign(c=d["b"] + 1),
    )

    assert result["c"].tolist() == [3, 5, 7]


def test_pipe_with_empty_functions_returns_unchanged():
    df = pd.DataFrame({"a": [1, 2, 3]})
    pd.testing.assert_frame_equal(pipe(df), df)


def test_compose_creates_reusable_pipeline():
    """Test that compose creates a reusable transformation pipeline."""
    prefix = compose(
        rename_columns({"id": "sensor_index"}),
        add_column("deviceID", lambda df: "pa." + df["sensor_index"]),
    )

    first = prefix(pd.DataFrame({"id": ["1", "2"]}))
    second = prefix(pd.DataFrame({"id": ["3"]}))

    assert first["deviceID"].tolist() == ["pa.1", "pa.2"]
    assert second["deviceID"].tolist() == ["pa.3"]


def test_transforms_do_not_modify_input():
    df = pd.DataFrame({"a": ["1", "2"], "b": [1, 2]})
    original = df.copy()

    pipe(
        df,
        coerce_numeric("a"),
        add_column("c", 5),
        rename_columns({"b": "bb"}),
        drop_columns("a"),
    )

    pd.testing.assert_frame_equal(df, original)


# ============================================================================
# Tests for column helpers
# ============================================================================


def test_add_column_static_and_computed():
    df = pd.DataFrame({"value": [1, 2]})

    result = pipe(df, add_column("vendor", "Clarity"), add_column("double", lambda d: d["value"] * 2))

    assert result["vendor"].tolist() == ["Clarity", "Clarity"]
    assert result["double"].tolist() == [2, 4]


def test_ensure_columns_adds_missing_only():
    df = pd.DataFrame({"zip": ["98101"]})

    result = ensure_columns("zip", "city", "street")(df)

    assert result["zip"].tolist() == ["98101"]
    assert result["city"].isna().all()
    assert list(result.columns) == ["zip", "city", "street"]


def test_drop_columns_ignores_missing():
    df = pd.DataFrame({"a": [1], "icon": [0]})
    result = drop_columns("icon", "not_there")(df)
    assert list(result.columns) == ["a"]


def test_select_columns_ignores_missing():
    df = pd.DataFrame({"a": [1], "b": [2], "c": [3]})
    result = select_columns("c", "a", "missing")(df)
    assert list(result.columns) == ["c", "a"]


def test_reorder_columns_moves_identity_first():
    df = pd.DataFrame(columns=["name", "locationID", "deviceID", "deviceDeploymentID"])

    result = reorder_columns("deviceDeploymentID", "deviceID", "locationID")(df)

    assert list(result.columns) == ["deviceDeploymentID", "deviceID", "locationID", "name"]


def test_filter_rows():
    df = pd.DataFrame({"value": [1, None, 3]})
    result = filter_rows(lambda d: d["value"].notna())(df)
    assert len(result) == 2


# ============================================================================
# Tests for type coercion
# ============================================================================


def test_coerce_numeric_parses_strings():
    df = pd.DataFrame({"pm2.5": ["7.5", "bad", None], "name": ["a", "b", "c"]})

    result = coerce_numeric("pm2.5", "not_there")(df)

    assert result["pm2.5"].iloc[0] == 7.5
    assert result["pm2.5"].iloc[1:].isna().all()
    assert result["name"].tolist() == ["a", "b", "c"]


def test_coerce_string_normalises_mixed_ids():
    """The PurpleAir API returns sensor_index as int, float or str."""
    df = pd.DataFrame({"sensor_index": [131075, 131076.0, "131077", None]}, dtype=object)

    result = coerce_string("sensor_index")(df)

    assert result["sensor_index"].tolist()[:3] == ["131075", "131076", "131077"]
    assert result["sensor_index"].iloc[3] is None


def test_convert_timestamps_epoch_seconds_to_utc():
    df = pd.DataFrame({"last_seen": ["1704067200", 1704067200, None]})

    result = convert_timestamps("last_seen", unit="s")(df)

    expected = pd.Timestamp("2024-01-01", tz="UTC")
    assert result["last_seen"].iloc[0] == expected
    assert result["last_seen"].iloc[1] == expected
    assert pd.isna(result["last_seen"].iloc[2])


def test_map_values_compares_as_strings():
    df = pd.DataFrame({"private": [0, "0", 1, "1", None]}, dtype=object)

    result = map_values("private", {0: "public"}, default="private")(df)

    assert result["private"].tolist()[:4] == ["public", "public", "private", "private"]


def test_map_values_keeps_nulls():
    df = pd.DataFrame({"private": [0, None, float("nan")]}, dtype=object)

    result = map_values("private", {0: "public"}, default="private")(df)

    assert result["private"].iloc[0] == "public"
    assert result["private"].iloc[1] is None
    assert result["private"].iloc[2] is None


def test_map_values_missing_column_is_noop():
    df = pd.DataFrame({"a": [1]})
    assert map_values("location_type", {0: "outside"})(df) is df


# ============================================================================
# Tests for as_utc()
# ============================================================================


@pytest.mark.parametrize(
    "value",
    [
        "2023-01-01",
        datetime(2023, 1, 1),
        datetime(2023, 1, 1, tzinfo=timezone.utc),
        pd.Timestamp("2022-12-31 19:00", tz="America/New_York"),
    ],
)
def test_as_utc(value):
    assert as_utc(value) == pd.Timestamp("2023-01-01", tz="UTC")
