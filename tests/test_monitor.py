"""
Tests for monitor.py - monitor assembly, QC masking and merging.
"""

import numpy as np
import pandas as pd
import pytest

from airsensor.exceptions import AlignmentError, MissingFieldError
from airsensor.monitor import (
    MONITOR_EXTRA_COLUMNS,
    apply_qc_mask,
    assemble_from_synoptic,
    combine_monitors,
    create_clarity_monitor,
    merge_monitors,
    timeseries_to_monitor,
    validate_monitor,
)
from airsensor.sources.clarity import build_clarity_bundle
from airsensor.synoptic import normalize_synoptic
from airsensor.timeseries import build_timeseries
from airsensor.types import Monitor, SensorTimeseries, SynopticTable

TIMES = pd.date_range("2023-03-07 12:00", periods=3, freq="h", tz="UTC")


def _monitor(columns, times=TIMES, names=None):
    """Monitor from {deviceDeploymentID: values}."""
    ids = list(columns)
    names = names or {}
    meta = pd.DataFrame(
        {"deviceDeploymentID": ids, "locationName": [names.get(i, i) for i in ids]}
    )
    data = pd.DataFrame({"datetime": times, **columns})
    return Monitor(meta=meta, data=data)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def clarity_bundle(clarity_records):
    return build_clarity_bundle(clarity_records)


@pytest.fixture
def clarity_synoptic(clarity_bundle, fake_lookup):
    return normalize_synoptic(clarity_bundle, fake_lookup, country_codes=("CA", "US", "MX"))


def _ddid(synoptic, datasource_id):
    return synoptic.match(datasource_id)["deviceDeploymentID"].iloc[0]


# ============================================================================
# Monitor invariants
# ============================================================================


class TestMonitorInvariants:
    def test_valid_monitor(self):
        monitor = _monitor({"a": [1.0, 2.0, 3.0], "b": [4.0, 5.0, 6.0]})
        assert monitor.device_deployment_ids == ["a", "b"]

    def test_count_mismatch(self):
        with pytest.raises(AlignmentError, match="cannot be matched"):
            Monitor(
                meta=pd.DataFrame({"deviceDeploymentID": ["a"]}),
                data=pd.DataFrame({"datetime": TIMES, "a": 1.0, "b": 2.0}),
            )

    def test_order_mismatch(self):
        with pytest.raises(AlignmentError, match="order"):
            Monitor(
                meta=pd.DataFrame({"deviceDeploymentID": ["b", "a"]}),
                data=pd.DataFrame({"datetime": TIMES, "a": 1.0, "b": 2.0}),
            )

    def test_duplicate_ids(self):
        with pytest.raises(AlignmentError, match="unique"):
            Monitor(
                meta=pd.DataFrame({"deviceDeploymentID": ["a", "a"]}),
                data=pd.DataFrame([[TIMES[0], 1.0, 2.0]], columns=["datetime", "a", "a"]),
            )

    def test_datetime_must_be_first(self):
        with pytest.raises(AlignmentError, match="datetime"):
            Monitor(
                meta=pd.DataFrame({"deviceDeploymentID": ["a"]}),
                data=pd.DataFrame({"a": [1.0], "datetime": TIMES[:1]}),
            )

    def test_validate_monitor_checks_time_axis(self):
        monitor = _monitor({"a": [1.0, 2.0, 3.0]}, times=TIMES[::-1])
        with pytest.raises(AlignmentError, match="increasing"):
            validate_monitor(monitor)


# ============================================================================
# QC masking
# ============================================================================


class TestQcMask:
    def test_masks_zero_and_missing_flags(self):
        values = pd.DataFrame({"datetime": TIMES, "s1": [1.0, 2.0, 3.0], "s2": [4.0, 5.0, 6.0]})
        qc = pd.DataFrame({"datetime": TIMES, "s1": [1, 0, np.nan]})

        result = apply_qc_mask(values, qc)

        assert result["s1"].tolist()[0] == 1.0
        assert result["s1"].iloc[1:].isna().all()
        # No flags at all for s2
        assert result["s2"].isna().all()

    def test_is_idempotent(self, clarity_bundle):
        values = clarity_bundle.matrices["pm2.5"]
        qc = clarity_bundle.matrices["pm2.5_QC"]

        once = apply_qc_mask(values, qc)
        twice = apply_qc_mask(once, qc)

        pd.testing.assert_frame_equal(once, twice)

    def test_does_not_modify_input(self, clarity_bundle):
        values = clarity_bundle.matrices["pm2.5"].copy()
        apply_qc_mask(clarity_bundle.matrices["pm2.5"], clarity_bundle.matrices["pm2.5_QC"])
        pd.testing.assert_frame_equal(clarity_bundle.matrices["pm2.5"], values)


# ============================================================================
# assemble_from_synoptic()
# ============================================================================


class TestAssembleFromSynoptic:
    def test_columns_follow_meta(self, clarity_bundle, clarity_synoptic):
        monitor = assemble_from_synoptic(clarity_synoptic, clarity_bundle.matrices)

        assert len(monitor.meta) == 2
        assert list(monitor.data.columns[1:]) == monitor.meta["deviceDeploymentID"].tolist()

    def test_values_and_qc(self, clarity_bundle, clarity_synoptic):
        monitor = assemble_from_synoptic(clarity_synoptic, clarity_bundle.matrices)
        seattle = monitor.data[_ddid(clarity_synoptic, "DAABL1560")]

        # The 13:00 value has QC flag 0
        assert seattle.iloc[0] == 8.0
        assert np.isnan(seattle.iloc[1])
        assert seattle.iloc[2] == 10.5

    def test_without_qc(self, clarity_bundle, clarity_synoptic):
        monitor = assemble_from_synoptic(clarity_synoptic, clarity_bundle.matrices, apply_qc=False)
        assert monitor.data[_ddid(clarity_synoptic, "DAABL1560")].iloc[1] == 99.0

    def test_nowcast(self, clarity_bundle, clarity_synoptic):
        monitor = create_clarity_monitor(clarity_bundle, clarity_synoptic, parameter="nowcast")
        assert monitor.data[_ddid(clarity_synoptic, "DAAOD3418")].tolist()[1:] == [21.5, 21.0]

    def test_meta_fields(self, clarity_bundle, clarity_synoptic):
        meta = assemble_from_synoptic(clarity_synoptic, clarity_bundle.matrices).meta.set_index(
            "datasourceId"
        )

        for column in MONITOR_EXTRA_COLUMNS:
            assert column in meta.columns
        assert meta.loc["DAABL1560", "pollutant"] == "PM2.5"
        assert meta.loc["DAABL1560", "units"] == "UG/M3"
        assert meta.loc["DAABL1560", "dataIngestSource"] == "Clarity"
        assert meta.loc["DAABL1560", "dataIngestUnitID"] == "DAABL1560"
        assert meta.loc["DAABL1560", "AQSID"] is None
        assert "pm2.5" not in meta.columns

    def test_unmatched_meta_raises(self, clarity_bundle, clarity_synoptic):
        data = clarity_synoptic.data.copy()
        data.loc[0, "datasourceId"] = "UNKNOWN"
        broken = SynopticTable(data=data, vendor="Clarity")

        with pytest.raises(AlignmentError, match="2 rows of meta cannot be matched to 1 data columns"):
            assemble_from_synoptic(broken, clarity_bundle.matrices)

    def test_unknown_parameter(self, clarity_bundle, clarity_synoptic):
        with pytest.raises(ValueError, match="pm10"):
            assemble_from_synoptic(clarity_synoptic, clarity_bundle.matrices, parameter="pm10")

    def test_clarity_monitor_needs_clarity_synoptic(self, clarity_bundle, purpleair_synoptic):
        with pytest.raises(ValueError, match="Clarity"):
            create_clarity_monitor(clarity_bundle, purpleair_synoptic)


# ============================================================================
# timeseries_to_monitor()
# ============================================================================


class TestTimeseriesToMonitor:
    @pytest.fixture
    def timeseries(self, purpleair_synoptic, make_chunk):
        return build_timeseries(
            "76545",
            purpleair_synoptic,
            [make_chunk([("2023-01-01T00:00:00Z", 50, 100.0), ("2023-01-01T01:00:00Z", 50, 400.0)])],
        )

    def test_corrected(self, timeseries):
        monitor = timeseries_to_monitor(timeseries)

        assert monitor.device_deployment_ids == [timeseries.device_deployment_id]
        assert monitor.data[timeseries.device_deployment_id].tolist() == pytest.approx(
            [53.45, 249.85]
        )

    def test_uncorrected(self, timeseries):
        monitor = timeseries_to_monitor(timeseries, apply_correction=False)
        assert monitor.data[timeseries.device_deployment_id].tolist() == [100.0, 400.0]

    def test_meta(self, timeseries):
        meta = timeseries_to_monitor(timeseries).meta

        assert meta["dataIngestSource"].iloc[0] == "PurpleAir"
        assert meta["dataIngestUnitID"].iloc[0] == "76545"
        assert meta["deviceType"].iloc[0] == "PA-II"
        assert "datasourceId" not in meta.columns

    def test_zip_from_postal_code(self):
        timeseries = SensorTimeseries(
            meta=pd.DataFrame(
                {"deviceDeploymentID": ["x_pa.1"], "sensor_index": ["1"], "postalCode": ["98101"]}
            ),
            data=pd.DataFrame({"datetime": TIMES[:1], "pm2.5_cf_1": [5.0]}),
        )

        meta = timeseries_to_monitor(timeseries, apply_correction=False).meta

        assert meta["zip"].iloc[0] == "98101"

    def test_missing_humidity(self, timeseries):
        stripped = SensorTimeseries(meta=timeseries.meta, data=timeseries.data.drop(columns="humidity"))
        with pytest.raises(MissingFieldError, match="humidity"):
            timeseries_to_monitor(stripped)


# ============================================================================
# merge_monitors()
# ============================================================================


class TestMergeMonitors:
    @pytest.fixture
    def existing(self):
        return _monitor({"A": [1.0, 2.0], "B": [10.0, 20.0]}, times=TIMES[:2])

    @pytest.fixture
    def incoming(self):
        return _monitor(
            {"B": [np.nan, 201.0], "C": [300.0, 301.0]},
            times=TIMES[1:],
            names={"B": "B moved name"},
        )

    def test_ids_and_time_axis(self, existing, incoming):
        merged = merge_monitors(existing, incoming)

        assert merged.device_deployment_ids == ["A", "B", "C"]
        assert merged.data["datetime"].tolist() == list(TIMES)

    def test_incoming_values_replace_existing(self, existing, incoming):
        merged = merge_monitors(existing, incoming).data.set_index("datetime")

        # B at T1 was 20.0 and is replaced, even by a missing value
        assert np.isnan(merged.loc[TIMES[1], "B"])
        assert merged.loc[TIMES[2], "B"] == 201.0
        assert merged.loc[TIMES[0], "B"] == 10.0

    def test_existing_only_columns_kept(self, existing, incoming):
        merged = merge_monitors(existing, incoming).data
        assert merged["A"].tolist()[:2] == [1.0, 2.0]
        assert np.isnan(merged["A"].iloc[2])

    def test_new_columns_added(self, existing, incoming):
        merged = merge_monitors(existing, incoming).data
        assert np.isnan(merged["C"].iloc[0])
        assert merged["C"].tolist()[1:] == [300.0, 301.0]

    def test_meta_replaced(self, existing, incoming):
        meta = merge_monitors(existing, incoming).meta.set_index("deviceDeploymentID")
        assert meta.loc["A", "locationName"] == "A"
        assert meta.loc["B", "locationName"] == "B moved name"

    def test_same_value_replaced(self):
        existing = _monitor({"A": [1.0, 2.0, 3.0]})
        incoming = _monitor({"A": [9.0]}, times=TIMES[1:2])

        merged = merge_monitors(existing, incoming)

        assert merged.data["A"].tolist() == [1.0, 9.0, 3.0]

    def test_inputs_unchanged(self, existing, incoming):
        before = existing.data.copy()
        merge_monitors(existing, incoming)
        pd.testing.assert_frame_equal(existing.data, before)

    def test_combine_monitors(self, existing, incoming):
        latest = _monitor({"C": [999.0]}, times=TIMES[2:])

        combined = combine_monitors(existing, incoming, latest)

        assert combined.device_deployment_ids == ["A", "B", "C"]
        assert combined.data["C"].iloc[2] == 999.0

    def test_combine_single(self, existing):
        assert combine_monitors(existing) is existing

    def test_combine_none(self):
        with pytest.raises(ValueError):
            combine_monitors()
