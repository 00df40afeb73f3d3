"""Tests for layer-1 per-parameter rules."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from riverqc.config import QCConfig
from riverqc.errors import UnresolvableThreshold
from riverqc.flag.parameter_rules import (
    apply_parameter_rules,
    flag_depth_shift,
    flag_do_noise,
    flag_drift,
    flag_field_visits,
    flag_repeated_values,
    flag_seasonal_range,
    flag_spec_range,
)
from riverqc.schemas.qc_flags import QCFlag, has_flag

VISIT_DAY = pd.Timestamp("2024-07-01T09:00:00Z")
WINTER = pd.Timestamp("2024-01-15T00:00:00Z")


def flagged_rows(bits: pd.Series, flag: QCFlag) -> list[int]:
    return bits.index[has_flag(bits, flag)].tolist()


class TestFieldVisits:
    """Tests for site visit, sv window and sonde state flags."""

    @pytest.fixture
    def visit_notes(self, make_notes) -> pd.DataFrame:
        return make_notes(
            [{"site": "bellvue", "timestamp": "2024-07-01T10:07:00Z", "note_type": "site_visit"}]
        )

    def test_site_visit_interval(self, make_annotated, visit_notes) -> None:
        df = make_annotated([7.0] * 13, notes=visit_notes, start_ts=VISIT_DAY)
        bits = flag_field_visits(df, QCConfig())
        assert df.loc[flagged_rows(bits, QCFlag.SITE_VISIT), "timestamp_key"].tolist() == [
            "2024-07-01T10:00:00Z"
        ]

    def test_sv_window_spans_before_and_after(self, make_annotated, visit_notes) -> None:
        df = make_annotated([7.0] * 13, notes=visit_notes, start_ts=VISIT_DAY)
        bits = flag_field_visits(df, QCConfig())
        keys = df.loc[flagged_rows(bits, QCFlag.SV_WINDOW), "timestamp_key"].tolist()
        assert keys == [
            "2024-07-01T09:45:00Z",
            "2024-07-01T10:15:00Z",
            "2024-07-01T10:30:00Z",
            "2024-07-01T10:45:00Z",
            "2024-07-01T11:00:00Z",
        ]

    def test_sonde_not_employed(self, make_annotated, make_notes) -> None:
        notes = make_notes(
            [
                {
                    "site": "bellvue",
                    "timestamp": "2024-07-01T09:30:00Z",
                    "note_type": "sonde_employed_state",
                    "sonde_employed": 0,
                }
            ]
        )
        df = make_annotated([7.0] * 4, notes=notes, start_ts=VISIT_DAY)
        bits = flag_field_visits(df, QCConfig())
        assert flagged_rows(bits, QCFlag.SONDE_NOT_EMPLOYED) == [2, 3]

    def test_no_notes_no_flags(self, make_annotated) -> None:
        df = make_annotated([7.0] * 4, start_ts=VISIT_DAY)
        assert (flag_field_visits(df, QCConfig()) == 0).all()


class TestRangeRules:
    """Tests for spec and seasonal range rules."""

    def test_spec_range(self, make_annotated, thresholds) -> None:
        df = make_annotated([7.0, 15.0, -1.0, np.nan])
        bits = flag_spec_range(df, thresholds)
        assert flagged_rows(bits, QCFlag.OUTSIDE_SPEC_RANGE) == [1, 2]

    def test_spec_range_missing_entry_raises(self, make_annotated, thresholds) -> None:
        df = make_annotated([1.0], parameter="Turbidity", units="NTU")
        with pytest.raises(UnresolvableThreshold):
            flag_spec_range(df, thresholds)

    def test_seasonal_range(self, make_annotated, thresholds) -> None:
        df = make_annotated([0.2, 0.6, 0.7], parameter="Temperature", units="C", start_ts=WINTER)
        bits = flag_seasonal_range(df, thresholds)
        assert flagged_rows(bits, QCFlag.OUTSIDE_SEASONAL_RANGE) == [0]
        assert flagged_rows(bits, QCFlag.SLOPE_VIOLATION) == []

    def test_slope_violation_on_either_side(self, make_annotated, thresholds) -> None:
        # 1.0 per 15 minutes exceeds the 0.05 per minute bound
        df = make_annotated([7.0, 7.0, 8.0, 8.0])
        bits = flag_seasonal_range(df, thresholds)
        assert flagged_rows(bits, QCFlag.SLOPE_VIOLATION) == [1, 2]

    def test_season_without_entry_is_unflagged(self, make_annotated, thresholds) -> None:
        # Temperature only has a winter entry
        df = make_annotated([40.0, 0.0, 40.0], parameter="Temperature", units="C")
        assert (flag_seasonal_range(df, thresholds) == 0).all()


class TestValueRules:
    """Tests for missing data, repeated values and DO noise."""

    def test_null_interval_only_carries_missing_data(self, make_annotated, thresholds) -> None:
        df = apply_parameter_rules(make_annotated([7.0, np.nan, 7.0]), thresholds)
        assert df["flags"].iloc[1] == int(QCFlag.MISSING_DATA)

    def test_repeated_values(self, make_annotated) -> None:
        assert flagged_rows(
            flag_repeated_values(make_annotated([5.0, 5.0, 6.0])), QCFlag.REPEATED_VALUE
        ) == [0, 1]
        assert (flag_repeated_values(make_annotated([5.0, 5.1, 5.2])) == 0).all()

    def test_repeated_values_skip_gaps(self, make_annotated) -> None:
        bits = flag_repeated_values(make_annotated([5.0, np.nan, 5.0]))
        assert flagged_rows(bits, QCFlag.REPEATED_VALUE) == [0, 2]

    def test_low_do_is_interference(self, make_annotated) -> None:
        config = QCConfig(do_noise_slope=100.0, do_noise_sd=100.0)
        df = make_annotated([8.0, 4.5, 8.2], parameter="DO", units="mg/L", config=config)
        assert flagged_rows(flag_do_noise(df, config), QCFlag.DO_INTERFERENCE) == [1]

    def test_noisy_do_is_interference(self, make_annotated) -> None:
        df = make_annotated([8.0, 10.0, 8.0, 10.0], parameter="DO", units="mg/L")
        bits = flag_do_noise(df, QCConfig())
        assert flagged_rows(bits, QCFlag.DO_INTERFERENCE) == [1, 2, 3]

    def test_do_noise_ignores_other_parameters(self, make_annotated) -> None:
        df = make_annotated([1.0, 9.0, 1.0])
        assert (flag_do_noise(df, QCConfig()) == 0).all()


class TestDepthShift:
    """Tests for sonde-moved detection on depth."""

    def test_step_after_adjustment(self, make_annotated, make_notes) -> None:
        notes = make_notes(
            [{"site": "bellvue", "timestamp": "2024-07-01T10:00:00Z", "note_type": "maintenance"}]
        )
        values = [1.0] * 9 + [1.2] * 4  # 09:00-11:00 then 11:15-12:00
        df = make_annotated(values, notes=notes, parameter="Depth", units="m", start_ts=VISIT_DAY)
        bits = flag_depth_shift(df, QCConfig())
        assert df.loc[flagged_rows(bits, QCFlag.SONDE_MOVED), "timestamp_key"].tolist() == [
            "2024-07-01T11:15:00Z"
        ]

    def test_no_step_no_flag(self, make_annotated, make_notes) -> None:
        notes = make_notes(
            [{"site": "bellvue", "timestamp": "2024-07-01T10:00:00Z", "note_type": "maintenance"}]
        )
        df = make_annotated(
            [1.0] * 13, notes=notes, parameter="Depth", units="m", start_ts=VISIT_DAY
        )
        assert (flag_depth_shift(df, QCConfig()) == 0).all()

    def test_reported_move_before_cutoff(self, make_annotated, make_notes, thresholds) -> None:
        notes = make_notes(
            [
                {
                    "site": "bellvue",
                    "timestamp": "2023-06-01T09:30:00Z",
                    "note_type": "maintenance",
                    "sonde_moved": True,
                }
            ]
        )
        start = pd.Timestamp("2023-06-01T09:00:00Z")
        df = make_annotated([1.0] * 4, notes=notes, parameter="Depth", units="m", start_ts=start)
        assert flagged_rows(flag_depth_shift(df, QCConfig()), QCFlag.SONDE_MOVED) == [2]

        flagged = apply_parameter_rules(df, thresholds)
        assert flagged["sonde_moved_flag"].tolist() == [False, False, True, False]

    def test_only_depth(self, make_annotated, make_notes) -> None:
        notes = make_notes(
            [
                {
                    "site": "bellvue",
                    "timestamp": "2023-06-01T09:00:00Z",
                    "note_type": "maintenance",
                    "sonde_moved": True,
                }
            ]
        )
        start = pd.Timestamp("2023-06-01T09:00:00Z")
        df = make_annotated([7.0, 7.5], notes=notes, start_ts=start)
        assert (flag_depth_shift(df, QCConfig()) == 0).all()


class TestDrift:
    """Tests for optical drift detection."""

    config = QCConfig(drift_window_hours=2.0, drift_magnitude=1.0)

    def test_linear_trend_drifts(self, make_annotated) -> None:
        values = [float(i) for i in range(12)]
        df = make_annotated(values, parameter="Turbidity", units="NTU")
        bits = flag_drift(df, self.config)
        assert has_flag(bits, QCFlag.DRIFT).all()

    def test_flat_series_does_not_drift(self, make_annotated) -> None:
        df = make_annotated([3.0] * 12, parameter="Turbidity", units="NTU")
        assert (flag_drift(df, self.config) == 0).all()

    def test_only_optical_parameters(self, make_annotated) -> None:
        values = [float(i) for i in range(12)]
        df = make_annotated(values)
        assert (flag_drift(df, self.config) == 0).all()


class TestApplyParameterRules:
    """Tests for the layer-1 engine."""

    def test_rule_order_does_not_matter(self, make_annotated, thresholds) -> None:
        df = make_annotated([7.0, 7.0, 15.0, np.nan, 8.0])
        first = apply_parameter_rules(df, thresholds)
        second = apply_parameter_rules(df, thresholds)
        pd.testing.assert_frame_equal(first, second)

    def test_flags_combine(self, make_annotated, thresholds) -> None:
        df = apply_parameter_rules(make_annotated([15.0, 15.0, 7.0]), thresholds)
        for flag in (QCFlag.OUTSIDE_SPEC_RANGE, QCFlag.OUTSIDE_SEASONAL_RANGE):
            assert has_flag(df["flags"], flag).iloc[0]
        assert has_flag(df["flags"], QCFlag.REPEATED_VALUE).iloc[0]

    def test_missing_threshold_skips_rule(self, make_annotated, thresholds, capsys) -> None:
        df = make_annotated([1.0, 2.0, 3.0], parameter="Turbidity", units="NTU")
        flagged = apply_parameter_rules(df, thresholds)
        assert (flagged["flags"] == 0).all()
        assert "Skipping spec range for bellvue/Turbidity" in capsys.readouterr().out

    def test_failing_rule_is_contained(self, make_annotated, thresholds, capsys) -> None:
        df = make_annotated([7.0, 7.0, 8.0]).drop(columns=["slope_ahead"])
        flagged = apply_parameter_rules(df, thresholds)
        assert "Rule seasonal range failed" in capsys.readouterr().out
        assert has_flag(flagged["flags"], QCFlag.REPEATED_VALUE).iloc[0]

    def test_input_is_not_modified(self, make_annotated, thresholds) -> None:
        df = make_annotated([7.0, 15.0])
        before = df.copy()
        apply_parameter_rules(df, thresholds)
        pd.testing.assert_frame_equal(df, before)
