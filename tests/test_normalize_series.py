"""Tests for raw reading normalization."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from riverqc.errors import NoDataAcquired, OutOfOrderTimestamp
from riverqc.normalize.normalize_series import (
    dedupe_raw,
    normalize_measurements,
    normalize_series,
    order_raw,
    split_raw_by_series,
)
from riverqc.schemas.interval import INTERVAL_FIELDS, RAW_FIELDS


class TestAggregation:
    """Tests for per-interval aggregation."""

    def test_sub_cadence_readings_are_averaged(self, make_raw) -> None:
        raw = make_raw([1.0, 2.0, 3.0], freq="5min")
        series = normalize_series(raw)

        assert len(series) == 1
        row = series.iloc[0]
        assert row["mean"] == pytest.approx(2.0)
        assert row["n_obs"] == 3
        assert row["spread"] == pytest.approx(2.0)

    def test_timestamps_floor_to_cadence(self, make_raw) -> None:
        raw = make_raw([1.0, 2.0], start_ts=pd.Timestamp("2024-07-01T00:07:00Z"), freq="15min")
        series = normalize_series(raw)
        assert series["timestamp_key"].tolist() == [
            "2024-07-01T00:00:00Z",
            "2024-07-01T00:15:00Z",
        ]

    def test_output_columns_and_defaults(self, make_series) -> None:
        series = make_series([7.0, 7.1])
        assert list(series.columns) == INTERVAL_FIELDS
        assert (series["flags"] == 0).all()
        assert (series["malfunction_flag"] == 0).all()
        assert not series["sonde_moved_flag"].any()
        assert not series["historical"].any()


class TestPadding:
    """Tests for gap materialization."""

    def test_gaps_become_null_rows(self, make_raw) -> None:
        raw = make_raw([1.0, 4.0], freq="45min")
        series = normalize_series(raw)

        assert len(series) == 4
        assert series["mean"].isna().tolist() == [False, True, True, False]
        assert series["n_obs"].tolist() == [1, 0, 0, 1]

    def test_null_reading_is_counted_as_missing(self, make_raw) -> None:
        series = normalize_series(make_raw([1.0, np.nan, 3.0]))
        assert np.isnan(series["mean"].iloc[1])
        assert series["n_obs"].iloc[1] == 0


class TestDedupeAndOrder:
    """Tests for deduplication and ordering of raw readings."""

    def test_exact_duplicates_removed(self, make_raw) -> None:
        raw = make_raw([1.0, 2.0])
        doubled = pd.concat([raw, raw.iloc[[0]]], ignore_index=True)
        assert len(dedupe_raw(doubled)) == 2

    def test_duplicate_does_not_inflate_n_obs(self, make_raw) -> None:
        raw = make_raw([1.0, 2.0])
        doubled = pd.concat([raw, raw], ignore_index=True)
        series = normalize_measurements(doubled, verbose=False)[("bellvue", "pH")]
        assert series["n_obs"].tolist() == [1, 1]

    def test_unsorted_input_is_sorted(self, make_raw) -> None:
        raw = make_raw([1.0, 2.0, 3.0]).iloc[::-1].reset_index(drop=True)
        ordered = order_raw(raw)
        assert ordered["value"].tolist() == [1.0, 2.0, 3.0]

    def test_strict_order_raises(self, make_raw) -> None:
        raw = make_raw([1.0, 2.0, 3.0]).iloc[::-1].reset_index(drop=True)
        with pytest.raises(OutOfOrderTimestamp, match="bellvue/pH"):
            order_raw(raw, strict=True)

    def test_strict_order_accepts_sorted(self, make_raw) -> None:
        raw = make_raw([1.0, 2.0, 3.0])
        assert order_raw(raw, strict=True)["value"].tolist() == [1.0, 2.0, 3.0]


class TestSplit:
    """Tests for splitting a feed into series."""

    def test_one_group_per_site_parameter(self, make_raw) -> None:
        raw = pd.concat(
            [
                make_raw([1.0, 2.0], site="bellvue", parameter="pH"),
                make_raw([10.0], site="bellvue", parameter="Temperature", units="C"),
                make_raw([7.0], site="tamasag", parameter="pH"),
            ],
            ignore_index=True,
        )
        groups = split_raw_by_series(raw, verbose=False)
        assert sorted(groups) == [
            ("bellvue", "Temperature"),
            ("bellvue", "pH"),
            ("tamasag", "pH"),
        ]
        assert len(groups[("bellvue", "pH")]) == 2

    def test_empty_feed_raises(self) -> None:
        with pytest.raises(NoDataAcquired):
            split_raw_by_series(pd.DataFrame(columns=RAW_FIELDS), verbose=False)

    def test_feed_without_keys_raises(self, make_raw) -> None:
        raw = make_raw([1.0, 2.0])
        raw["site"] = None
        with pytest.raises(NoDataAcquired):
            split_raw_by_series(raw, verbose=False)

    def test_missing_column_raises(self, make_raw) -> None:
        raw = make_raw([1.0]).drop(columns=["units"])
        with pytest.raises(ValueError, match="Missing columns"):
            split_raw_by_series(raw, verbose=False)

    def test_naive_timestamps_raise(self, make_raw) -> None:
        raw = make_raw([1.0])
        raw["timestamp"] = raw["timestamp"].dt.tz_localize(None)
        with pytest.raises(ValueError, match="Timezone required"):
            split_raw_by_series(raw, verbose=False)


class TestIdempotence:
    """The same readings always produce the same series."""

    def test_repeat_run_is_identical(self, make_raw) -> None:
        raw = make_raw([1.0, 2.5, np.nan, 3.0], freq="10min")
        first = normalize_measurements(raw, verbose=False)
        second = normalize_measurements(raw, verbose=False)
        for key in first:
            pd.testing.assert_frame_equal(first[key], second[key])

    def test_input_order_does_not_matter(self, make_raw) -> None:
        raw = make_raw([1.0, 2.5, 3.0, 4.0], freq="10min")
        shuffled = raw.sample(frac=1.0, random_state=0).reset_index(drop=True)
        expected = normalize_measurements(raw, verbose=False)[("bellvue", "pH")]
        actual = normalize_measurements(shuffled, verbose=False)[("bellvue", "pH")]
        pd.testing.assert_frame_equal(expected, actual)
