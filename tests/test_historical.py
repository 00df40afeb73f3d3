"""Tests for historical reconciliation."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from riverqc.errors import ReconciliationConflict
from riverqc.merge.historical import (
    compute_merge_stats,
    merge_historical,
    read_store,
    recent_view,
    write_store,
)


@pytest.fixture
def history(make_output) -> pd.DataFrame:
    return make_output(
        [
            ("bellvue", "pH", "2024-07-01T00:00:00Z", 7.0, None),
            ("bellvue", "pH", "2024-07-01T00:15:00Z", 7.1, None),
        ],
        historical=True,
    )


@pytest.fixture
def batch(make_output) -> pd.DataFrame:
    return make_output(
        [
            ("bellvue", "pH", "2024-07-01T00:15:00Z", 7.5, "drift"),
            ("bellvue", "pH", "2024-07-01T00:30:00Z", 7.2, None),
        ]
    )


class TestMergeHistorical:
    """Tests for merge_historical."""

    def test_new_batch_wins(self, history, batch) -> None:
        store = merge_historical(batch, history, verbose=False)

        assert store["timestamp_key"].tolist() == [
            "2024-07-01T00:00:00Z",
            "2024-07-01T00:15:00Z",
            "2024-07-01T00:30:00Z",
        ]
        assert store["mean"].tolist() == [7.0, 7.5, 7.2]
        assert store["auto_flag"].tolist() == [None, "drift", None]
        assert store["historical"].all()

    def test_missing_labels_from_store_are_none(self, history, batch) -> None:
        stored = history.assign(auto_flag=[np.nan, np.nan], malfunction_flag=[np.nan, np.nan])
        store = merge_historical(batch, stored, verbose=False)
        assert store["auto_flag"].tolist() == [None, "drift", None]
        assert store["malfunction_flag"].tolist() == [None, None, None]

    def test_first_run_without_history(self, batch) -> None:
        store = merge_historical(batch, None, verbose=False)
        assert len(store) == 2
        assert store["historical"].all()

    def test_input_order_does_not_matter(self, history, batch) -> None:
        expected = merge_historical(batch, history, verbose=False)
        shuffled = merge_historical(
            batch.iloc[::-1].reset_index(drop=True),
            history.iloc[::-1].reset_index(drop=True),
            verbose=False,
        )
        pd.testing.assert_frame_equal(expected, shuffled)

    def test_merge_is_idempotent(self, history, batch) -> None:
        once = merge_historical(batch, history, verbose=False)
        twice = merge_historical(batch, once, verbose=False)
        pd.testing.assert_frame_equal(once, twice)

    def test_conflict_can_raise(self, history, batch) -> None:
        with pytest.raises(ReconciliationConflict, match="1 keys"):
            merge_historical(batch, history, raise_on_conflict=True, verbose=False)

    def test_duplicate_batch_keys_raise(self, batch) -> None:
        doubled = pd.concat([batch, batch], ignore_index=True)
        with pytest.raises(ValueError, match="Duplicate keys"):
            merge_historical(doubled, None, verbose=False)

    def test_inputs_not_modified(self, history, batch) -> None:
        before = batch.copy()
        merge_historical(batch, history, verbose=False)
        pd.testing.assert_frame_equal(batch, before)

    def test_stats(self, history, batch) -> None:
        stats = compute_merge_stats(batch, history)
        assert (stats.kept, stats.replaced, stats.appended) == (1, 1, 1)
        assert stats.total == 3


class TestRecentView:
    """Tests for the recent window of the store."""

    def test_relative_to_latest_timestamp(self, make_output) -> None:
        store = make_output(
            [
                ("bellvue", "pH", "2024-05-01T00:00:00Z", 7.0, None),
                ("bellvue", "pH", "2024-06-01T00:00:00Z", 7.1, None),
                ("bellvue", "pH", "2024-07-01T00:00:00Z", 7.2, None),
            ],
            historical=True,
        )
        recent = recent_view(store, days=45)
        assert recent["mean"].tolist() == [7.1, 7.2]

    def test_explicit_reference_time(self, make_output) -> None:
        store = make_output(
            [("bellvue", "pH", "2024-07-01T00:00:00Z", 7.2, None)], historical=True
        )
        now = pd.Timestamp("2024-10-01T00:00:00Z")
        assert recent_view(store, days=45, now=now).empty


class TestStoreIO:
    """Tests for reading and writing the store."""

    def test_missing_store_is_none(self, tmp_path) -> None:
        assert read_store(tmp_path / "qc_store.parquet") is None

    def test_write_then_read(self, tmp_path, history, batch) -> None:
        store = merge_historical(batch, history, verbose=False)
        path = write_store(store, tmp_path / "flagged" / "qc_store.parquet")

        assert path.exists()
        assert not (tmp_path / "flagged" / "qc_store.parquet.tmp").exists()

        loaded = read_store(path)
        assert loaded["timestamp_key"].tolist() == store["timestamp_key"].tolist()
        assert loaded["mean"].tolist() == store["mean"].tolist()
        assert str(loaded["timestamp"].dt.tz) == "UTC"

    def test_invalid_store_not_written(self, tmp_path, batch) -> None:
        doubled = pd.concat([batch, batch], ignore_index=True)
        with pytest.raises(ValueError):
            write_store(doubled, tmp_path / "qc_store.parquet")
        assert not (tmp_path / "qc_store.parquet").exists()
