"""Tests for validation helper functions."""

from __future__ import annotations

import pandas as pd
import pytest

from riverqc.schemas.validate import (
    require_fixed_cadence,
    require_no_nulls,
    require_timezone_utc,
    require_unique,
)


class TestErrorMessages:
    """Tests for the shared error format."""

    def test_names_dataset_count_and_sample(self) -> None:
        df = pd.DataFrame({"mean": [None, 1.0, None]})
        with pytest.raises(ValueError) as exc_info:
            require_no_nulls(df, ["mean"], dataset="series[bellvue/pH]")
        message = str(exc_info.value)
        assert message.startswith("[series[bellvue/pH]]Null values")
        assert "(2 rows)" in message
        assert "sample indices: [0, 2]" in message

    def test_key_check_needs_every_key_column(self) -> None:
        df = pd.DataFrame({"site": ["bellvue", "bellvue"]})
        require_unique(df, ["site", "timestamp_key"])

    def test_local_time_rejected(self) -> None:
        df = pd.DataFrame(
            {"ts": pd.date_range("2024-07-01", periods=2, freq="15min", tz="America/Denver")}
        )
        with pytest.raises(ValueError, match="Wrong timezone"):
            require_timezone_utc(df, "ts")


class TestRequireFixedCadence:
    """Tests for require_fixed_cadence helper."""

    cadence = pd.Timedelta(minutes=15)

    def test_regular_series_passes(self) -> None:
        df = pd.DataFrame(
            {"ts": pd.date_range("2024-07-01", periods=4, freq="15min", tz="UTC")}
        )
        require_fixed_cadence(df, "ts", self.cadence)

    def test_single_row_passes(self) -> None:
        df = pd.DataFrame({"ts": pd.to_datetime(["2024-07-01T00:15:00Z"])})
        require_fixed_cadence(df, "ts", self.cadence)

    def test_gap_raises(self) -> None:
        """A missing interval must be a row, never an omission."""
        ts = pd.to_datetime(
            ["2024-07-01T00:00:00Z", "2024-07-01T00:15:00Z", "2024-07-01T00:45:00Z"]
        )
        df = pd.DataFrame({"ts": ts})
        with pytest.raises(ValueError, match=r"Irregular spacing.*\(1 rows\)"):
            require_fixed_cadence(df, "ts", self.cadence)

    def test_unsorted_raises(self) -> None:
        ts = pd.to_datetime(["2024-07-01T00:15:00Z", "2024-07-01T00:00:00Z"])
        df = pd.DataFrame({"ts": ts})
        with pytest.raises(ValueError, match="Irregular spacing"):
            require_fixed_cadence(df, "ts", self.cadence)

    def test_misaligned_raises(self) -> None:
        ts = pd.to_datetime(["2024-07-01T00:07:00Z", "2024-07-01T00:22:00Z"])
        df = pd.DataFrame({"ts": ts})
        with pytest.raises(ValueError, match="Misaligned timestamps"):
            require_fixed_cadence(df, "ts", self.cadence)
