"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import datetime, timezone

import pandas as pd
import pytest

from riverqc.config import QCConfig
from riverqc.features.context import annotate_series
from riverqc.normalize.normalize_series import normalize_series
from riverqc.schemas.field_notes import coerce_field_notes, empty_field_notes
from riverqc.schemas.interval import OUTPUT_FIELDS, make_timestamp_key
from riverqc.thresholds import SeasonalThreshold, ThresholdTables

DEFAULT_START = datetime(2024, 7, 1, 0, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_raw():
    """Factory fixture for raw reading DataFrames, one reading per interval."""

    def _make(
        values: list[float],
        site: str = "bellvue",
        parameter: str = "pH",
        start_ts: datetime | None = None,
        freq: str = "15min",
        units: str = "pH",
    ) -> pd.DataFrame:
        if start_ts is None:
            start_ts = DEFAULT_START

        timestamps = pd.date_range(start=start_ts, periods=len(values), freq=freq, tz="UTC")
        return pd.DataFrame(
            {
                "site": site,
                "timestamp": timestamps,
                "parameter": parameter,
                "value": values,
                "units": units,
            }
        )

    return _make


@pytest.fixture
def make_series(make_raw):
    """Factory fixture for normalized series."""

    def _make(values: list[float], **kwargs) -> pd.DataFrame:
        return normalize_series(make_raw(values, **kwargs))

    return _make


@pytest.fixture
def make_notes():
    """Factory fixture for field note DataFrames from (site, timestamp, note_type, ...) dicts."""

    def _make(rows: list[dict]) -> pd.DataFrame:
        if not rows:
            return empty_field_notes()
        return coerce_field_notes(pd.DataFrame(rows), verbose=False)

    return _make


@pytest.fixture
def make_annotated(make_series):
    """Factory fixture for annotated series."""

    def _make(
        values: list[float],
        notes: pd.DataFrame | None = None,
        config: QCConfig | None = None,
        **kwargs,
    ) -> pd.DataFrame:
        if notes is None:
            notes = empty_field_notes()
        return annotate_series(make_series(values, **kwargs), notes, config or QCConfig())

    return _make


@pytest.fixture
def thresholds() -> ThresholdTables:
    """Spec and seasonal tables covering pH and Temperature at bellvue."""
    return ThresholdTables(
        spec={"pH": (0.0, 14.0), "Temperature": (-5.0, 50.0)},
        seasonal={
            ("bellvue", "Temperature", "winter_baseflow"): SeasonalThreshold(
                p1=0.5, p99=12.0, slope_bound=1.0
            ),
            ("bellvue", "pH", "monsoon"): SeasonalThreshold(p1=6.5, p99=9.0, slope_bound=0.05),
        },
    )


@pytest.fixture
def make_output():
    """Factory fixture for canonical output rows.

    Each row is (site, parameter, timestamp, mean, auto_flag).
    """

    def _make(rows: list[tuple], historical: bool = False) -> pd.DataFrame:
        df = pd.DataFrame(rows, columns=["site", "parameter", "timestamp", "mean", "auto_flag"])
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
        df["timestamp_key"] = make_timestamp_key(df["timestamp"])
        df["units"] = ""
        df["n_obs"] = 1
        df["spread"] = 0.0
        df["malfunction_flag"] = None
        df["sonde_moved_flag"] = False
        df["historical"] = historical
        return df[OUTPUT_FIELDS]

    return _make
