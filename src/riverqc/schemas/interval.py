"""Canonical raw measurement, interval, and output record schemas.

Raw measurements arrive at any sampling rate. The normalizer turns them into
fixed-cadence intervals, the flagging layers enrich intervals with flags, and
the projection step reduces them to the output record.

Non-negotiables:
- timestamp is timezone-aware UTC
- timestamp_key is the only join key across series
- flags is an integer bitmask over QCFlag, never a free-form string
- historical is False until the merger commits the row
"""

from __future__ import annotations

from typing import TypedDict

import pandas as pd

from riverqc.schemas.validate import (
    require_columns,
    require_fixed_cadence,
    require_no_nulls,
    require_nonnegative_int,
    require_timezone_utc,
    require_unique,
)

# Parameter names as reported by the sondes
TEMPERATURE = "Temperature"
DEPTH = "Depth"
DISSOLVED_OXYGEN = "DO"
PH = "pH"
SPECIFIC_CONDUCTIVITY = "Specific Conductivity"
TURBIDITY = "Turbidity"
FDOM = "FDOM Fluorescence"
CHLA = "Chl-a Fluorescence"

OPTICAL_PARAMETERS = (FDOM, TURBIDITY, CHLA)

TIMESTAMP_KEY_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class RawMeasurement(TypedDict):
    """One reading as delivered by the acquisition collaborator."""

    site: str
    timestamp: pd.Timestamp  # UTC
    parameter: str
    value: float
    units: str


class Interval(TypedDict):
    """One fixed-cadence aggregated row of a (site, parameter) series."""

    timestamp: pd.Timestamp  # UTC, aligned to the cadence
    timestamp_key: str  # Canonical join key
    site: str
    parameter: str
    mean: float  # NaN for padded gaps
    units: str
    n_obs: int  # Raw readings aggregated into this interval
    spread: float  # max - min within the interval
    flags: int  # QCFlag bitmask
    malfunction_flag: int  # MalfunctionFlag bitmask
    sonde_moved_flag: bool
    historical: bool


RAW_FIELDS = ["site", "timestamp", "parameter", "value", "units"]

INTERVAL_FIELDS = [
    "timestamp",
    "timestamp_key",
    "site",
    "parameter",
    "mean",
    "units",
    "n_obs",
    "spread",
    "flags",
    "malfunction_flag",
    "sonde_moved_flag",
    "historical",
]

# Canonical output columns
OUTPUT_FIELDS = [
    "timestamp",
    "timestamp_key",
    "site",
    "parameter",
    "mean",
    "units",
    "n_obs",
    "spread",
    "auto_flag",
    "malfunction_flag",
    "sonde_moved_flag",
    "historical",
]

OPTIONAL_OUTPUT_FIELDS = ["season", "last_site_visit"]

OUTPUT_KEY = ["site", "parameter", "timestamp"]


def make_timestamp_key(ts: pd.Series) -> pd.Series:
    """Render UTC timestamps into their canonical string join key."""
    return ts.dt.tz_convert("UTC").dt.strftime(TIMESTAMP_KEY_FORMAT)


def validate_raw_measurements(df: pd.DataFrame) -> None:
    """Validate the structure of the raw measurement feed.

    Values may be null and rows may repeat; those are data issues the
    normalizer deals with.

    Raises:
        ValueError: If columns are missing or timestamps are not UTC
    """
    dataset = "raw_measurements"
    require_columns(df.columns, RAW_FIELDS, dataset=dataset)
    if df.empty:
        return
    require_timezone_utc(df, "timestamp", dataset=dataset)


def validate_series(df: pd.DataFrame, cadence: pd.Timedelta) -> None:
    """Validate that a DataFrame is a single well-formed series.

    Checks performed:
    - All interval columns present
    - timestamp is tz-aware UTC
    - No nulls in: timestamp, timestamp_key, site, parameter, n_obs, flags
    - Exactly one (site, parameter)
    - Unique timestamps at fixed cadence, no gaps
    - n_obs and flags non-negative

    Raises:
        ValueError: If any validation check fails
    """
    dataset = "series"
    require_columns(df.columns, INTERVAL_FIELDS, dataset=dataset)
    if df.empty:
        return

    require_timezone_utc(df, "timestamp", dataset=dataset)
    require_no_nulls(
        df,
        ["timestamp", "timestamp_key", "site", "parameter", "n_obs", "flags"],
        dataset=dataset,
    )

    keys = df[["site", "parameter"]].drop_duplicates()
    if len(keys) != 1:
        raise ValueError(
            f"[{dataset}] Mixed series: expected one (site, parameter), got {len(keys)}"
        )

    require_unique(df, ["timestamp"], dataset=dataset)
    require_fixed_cadence(df, "timestamp", cadence, dataset=dataset)
    require_nonnegative_int(df, "n_obs", dataset=dataset)
    require_nonnegative_int(df, "flags", dataset=dataset)


def validate_output(df: pd.DataFrame, require_unique_keys: bool = True) -> None:
    """Validate the canonical output record set.

    Raises:
        ValueError: If any validation check fails
    """
    dataset = "qc_output"
    require_columns(df.columns, OUTPUT_FIELDS, dataset=dataset)
    if df.empty:
        return

    require_timezone_utc(df, "timestamp", dataset=dataset)
    require_no_nulls(
        df,
        ["timestamp", "timestamp_key", "site", "parameter", "historical"],
        dataset=dataset,
    )
    if require_unique_keys:
        require_unique(df, OUTPUT_KEY, dataset=dataset)
