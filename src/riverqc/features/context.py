"""Annotate series with field-note context and rolling statistics.

This stage joins technician notes onto every interval and derives the
read-only context the rule layers evaluate:
1. last_site_visit / next_site_visit: nearest visit before and after
2. sonde_employed: latest employed-state note at or before the interval
3. housing_adjusted / sonde_moved_note: notes that touched the sonde
4. Neighbor values and slopes, trailing-window statistics
5. season: hydrologic regime from the calendar month

Later stages read these columns but never write them.
"""

from __future__ import annotations

import pandas as pd

from riverqc.config import QCConfig
from riverqc.features.rolling_stats import compute_trailing_stats

# Calendar month -> hydrologic season
SEASONS: dict[int, str] = {
    12: "winter_baseflow",
    1: "winter_baseflow",
    2: "winter_baseflow",
    3: "winter_baseflow",
    4: "winter_baseflow",
    5: "snowmelt",
    6: "snowmelt",
    7: "monsoon",
    8: "monsoon",
    9: "monsoon",
    10: "fall_baseflow",
    11: "fall_baseflow",
}

CONTEXT_FIELDS = [
    "season",
    "last_site_visit",
    "next_site_visit",
    "sonde_employed",
    "housing_adjusted",
    "sonde_moved_note",
    "back1",
    "front1",
    "slope_behind",
    "slope_ahead",
    "rolling_median",
    "rolling_mean",
    "rolling_slope",
    "rolling_sd",
]

_TS_DTYPE = "datetime64[ns, UTC]"


def add_season(df: pd.DataFrame) -> pd.DataFrame:
    """Add the season label derived from the interval month."""
    df = df.copy()
    df["season"] = df["timestamp"].dt.month.map(SEASONS)
    return df


def site_visit_times(notes: pd.DataFrame, cadence: pd.Timedelta) -> pd.Series:
    """All known visit timestamps for one site, aligned to the cadence.

    Visits come from site_visit notes and from the last_site_visit column
    other notes carry.
    """
    visits = pd.concat(
        [
            notes.loc[notes["note_type"] == "site_visit", "timestamp"],
            notes["last_site_visit"].dropna(),
        ]
    )
    if visits.empty:
        return pd.Series(dtype=_TS_DTYPE)
    visits = visits.astype(_TS_DTYPE).dt.floor(cadence)
    return visits.drop_duplicates().sort_values().reset_index(drop=True)


def join_site_visits(df: pd.DataFrame, visits: pd.Series) -> pd.DataFrame:
    """Add last_site_visit and next_site_visit by nearest-visit matching."""
    df = df.copy()
    if visits.empty:
        df["last_site_visit"] = pd.Series(pd.NaT, index=df.index, dtype=_TS_DTYPE)
        df["next_site_visit"] = pd.Series(pd.NaT, index=df.index, dtype=_TS_DTYPE)
        return df

    left = pd.DataFrame({"timestamp": df["timestamp"].astype(_TS_DTYPE)})
    right = pd.DataFrame({"timestamp": visits, "visit": visits})

    before = pd.merge_asof(left, right, on="timestamp", direction="backward")
    after = pd.merge_asof(left, right, on="timestamp", direction="forward")
    df["last_site_visit"] = before["visit"].set_axis(df.index)
    df["next_site_visit"] = after["visit"].set_axis(df.index)
    return df


def join_sonde_employed(
    df: pd.DataFrame,
    notes: pd.DataFrame,
    cadence: pd.Timedelta,
) -> pd.DataFrame:
    """Add sonde_employed from the latest employed-state note (default 1)."""
    df = df.copy()
    states = notes[
        (notes["note_type"] == "sonde_employed_state") & notes["sonde_employed"].notna()
    ]
    if states.empty:
        df["sonde_employed"] = 1.0
        return df

    right = pd.DataFrame(
        {
            "timestamp": states["timestamp"].astype(_TS_DTYPE).dt.floor(cadence),
            "sonde_employed": states["sonde_employed"].astype("float64"),
        }
    )
    # The last note wins when several share one interval
    right = right.drop_duplicates("timestamp", keep="last").sort_values("timestamp")
    left = pd.DataFrame({"timestamp": df["timestamp"].astype(_TS_DTYPE)})

    joined = pd.merge_asof(left, right, on="timestamp", direction="backward")
    df["sonde_employed"] = joined["sonde_employed"].fillna(1.0).to_numpy()
    return df


def join_adjustment_notes(
    df: pd.DataFrame,
    notes: pd.DataFrame,
    cadence: pd.Timedelta,
) -> pd.DataFrame:
    """Mark intervals where the sonde housing may have been touched.

    Columns added:
    - housing_adjusted: a maintenance or site-visit note falls in the interval
    - sonde_moved_note: a technician reported moving the sonde in the interval
    """
    df = df.copy()
    touched = notes["note_type"].isin(["maintenance", "site_visit"])
    adjusted = notes.loc[touched, "timestamp"].astype(_TS_DTYPE).dt.floor(cadence)
    moved = notes.loc[notes["sonde_moved"], "timestamp"].astype(_TS_DTYPE).dt.floor(cadence)

    ts = df["timestamp"].astype(_TS_DTYPE)
    df["housing_adjusted"] = ts.isin(adjusted)
    df["sonde_moved_note"] = ts.isin(moved)
    return df


def annotate_series(
    series: pd.DataFrame,
    site_notes: pd.DataFrame,
    config: QCConfig | None = None,
) -> pd.DataFrame:
    """Add CONTEXT_FIELDS to one series.

    Args:
        series: Normalized series
        site_notes: Field notes for the series' site (may be empty)
        config: Run configuration (default QCConfig())

    Returns:
        Copy of the series with context columns added
    """
    if config is None:
        config = QCConfig()

    df = add_season(series)
    df = join_site_visits(df, site_visit_times(site_notes, config.cadence))
    df = join_sonde_employed(df, site_notes, config.cadence)
    df = join_adjustment_notes(df, site_notes, config.cadence)
    df = compute_trailing_stats(
        df,
        value_col="mean",
        window=config.rolling_points,
        step_minutes=config.cadence_minutes,
    )
    return df


def notes_for_site(notes: pd.DataFrame, site: str) -> pd.DataFrame:
    return notes[notes["site"] == site].reset_index(drop=True)
