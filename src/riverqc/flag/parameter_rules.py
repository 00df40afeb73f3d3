"""Layer 1: per-parameter rules evaluated on one series at a time.

Each rule reads the annotated series and returns the QCFlag bits it wants
to set, one value per interval. Rules never read each other's output; the
engine ORs their contributions together at the end, so the result does not
depend on rule order and re-running is idempotent.

Rules:
- field visit: site visit, sv window, sonde not employed
- spec range: outside of sensor specification range
- seasonal range: outside of seasonal range, slope violation
- missing data
- DO noise: do interference (dissolved oxygen only)
- repeated value
- depth shift: sonde moved (depth only)
- drift: optical sensors only

Value-dependent rules only look at intervals with a value, so a null
interval carries "missing data" and nothing value-derived.
"""

from __future__ import annotations

import pandas as pd

from riverqc.config import QCConfig
from riverqc.features.rolling_stats import rolling_linear_fit
from riverqc.flag.common import bits_where, no_flags, run_isolated, series_label, spread_to_window
from riverqc.schemas.interval import DEPTH, DISSOLVED_OXYGEN, OPTICAL_PARAMETERS
from riverqc.schemas.qc_flags import QCFlag, has_flag
from riverqc.thresholds import ThresholdTables


def flag_field_visits(df: pd.DataFrame, config: QCConfig) -> pd.Series:
    """Flag intervals at or around a site visit, and when the sonde is pulled.

    - site visit: the interval holds a visit
    - sv window: within [-15 min, +60 min] of a visit, excluding the visit itself
    - sonde not employed: the latest employed-state note says 0
    """
    ts = df["timestamp"]
    last_visit = df["last_site_visit"]
    next_visit = df["next_site_visit"]

    at_visit = ts == last_visit
    after = pd.Timedelta(minutes=config.sv_window_after_minutes)
    before = pd.Timedelta(minutes=config.sv_window_before_minutes)
    in_window = ((ts - last_visit) <= after) | ((next_visit - ts) <= before)
    in_window = in_window & ~at_visit

    return (
        bits_where(at_visit, QCFlag.SITE_VISIT)
        | bits_where(in_window, QCFlag.SV_WINDOW)
        | bits_where(df["sonde_employed"] == 0, QCFlag.SONDE_NOT_EMPLOYED)
    )


def flag_spec_range(df: pd.DataFrame, thresholds: ThresholdTables) -> pd.Series:
    """Flag values outside the manufacturer operating range.

    Raises:
        UnresolvableThreshold: If the parameter has no spec entry
    """
    lo, hi = thresholds.spec_range(df["parameter"].iloc[0])
    value = df["mean"]
    outside = value.notna() & ((value < lo) | (value > hi))
    return bits_where(outside, QCFlag.OUTSIDE_SPEC_RANGE)


def flag_seasonal_range(df: pd.DataFrame, thresholds: ThresholdTables) -> pd.Series:
    """Flag values outside the seasonal [p1, p99] range and steep slopes.

    Seasons without an entry are left unflagged.

    Raises:
        UnresolvableThreshold: If the series has no seasonal entries at all
    """
    entries = thresholds.seasonal_for(df["site"].iloc[0], df["parameter"].iloc[0])
    season = df["season"]
    p1 = season.map({s: t.p1 for s, t in entries.items()})
    p99 = season.map({s: t.p99 for s, t in entries.items()})
    bound = season.map({s: t.slope_bound for s, t in entries.items()})

    value = df["mean"]
    valid = value.notna()
    outside = valid & ((value < p1) | (value > p99))
    steep = valid & ((df["slope_ahead"].abs() > bound) | (df["slope_behind"].abs() > bound))

    return bits_where(outside, QCFlag.OUTSIDE_SEASONAL_RANGE) | bits_where(
        steep, QCFlag.SLOPE_VIOLATION
    )


def flag_missing_data(df: pd.DataFrame) -> pd.Series:
    """Flag intervals without a value."""
    return bits_where(df["mean"].isna(), QCFlag.MISSING_DATA)


def flag_do_noise(df: pd.DataFrame, config: QCConfig) -> pd.Series:
    """Flag low or noisy dissolved oxygen readings.

    A reading is interference when it is at or below do_min_value, or when
    the trailing window is too volatile (|rolling_slope| > do_noise_slope or
    rolling_sd > do_noise_sd).
    """
    if df["parameter"].iloc[0] != DISSOLVED_OXYGEN:
        return no_flags(df)

    value = df["mean"]
    noisy = (df["rolling_slope"].abs() > config.do_noise_slope) | (
        df["rolling_sd"] > config.do_noise_sd
    )
    interference = value.notna() & ((value <= config.do_min_value) | noisy)
    return bits_where(interference, QCFlag.DO_INTERFERENCE)


def flag_repeated_values(df: pd.DataFrame) -> pd.Series:
    """Flag values equal to the previous or next non-null value.

    Gaps are skipped, so [5.0, NaN, 5.0] flags both 5.0 readings.
    """
    values = df["mean"].dropna()
    repeated = (values == values.shift(1)) | (values == values.shift(-1))
    return bits_where(repeated.reindex(df.index, fill_value=False), QCFlag.REPEATED_VALUE)


def flag_depth_shift(df: pd.DataFrame, config: QCConfig) -> pd.Series:
    """Flag the interval where a depth series steps after the sonde was touched.

    From depth_shift_cutoff on, every maintenance or site-visit note is checked:
    the last value before its sv window is compared with the first value after
    it, and a step of at least depth_shift_threshold marks the first interval
    after the window. Before the cutoff only technician-reported moves count,
    marking the interval of the note.
    """
    if df["parameter"].iloc[0] != DEPTH:
        return no_flags(df)

    ts = df["timestamp"]
    value = df["mean"]
    cutoff = config.depth_shift_cutoff_ts
    moved = df["sonde_moved_note"] & (ts < cutoff)

    before = pd.Timedelta(minutes=config.sv_window_before_minutes)
    after = pd.Timedelta(minutes=config.sv_window_after_minutes)
    valid = value.notna()

    for note_ts in ts[df["housing_adjusted"] & (ts >= cutoff)]:
        prior = value[valid & (ts < note_ts - before)]
        following = value[valid & (ts > note_ts + after)]
        if prior.empty or following.empty:
            continue
        if abs(following.iloc[0] - prior.iloc[-1]) >= config.depth_shift_threshold:
            moved.loc[following.index[0]] = True

    return bits_where(moved, QCFlag.SONDE_MOVED)


def flag_drift(df: pd.DataFrame, config: QCConfig) -> pd.Series:
    """Flag sustained monotonic trends on optical sensors.

    A trailing window of drift_window_hours drifts when a linear fit explains
    at least drift_r2 of the variance and the fitted change across the window
    is at least drift_magnitude. Every interval covered by a drifting window
    is flagged.
    """
    if df["parameter"].iloc[0] not in OPTICAL_PARAMETERS:
        return no_flags(df)

    window = config.drift_window_intervals
    value = df["mean"]
    slope, r2 = rolling_linear_fit(value, window)
    change = slope.abs() * (window - 1)
    drifting = (r2 >= config.drift_r2) & (change >= config.drift_magnitude)

    covered = spread_to_window(drifting, window)
    return bits_where(covered & value.notna(), QCFlag.DRIFT)


def apply_parameter_rules(
    series: pd.DataFrame,
    thresholds: ThresholdTables,
    config: QCConfig | None = None,
) -> pd.DataFrame:
    """Run every layer-1 rule on one annotated series.

    Args:
        series: Annotated series (output of annotate_series)
        thresholds: Spec and seasonal threshold tables
        config: Run configuration (default QCConfig())

    Returns:
        Copy of the series with flags and sonde_moved_flag updated
    """
    if config is None:
        config = QCConfig()

    df = series.copy()
    if df.empty:
        return df

    label = series_label(df)
    empty = no_flags(df)
    rules = [
        ("field visit", flag_field_visits, (series, config)),
        ("spec range", flag_spec_range, (series, thresholds)),
        ("seasonal range", flag_seasonal_range, (series, thresholds)),
        ("missing data", flag_missing_data, (series,)),
        ("DO noise", flag_do_noise, (series, config)),
        ("repeated value", flag_repeated_values, (series,)),
        ("depth shift", flag_depth_shift, (series, config)),
        ("drift", flag_drift, (series, config)),
    ]

    combined = df["flags"].astype("int64")
    for name, func, args in rules:
        combined = combined | run_isolated("flag", name, label, func, empty, *args)

    df["flags"] = combined
    df["sonde_moved_flag"] = df["sonde_moved_flag"] | has_flag(combined, QCFlag.SONDE_MOVED)
    return df
