"""Normalize raw sensor readings into fixed-cadence series.

This stage:
- Validates input schema (early fail on malformed data)
- Removes exact duplicate readings
- Sorts readings (or rejects unsorted input in strict mode)
- Splits readings into one group per (site, parameter)
- Averages readings inside each cadence interval, recording n_obs and spread
- Pads every series to full cadence with null-value rows

Design principles:
- Normalizing != flagging: no quality judgement happens here
- Gaps are rows, never omissions
- Idempotent: the same readings always produce the same series
"""

from __future__ import annotations

import pandas as pd

from riverqc.errors import NoDataAcquired, OutOfOrderTimestamp
from riverqc.schemas.interval import (
    INTERVAL_FIELDS,
    RAW_FIELDS,
    make_timestamp_key,
    validate_raw_measurements,
    validate_series,
)

SeriesKey = tuple[str, str]


def dedupe_raw(df: pd.DataFrame) -> pd.DataFrame:
    """Remove exact duplicate readings, keeping the first occurrence."""
    if df.empty:
        return df
    return df.drop_duplicates(subset=RAW_FIELDS, keep="first").reset_index(drop=True)


def order_raw(df: pd.DataFrame, strict: bool = False) -> pd.DataFrame:
    """Sort readings by site, parameter and timestamp.

    Args:
        df: Raw readings
        strict: If True, unsorted input raises instead of being re-sorted

    Raises:
        OutOfOrderTimestamp: If strict and any series arrives out of order
    """
    if df.empty:
        return df

    if strict:
        in_order = df.groupby(["site", "parameter"], sort=False)["timestamp"].apply(
            lambda ts: ts.is_monotonic_increasing
        )
        if not in_order.all():
            bad = [f"{site}/{parameter}" for site, parameter in in_order[~in_order].index]
            raise OutOfOrderTimestamp(f"Unsorted readings for: {bad}")

    return df.sort_values(["site", "parameter", "timestamp"], kind="mergesort").reset_index(
        drop=True
    )


def split_raw_by_series(
    raw_df: pd.DataFrame,
    strict_order: bool = False,
    verbose: bool = True,
) -> dict[SeriesKey, pd.DataFrame]:
    """Validate, dedupe and order raw readings, then split them per series.

    Raises:
        NoDataAcquired: If there are no usable readings at all
        OutOfOrderTimestamp: If strict_order and readings are unsorted
        ValueError: If the feed is structurally malformed
    """
    validate_raw_measurements(raw_df)

    df = raw_df[RAW_FIELDS]
    usable = df["site"].notna() & df["parameter"].notna() & df["timestamp"].notna()
    unusable = int((~usable).sum())
    df = df[usable]

    if df.empty:
        raise NoDataAcquired("Raw measurement feed is empty; nothing to flag")

    original_count = len(df)
    df = dedupe_raw(df)
    df = order_raw(df, strict=strict_order)

    if verbose:
        print(
            f"[normalize] Raw readings: {original_count} -> {len(df)} "
            f"({original_count - len(df)} duplicates removed, {unusable} unusable rows)"
        )

    return {
        (site, parameter): group.reset_index(drop=True)
        for (site, parameter), group in df.groupby(["site", "parameter"], sort=True)
    }


def aggregate_intervals(raw: pd.DataFrame, cadence: pd.Timedelta) -> pd.DataFrame:
    """Average the readings of one series inside each cadence interval.

    Returns:
        DataFrame indexed by interval start with mean, n_obs and spread
    """
    df = raw.copy()
    df["timestamp"] = df["timestamp"].dt.floor(cadence)

    grouped = df.groupby("timestamp")["value"]
    return pd.DataFrame(
        {
            "mean": grouped.mean(),
            "n_obs": grouped.count(),
            "spread": grouped.max() - grouped.min(),
        }
    )


def pad_to_cadence(agg: pd.DataFrame, cadence: pd.Timedelta) -> pd.DataFrame:
    """Reindex an aggregated series so that every interval has a row."""
    if agg.empty:
        return agg
    full_index = pd.date_range(agg.index.min(), agg.index.max(), freq=cadence, name="timestamp")
    padded = agg.reindex(full_index)
    padded["n_obs"] = padded["n_obs"].fillna(0).astype("int64")
    return padded


def normalize_series(
    raw: pd.DataFrame,
    cadence: pd.Timedelta = pd.Timedelta(minutes=15),
) -> pd.DataFrame:
    """Turn the raw readings of one (site, parameter) into a gap-free series.

    Args:
        raw: Readings for exactly one site and parameter
        cadence: Interval width (default 15 minutes)

    Returns:
        DataFrame with INTERVAL_FIELDS columns, one row per interval
    """
    site = raw["site"].iloc[0]
    parameter = raw["parameter"].iloc[0]
    units = raw["units"].dropna()
    units = units.iloc[0] if not units.empty else None

    series = pad_to_cadence(aggregate_intervals(raw, cadence), cadence).reset_index()
    series["timestamp_key"] = make_timestamp_key(series["timestamp"])
    series["site"] = site
    series["parameter"] = parameter
    series["units"] = units
    series["flags"] = 0
    series["malfunction_flag"] = 0
    series["sonde_moved_flag"] = False
    series["historical"] = False

    series = series[INTERVAL_FIELDS]
    validate_series(series, cadence)
    return series


def normalize_measurements(
    raw_df: pd.DataFrame,
    cadence: pd.Timedelta = pd.Timedelta(minutes=15),
    strict_order: bool = False,
    verbose: bool = True,
) -> dict[SeriesKey, pd.DataFrame]:
    """Normalize a whole raw feed into one series per (site, parameter).

    Raises:
        NoDataAcquired: If the feed holds no usable readings
    """
    groups = split_raw_by_series(raw_df, strict_order=strict_order, verbose=verbose)
    series_map = {key: normalize_series(raw, cadence) for key, raw in groups.items()}
    if verbose:
        print_normalize_stats(series_map)
    return series_map


def print_normalize_stats(series_map: dict[SeriesKey, pd.DataFrame]) -> None:
    """Print a per-run summary of the normalized series."""
    n_rows = sum(len(s) for s in series_map.values())
    n_gaps = sum(int(s["mean"].isna().sum()) for s in series_map.values())
    sites = sorted({site for site, _ in series_map})
    print(f"[normalize] Series: {len(series_map)} across {len(sites)} sites")
    print(f"  Intervals: {n_rows} ({n_gaps} without data)")
