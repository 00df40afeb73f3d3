"""Layer 3: cross-site checks over the whole network, then output projection.

Runs after every site finished layer 2. Steps, in order:
1. network check: a tag shared by enough active sites at one timestamp is a
   real synchronized event, so it is cleared at every site
2. suspect data: unflagged intervals in heavily flagged windows, and
   intervals in mostly-missing windows
3. isolated suspect pruning: suspect data without a flagged neighbor is dropped
4. projection: canonical output columns with collapsed flag strings
"""

from __future__ import annotations

from typing import Mapping

import pandas as pd

from riverqc.config import QCConfig
from riverqc.flag.common import bits_where, run_isolated, series_label, spread_to_window
from riverqc.schemas.interval import OPTIONAL_OUTPUT_FIELDS, OUTPUT_FIELDS, OUTPUT_KEY
from riverqc.schemas.qc_flags import (
    QCFlag,
    flags_to_string,
    has_flag,
    malfunction_to_string,
    null_labels,
    remove_flag,
)

SeriesKey = tuple[str, str]


def network_event_index(network: pd.DataFrame, flag: int, config: QCConfig) -> pd.MultiIndex:
    """(parameter, timestamp_key) pairs where ``flag`` is a network-wide event.

    Active sites are those with a value for the parameter at the key. The
    flag is an event when it is present at no fewer than network_fraction of
    the active sites and at least network_min_sites sites are active.
    """
    active = network["mean"].notna()
    tagged = active & has_flag(network["flags"], flag)
    counts = (
        pd.DataFrame(
            {
                "parameter": network["parameter"],
                "timestamp_key": network["timestamp_key"],
                "active": active,
                "tagged": tagged,
            }
        )
        .groupby(["parameter", "timestamp_key"])[["active", "tagged"]]
        .sum()
    )
    counts = counts[counts["active"] >= config.network_min_sites]
    events = counts[counts["tagged"] >= config.network_fraction * counts["active"]]
    return events.index


def apply_network_check(
    series_map: Mapping[SeriesKey, pd.DataFrame],
    config: QCConfig,
) -> dict[SeriesKey, pd.DataFrame]:
    """Clear network-wide tags from every site.

    Each tag in network_tags is evaluated on the layer-2 flags, so clearing
    one tag never changes the outcome for another.
    """
    frames = [df for df in series_map.values() if not df.empty]
    if not frames:
        return {key: df.copy() for key, df in series_map.items()}
    network = pd.concat(frames, ignore_index=True)

    events = {}
    for name in config.network_tags:
        flag = int(QCFlag[name])
        events[flag] = run_isolated(
            "network",
            f"network check ({name})",
            "network",
            network_event_index,
            pd.MultiIndex.from_tuples([], names=["parameter", "timestamp_key"]),
            network,
            flag,
            config,
        )

    result = {}
    for key, series in series_map.items():
        df = series.copy()
        if df.empty:
            result[key] = df
            continue
        row_index = pd.MultiIndex.from_frame(df[["parameter", "timestamp_key"]])
        df["flags"] = df["flags"].astype("int64")
        for flag, event_index in events.items():
            remove_flag(df, pd.Series(row_index.isin(event_index), index=df.index), flag)
        result[key] = df
    return result


def suspect_bits(df: pd.DataFrame, config: QCConfig) -> pd.Series:
    """Suspect data bits for one series.

    Windows are suspect_window_hours long and only complete windows count.
    Unflagged intervals inside a window where at least
    suspect_flagged_fraction of intervals carry a flag become suspect;
    any interval inside a window with at least suspect_missing_fraction
    missing values becomes suspect.
    """
    window = config.suspect_window_intervals
    flagged = (df["flags"].astype("int64") & ~int(QCFlag.SUSPECT_DATA)) != 0
    missing = df["mean"].isna()

    flagged_share = flagged.astype("float64").rolling(window, min_periods=window).mean()
    missing_share = missing.astype("float64").rolling(window, min_periods=window).mean()

    busy = spread_to_window(flagged_share >= config.suspect_flagged_fraction, window)
    empty = spread_to_window(missing_share >= config.suspect_missing_fraction, window)

    return bits_where((busy & ~flagged) | empty, QCFlag.SUSPECT_DATA)


def isolated_suspect(df: pd.DataFrame) -> pd.Series:
    """Rows whose suspect tag has no flagged neighbor on either side.

    Any flag on a neighbor counts, suspect data included; a series edge
    counts as an unflagged neighbor.
    """
    flags = df["flags"].astype("int64")
    flagged = flags != 0
    prev_flagged = flagged.shift(1, fill_value=False)
    next_flagged = flagged.shift(-1, fill_value=False)
    return has_flag(flags, QCFlag.SUSPECT_DATA) & ~prev_flagged & ~next_flagged


def apply_suspect_rules(
    series_map: Mapping[SeriesKey, pd.DataFrame],
    config: QCConfig,
) -> dict[SeriesKey, pd.DataFrame]:
    """Mark suspect data, then prune isolated suspect tags, per series."""
    result = {}
    for key, series in series_map.items():
        df = series.copy()
        if df.empty:
            result[key] = df
            continue
        label = series_label(df)
        empty = pd.Series(0, index=df.index, dtype="int64")

        df["flags"] = df["flags"].astype("int64") | run_isolated(
            "network", "suspect", label, suspect_bits, empty, df, config
        )
        prune = run_isolated(
            "network",
            "isolated suspect",
            label,
            isolated_suspect,
            pd.Series(False, index=df.index),
            df,
        )
        remove_flag(df, prune, QCFlag.SUSPECT_DATA)
        result[key] = df
    return result


def apply_network_rules(
    series_map: Mapping[SeriesKey, pd.DataFrame],
    config: QCConfig | None = None,
) -> dict[SeriesKey, pd.DataFrame]:
    """Run layer 3 over every series in the network.

    Args:
        series_map: (site, parameter) -> layer-2 series, for all sites
        config: Run configuration (default QCConfig())

    Returns:
        (site, parameter) -> final flagged series
    """
    if config is None:
        config = QCConfig()
    checked = apply_network_check(series_map, config)
    return apply_suspect_rules(checked, config)


def project_output(series_map: Mapping[SeriesKey, pd.DataFrame]) -> pd.DataFrame:
    """Reduce final series to the canonical output record set.

    flags collapse into auto_flag and malfunction bits into malfunction_flag,
    both None when empty. season and last_site_visit are kept when present.
    """
    frames = [df for df in series_map.values() if not df.empty]
    if not frames:
        return pd.DataFrame(columns=OUTPUT_FIELDS)

    df = pd.concat(frames, ignore_index=True)
    df["auto_flag"] = null_labels(df["flags"].map(flags_to_string))
    df["malfunction_flag"] = null_labels(df["malfunction_flag"].map(malfunction_to_string))
    df["sonde_moved_flag"] = df["sonde_moved_flag"].astype(bool)
    df["historical"] = False

    optional = [col for col in OPTIONAL_OUTPUT_FIELDS if col in df.columns]
    df = df[OUTPUT_FIELDS + optional]
    return df.sort_values(OUTPUT_KEY).reset_index(drop=True)


def print_flag_stats(output: pd.DataFrame) -> None:
    """Print per-flag counts for a projected output."""
    print("[network] Flagging summary:")
    print(f"  Total intervals: {len(output)}")
    flagged = output["auto_flag"].notna()
    print(f"  Intervals with flags: {int(flagged.sum())}")

    labels = output.loc[flagged, "auto_flag"].str.split("; ").explode()
    for label, count in labels.value_counts().sort_index().items():
        print(f"    {label}: {count}")

    reported = int(output["malfunction_flag"].notna().sum())
    if reported:
        print(f"  Intervals with reported malfunctions: {reported}")
