"""Layer 2: cross-parameter checks within one site.

All of a site's series are joined on timestamp_key. Every check reads the
layer-1 output of the site and produces a set of keys (or per-row bits);
the engine then applies additions and removals in one pass, so no check
sees another check's result.

Checks:
- frozen: Temperature <= 0 marks every parameter at that key
- intersensor: slope violations explained by a concurrent Temperature or
  Depth slope violation are removed from the other parameters
- burial: >= burial_hours of continuous DO interference marks every parameter
- unsubmerged: Depth <= 0 marks every parameter at that key
- malfunctions: reported malfunction windows set malfunction_flag
"""

from __future__ import annotations

from typing import Mapping

import pandas as pd

from riverqc.config import QCConfig
from riverqc.flag.common import run_isolated
from riverqc.schemas.field_notes import empty_malfunctions
from riverqc.schemas.interval import DEPTH, DISSOLVED_OXYGEN, TEMPERATURE
from riverqc.schemas.qc_flags import MALFUNCTION_TYPES, QCFlag, add_flag, has_flag, remove_flag

KeySet = frozenset


def site_frame(site_series: Mapping[str, pd.DataFrame], value: str) -> pd.DataFrame:
    """Wide view of one column: rows are timestamp_key, columns are parameters."""
    columns = {
        parameter: df.set_index("timestamp_key")[value]
        for parameter, df in site_series.items()
        if not df.empty
    }
    if not columns:
        return pd.DataFrame()
    return pd.DataFrame(columns).sort_index()


def frozen_keys(means: pd.DataFrame) -> KeySet:
    """Keys where the site's water temperature is at or below zero."""
    if TEMPERATURE not in means.columns:
        return KeySet()
    temp = means[TEMPERATURE]
    return KeySet(temp.index[temp <= 0])


def unsubmerged_keys(means: pd.DataFrame) -> KeySet:
    """Keys where relative depth is at or below zero."""
    if DEPTH not in means.columns:
        return KeySet()
    depth = means[DEPTH]
    return KeySet(depth.index[depth <= 0])


def intersensor_keys(flags: pd.DataFrame) -> KeySet:
    """Keys where Temperature or Depth also shows a slope violation."""
    reference = [p for p in (TEMPERATURE, DEPTH) if p in flags.columns]
    if not reference:
        return KeySet()
    explained = pd.Series(False, index=flags.index)
    for parameter in reference:
        explained |= has_flag(flags[parameter].fillna(0), QCFlag.SLOPE_VIOLATION)
    return KeySet(flags.index[explained])


def burial_keys(site_series: Mapping[str, pd.DataFrame], config: QCConfig) -> KeySet:
    """Keys inside runs of DO interference lasting at least burial_hours.

    Series rows are consecutive intervals, so a run of rows is a run in time.
    """
    do = site_series.get(DISSOLVED_OXYGEN)
    if do is None or do.empty:
        return KeySet()

    interference = has_flag(do["flags"], QCFlag.DO_INTERFERENCE)
    run_id = (interference != interference.shift()).cumsum()
    run_length = interference.groupby(run_id).transform("size")
    buried = interference & (run_length >= config.burial_intervals)
    return KeySet(do.loc[buried, "timestamp_key"])


def malfunction_bits(df: pd.DataFrame, malfunctions: pd.DataFrame) -> pd.Series:
    """MalfunctionFlag bits for one series from the site's malfunction records.

    A record applies to the series when its parameter is empty or matches,
    and to every interval within [start_DT, end_DT]; a missing end_DT means
    the malfunction is still ongoing.
    """
    bits = pd.Series(0, index=df.index, dtype="int64")
    if malfunctions.empty or df.empty:
        return bits

    parameter = df["parameter"].iloc[0]
    ts = df["timestamp"]
    for record in malfunctions.itertuples(index=False):
        if pd.notna(record.parameter) and record.parameter != parameter:
            continue
        overlap = ts >= record.start_DT
        if pd.notna(record.end_DT):
            overlap &= ts <= record.end_DT
        bits[overlap] |= int(MALFUNCTION_TYPES[record.malfunction_type])
    return bits


def apply_site_rules(
    site_series: Mapping[str, pd.DataFrame],
    malfunctions: pd.DataFrame | None = None,
    config: QCConfig | None = None,
) -> dict[str, pd.DataFrame]:
    """Run every layer-2 check for one site.

    Args:
        site_series: parameter -> layer-1 series, all from one site
        malfunctions: Malfunction records for this site (may be None)
        config: Run configuration (default QCConfig())

    Returns:
        parameter -> copy of the series with flags and malfunction_flag updated
    """
    if config is None:
        config = QCConfig()
    if malfunctions is None:
        malfunctions = empty_malfunctions()

    if not site_series:
        return {}

    site = next(iter(site_series.values()))["site"].iloc[0]
    means = site_frame(site_series, "mean")
    flags = site_frame(site_series, "flags")

    none = KeySet()
    frozen = run_isolated("site", "frozen", site, frozen_keys, none, means)
    unsubmerged = run_isolated("site", "unsubmerged", site, unsubmerged_keys, none, means)
    explained = run_isolated("site", "intersensor", site, intersensor_keys, none, flags)
    buried = run_isolated("site", "burial", site, burial_keys, none, site_series, config)

    result = {}
    for parameter, series in site_series.items():
        df = series.copy()
        key = df["timestamp_key"]
        df["flags"] = df["flags"].astype("int64")

        if parameter not in (TEMPERATURE, DEPTH):
            remove_flag(df, key.isin(explained), QCFlag.SLOPE_VIOLATION)
        add_flag(df, key.isin(frozen), QCFlag.FROZEN)
        add_flag(df, key.isin(buried), QCFlag.POSSIBLE_BURIAL)
        add_flag(df, key.isin(unsubmerged), QCFlag.SONDE_UNSUBMERGED)

        reported = run_isolated(
            "site",
            "malfunctions",
            f"{site}/{parameter}",
            malfunction_bits,
            pd.Series(0, index=df.index, dtype="int64"),
            df,
            malfunctions,
        )
        df["malfunction_flag"] = df["malfunction_flag"].astype("int64") | reported
        result[parameter] = df

    return result
