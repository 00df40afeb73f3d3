"""Quality control flag definitions using bitmasks.

This module defines the vocabulary for data quality issues. Multiple issues
can be tracked simultaneously using bitwise OR operations, so the flags on an
interval always form an ordered, deduplicated set: bit order is the canonical
order in which labels are written out.

Rules:
- Never delete data here
- Only label problems
- Downstream code decides what to exclude
"""

from __future__ import annotations

from enum import IntFlag

import pandas as pd


class QCFlag(IntFlag):
    """Automated quality flags assigned by the three flagging layers."""

    OK = 0

    # Layer 1: per-series rules
    SITE_VISIT = 1 << 0
    SV_WINDOW = 1 << 1
    SONDE_NOT_EMPLOYED = 1 << 2
    MISSING_DATA = 1 << 3
    OUTSIDE_SPEC_RANGE = 1 << 4
    OUTSIDE_SEASONAL_RANGE = 1 << 5
    SLOPE_VIOLATION = 1 << 6
    DO_INTERFERENCE = 1 << 7
    REPEATED_VALUE = 1 << 8
    SONDE_MOVED = 1 << 9
    DRIFT = 1 << 10

    # Layer 2: site-level rules
    FROZEN = 1 << 11
    POSSIBLE_BURIAL = 1 << 12
    SONDE_UNSUBMERGED = 1 << 13

    # Layer 3: network-level rules
    SUSPECT_DATA = 1 << 14


class MalfunctionFlag(IntFlag):
    """Technician-reported malfunctions applied from the malfunction feed."""

    OK = 0
    REPORTED_BURIAL = 1 << 0
    REPORTED_BIOFOULING = 1 << 1
    REPORTED_DEPTH_CALIBRATION = 1 << 2
    REPORTED_UNSUBMERGED = 1 << 3
    REPORTED_MALFUNCTION = 1 << 4


FLAG_LABELS: dict[QCFlag, str] = {
    QCFlag.SITE_VISIT: "site visit",
    QCFlag.SV_WINDOW: "sv window",
    QCFlag.SONDE_NOT_EMPLOYED: "sonde not employed",
    QCFlag.MISSING_DATA: "missing data",
    QCFlag.OUTSIDE_SPEC_RANGE: "outside of sensor specification range",
    QCFlag.OUTSIDE_SEASONAL_RANGE: "outside of seasonal range",
    QCFlag.SLOPE_VIOLATION: "slope violation",
    QCFlag.DO_INTERFERENCE: "do interference",
    QCFlag.REPEATED_VALUE: "repeated value",
    QCFlag.SONDE_MOVED: "sonde moved",
    QCFlag.DRIFT: "drift",
    QCFlag.FROZEN: "frozen",
    QCFlag.POSSIBLE_BURIAL: "possible burial",
    QCFlag.SONDE_UNSUBMERGED: "sonde unsubmerged",
    QCFlag.SUSPECT_DATA: "suspect data",
}

MALFUNCTION_LABELS: dict[MalfunctionFlag, str] = {
    MalfunctionFlag.REPORTED_BURIAL: "reported sonde burial",
    MalfunctionFlag.REPORTED_BIOFOULING: "reported sensor biofouling",
    MalfunctionFlag.REPORTED_DEPTH_CALIBRATION: "reported depth calibration malfunction",
    MalfunctionFlag.REPORTED_UNSUBMERGED: "reported sonde unsubmerged",
    MalfunctionFlag.REPORTED_MALFUNCTION: "reported sensor malfunction",
}

# malfunction_type values in the malfunction feed
MALFUNCTION_TYPES: dict[str, MalfunctionFlag] = {
    "burial": MalfunctionFlag.REPORTED_BURIAL,
    "biofouling": MalfunctionFlag.REPORTED_BIOFOULING,
    "depth_calibration": MalfunctionFlag.REPORTED_DEPTH_CALIBRATION,
    "unsubmerged": MalfunctionFlag.REPORTED_UNSUBMERGED,
    "general": MalfunctionFlag.REPORTED_MALFUNCTION,
}

FLAG_SEPARATOR = "; "


def has_flag(flags: pd.Series, flag: int) -> pd.Series:
    """Boolean mask of rows carrying ``flag``."""
    return (flags.astype("int64") & int(flag)) != 0


def add_flag(df: pd.DataFrame, mask: pd.Series, flag: int, col: str = "flags") -> None:
    """OR ``flag`` into ``df[col]`` where ``mask`` holds (in place)."""
    mask = mask.fillna(False).astype(bool)
    df.loc[mask, col] = df.loc[mask, col] | int(flag)


def remove_flag(df: pd.DataFrame, mask: pd.Series, flag: int, col: str = "flags") -> None:
    """Clear ``flag`` from ``df[col]`` where ``mask`` holds (in place)."""
    mask = mask.fillna(False).astype(bool)
    df.loc[mask, col] = df.loc[mask, col] & ~int(flag)


def null_labels(labels: pd.Series) -> pd.Series:
    """Label column as object dtype with None for every missing label."""
    labels = labels.astype(object)
    return labels.where(labels.notna(), None)


def _collapse(value: int, labels: dict) -> str | None:
    parts = [label for flag, label in labels.items() if value & int(flag)]
    if not parts:
        return None
    return FLAG_SEPARATOR.join(parts)


def flags_to_string(value: int) -> str | None:
    """Collapse a QCFlag bitmask into its label string (None when empty)."""
    return _collapse(int(value), FLAG_LABELS)


def malfunction_to_string(value: int) -> str | None:
    """Collapse a MalfunctionFlag bitmask into its label string (None when empty)."""
    return _collapse(int(value), MALFUNCTION_LABELS)


def string_to_flags(value: str | None) -> int:
    """Parse an ``auto_flag`` string back into a QCFlag bitmask.

    Raises:
        ValueError: If the string contains an unknown label
    """
    if value is None or (isinstance(value, float) and pd.isna(value)) or value == "":
        return int(QCFlag.OK)

    by_label = {label: flag for flag, label in FLAG_LABELS.items()}
    result = 0
    for part in str(value).split(FLAG_SEPARATOR.strip()):
        label = part.strip()
        if not label:
            continue
        if label not in by_label:
            raise ValueError(f"Unknown flag label: {label!r}")
        result |= int(by_label[label])
    return result
