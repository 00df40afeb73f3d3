"""Field note and malfunction record schemas.

Field notes come from technicians and are loosely structured. Unlike the
measurement feed, a bad note must never stop a run: coercion drops the rows
it cannot use and reports how many were dropped.
"""

from __future__ import annotations

from typing import TypedDict

import pandas as pd

from riverqc.schemas.qc_flags import MALFUNCTION_TYPES

_TS_DTYPE = "datetime64[ns, UTC]"

NOTE_TYPES = ("site_visit", "sonde_employed_state", "maintenance", "malfunction_report")

# Spellings seen in field feeds, after token normalization
NOTE_TYPE_ALIASES = {"malfunction_report_subtype": "malfunction_report"}

_TRUE_TOKENS = {"true", "t", "yes", "y", "1", "1.0"}


class FieldNote(TypedDict):
    """One technician note."""

    site: str
    timestamp: pd.Timestamp  # UTC
    note_type: str  # One of NOTE_TYPES
    last_site_visit: pd.Timestamp  # UTC, may be NaT
    sonde_employed: float  # 1 employed, 0 pulled, NaN if not stated
    sonde_moved: bool  # Technician reports the housing was moved


class MalfunctionRecord(TypedDict):
    """A reported malfunction window."""

    site: str
    parameter: str | None  # None applies to every parameter at the site
    start_DT: pd.Timestamp  # UTC
    end_DT: pd.Timestamp  # UTC, NaT while ongoing
    malfunction_type: str  # Key of MALFUNCTION_TYPES


FIELD_NOTE_FIELDS = [
    "site",
    "timestamp",
    "note_type",
    "last_site_visit",
    "sonde_employed",
    "sonde_moved",
]

MALFUNCTION_FIELDS = ["site", "parameter", "start_DT", "end_DT", "malfunction_type"]


def empty_field_notes() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "site": pd.Series(dtype="object"),
            "timestamp": pd.Series(dtype=_TS_DTYPE),
            "note_type": pd.Series(dtype="object"),
            "last_site_visit": pd.Series(dtype=_TS_DTYPE),
            "sonde_employed": pd.Series(dtype="float64"),
            "sonde_moved": pd.Series(dtype="bool"),
        }
    )


def empty_malfunctions() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "site": pd.Series(dtype="object"),
            "parameter": pd.Series(dtype="object"),
            "start_DT": pd.Series(dtype=_TS_DTYPE),
            "end_DT": pd.Series(dtype=_TS_DTYPE),
            "malfunction_type": pd.Series(dtype="object"),
        }
    )


def _to_utc(values: pd.Series) -> pd.Series:
    return pd.to_datetime(values, utc=True, errors="coerce")


def normalize_type(values: pd.Series) -> pd.Series:
    """Lowercase enum tokens and spell them with underscores.

    "Site-Visit", "site visit" and "site_visit" all become "site_visit".
    """
    present = values.notna()
    tokens = values.astype(object).where(present, "").astype(str).str.strip().str.lower()
    return tokens.str.replace(r"[\s-]+", "_", regex=True).where(present, None)


def _to_bool(values: pd.Series) -> pd.Series:
    """Parse loosely typed yes/no values; anything unrecognized is False."""
    values = values.astype(object)
    tokens = values.where(values.notna(), "").astype(str).str.strip().str.lower()
    return tokens.isin(_TRUE_TOKENS)


def coerce_field_notes(df: pd.DataFrame | None, verbose: bool = True) -> pd.DataFrame:
    """Coerce a field note feed into FIELD_NOTE_FIELDS, dropping unusable rows.

    Rows without a site, a parseable timestamp, or a known note_type are
    dropped. note_type is matched case-insensitively with hyphens, spaces
    and underscores treated alike. Optional columns are filled with neutral
    defaults.

    Args:
        df: Field notes as delivered (may be None)
        verbose: If True, print how many rows were dropped

    Returns:
        DataFrame with FIELD_NOTE_FIELDS columns
    """
    if df is None or df.empty or "site" not in df.columns or "timestamp" not in df.columns:
        return empty_field_notes()

    notes = df.copy()
    notes["timestamp"] = _to_utc(notes["timestamp"])
    if "note_type" in notes.columns:
        notes["note_type"] = normalize_type(notes["note_type"]).replace(NOTE_TYPE_ALIASES)
    else:
        notes["note_type"] = None
    if "last_site_visit" in notes.columns:
        notes["last_site_visit"] = _to_utc(notes["last_site_visit"])
    else:
        notes["last_site_visit"] = pd.Series(pd.NaT, index=notes.index, dtype=_TS_DTYPE)
    if "sonde_employed" in notes.columns:
        notes["sonde_employed"] = pd.to_numeric(notes["sonde_employed"], errors="coerce")
    else:
        notes["sonde_employed"] = float("nan")
    if "sonde_moved" in notes.columns:
        notes["sonde_moved"] = _to_bool(notes["sonde_moved"])
    else:
        notes["sonde_moved"] = False

    usable = (
        notes["site"].notna()
        & notes["timestamp"].notna()
        & notes["note_type"].isin(NOTE_TYPES)
    )
    dropped = int((~usable).sum())
    if dropped and verbose:
        print(f"[notes] Dropped {dropped} malformed field note rows")

    notes = notes.loc[usable, FIELD_NOTE_FIELDS]
    return notes.sort_values(["site", "timestamp"]).reset_index(drop=True)


def coerce_malfunctions(df: pd.DataFrame | None, verbose: bool = True) -> pd.DataFrame:
    """Coerce a malfunction feed into MALFUNCTION_FIELDS, dropping unusable rows.

    Rows without a site, a parseable start_DT, or a known malfunction_type
    are dropped; malfunction_type is normalized like note_type. A missing end_DT means the malfunction is still ongoing.

    Args:
        df: Malfunction records as delivered (may be None)
        verbose: If True, print how many rows were dropped

    Returns:
        DataFrame with MALFUNCTION_FIELDS columns
    """
    if df is None or df.empty or "site" not in df.columns or "start_DT" not in df.columns:
        return empty_malfunctions()

    records = df.copy()
    records["start_DT"] = _to_utc(records["start_DT"])
    if "end_DT" in records.columns:
        records["end_DT"] = _to_utc(records["end_DT"])
    else:
        records["end_DT"] = pd.Series(pd.NaT, index=records.index, dtype=_TS_DTYPE)
    if "parameter" not in records.columns:
        records["parameter"] = None
    if "malfunction_type" not in records.columns:
        records["malfunction_type"] = "general"
    records["malfunction_type"] = normalize_type(records["malfunction_type"]).fillna("general")

    usable = (
        records["site"].notna()
        & records["start_DT"].notna()
        & records["malfunction_type"].isin(list(MALFUNCTION_TYPES))
    )
    dropped = int((~usable).sum())
    if dropped and verbose:
        print(f"[notes] Dropped {dropped} malformed malfunction rows")

    records = records.loc[usable, MALFUNCTION_FIELDS]
    return records.sort_values(["site", "start_DT"]).reset_index(drop=True)
