"""Load field note and malfunction feeds.

These feeds are context, not data. An unreadable file is reported and
treated as an empty feed so the run carries on without malfunction context.
"""

from __future__ import annotations

from pathlib import Path

import pandas as pd

from riverqc.schemas.field_notes import (
    coerce_field_notes,
    coerce_malfunctions,
    empty_field_notes,
    empty_malfunctions,
)


def _read_table(path: Path) -> pd.DataFrame:
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    return pd.read_csv(path)


def load_field_notes(path: Path | str | None, verbose: bool = True) -> pd.DataFrame:
    """Read and coerce a field note feed.

    Args:
        path: CSV or parquet file; None means no feed
        verbose: If True, print load statistics

    Returns:
        Field notes with FIELD_NOTE_FIELDS columns (empty on failure)
    """
    if path is None:
        return empty_field_notes()

    path = Path(path)
    try:
        raw = _read_table(path)
    except (OSError, ValueError) as e:
        print(f"[notes] Could not read field notes {path}: {e}")
        return empty_field_notes()

    notes = coerce_field_notes(raw, verbose=verbose)
    if verbose:
        print(f"[notes] Loaded {len(notes)} field notes from {path}")
    return notes


def load_malfunctions(path: Path | str | None, verbose: bool = True) -> pd.DataFrame:
    """Read and coerce a malfunction feed.

    Args:
        path: CSV or parquet file; None means no feed
        verbose: If True, print load statistics

    Returns:
        Malfunction records with MALFUNCTION_FIELDS columns (empty on failure)
    """
    if path is None:
        return empty_malfunctions()

    path = Path(path)
    try:
        raw = _read_table(path)
    except (OSError, ValueError) as e:
        print(f"[notes] Could not read malfunction records {path}: {e}")
        return empty_malfunctions()

    records = coerce_malfunctions(raw, verbose=verbose)
    if verbose:
        print(f"[notes] Loaded {len(records)} malfunction records from {path}")
    return records
