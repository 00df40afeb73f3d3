"""Reconcile a newly flagged batch with the committed historical record.

Merge contract, keyed on (site, parameter, timestamp):
- key in both: the new batch row wins entirely (value, flags, metadata)
- key only in history: kept unchanged
- key only in the new batch: appended
- every merged row has historical = True

Precedence is decided by source, never by input row order, so the merge is
deterministic however either side is sorted.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from riverqc.errors import ReconciliationConflict
from riverqc.schemas.interval import OUTPUT_FIELDS, OUTPUT_KEY, validate_output
from riverqc.schemas.qc_flags import null_labels

_SOURCE_COL = "_merge_source"


@dataclass
class MergeStats:
    """Row accounting for one merge.

    Attributes:
        kept: History-only rows carried over unchanged
        replaced: Keys present on both sides (new batch won)
        appended: New-only rows
    """

    kept: int
    replaced: int
    appended: int

    @property
    def total(self) -> int:
        return self.kept + self.replaced + self.appended


def _keys(df: pd.DataFrame) -> pd.MultiIndex:
    return pd.MultiIndex.from_frame(df[OUTPUT_KEY])


def compute_merge_stats(new: pd.DataFrame, history: pd.DataFrame | None) -> MergeStats:
    """Count kept, replaced and appended rows without merging."""
    if history is None or history.empty:
        return MergeStats(kept=0, replaced=0, appended=len(new))
    if new.empty:
        return MergeStats(kept=len(history), replaced=0, appended=0)
    overlap = int(_keys(new).isin(_keys(history)).sum())
    return MergeStats(
        kept=len(history) - overlap,
        replaced=overlap,
        appended=len(new) - overlap,
    )


def merge_historical(
    new: pd.DataFrame,
    history: pd.DataFrame | None = None,
    raise_on_conflict: bool = False,
    verbose: bool = True,
) -> pd.DataFrame:
    """Merge the final flagged batch into the historical store.

    Args:
        new: Projected output of the current run
        history: Previously committed store (None or empty on the first run)
        raise_on_conflict: If True, overlapping keys raise instead of resolving
        verbose: If True, print merge statistics

    Returns:
        The full reconciled store, sorted by site, parameter, timestamp

    Raises:
        ValueError: If either side fails output validation
        ReconciliationConflict: If raise_on_conflict and keys overlap
    """
    validate_output(new)
    if history is not None:
        validate_output(history)

    stats = compute_merge_stats(new, history)
    if raise_on_conflict and stats.replaced:
        raise ReconciliationConflict(
            f"{stats.replaced} keys present in both the new batch and history"
        )

    frames = []
    if history is not None and not history.empty:
        frames.append(history.assign(**{_SOURCE_COL: 0}))
    if not new.empty:
        frames.append(new.assign(**{_SOURCE_COL: 1}))

    if not frames:
        return pd.DataFrame(columns=OUTPUT_FIELDS)

    merged = pd.concat(frames, ignore_index=True)
    merged = merged.sort_values(OUTPUT_KEY + [_SOURCE_COL], kind="mergesort")
    merged = merged.drop_duplicates(subset=OUTPUT_KEY, keep="last")
    merged = merged.drop(columns=_SOURCE_COL).reset_index(drop=True)
    merged["historical"] = True
    for col in ("auto_flag", "malfunction_flag"):
        merged[col] = null_labels(merged[col])

    if verbose:
        print(
            f"[merge] {stats.total} rows: {stats.kept} kept, "
            f"{stats.replaced} replaced, {stats.appended} appended"
        )

    return merged


def recent_view(
    store: pd.DataFrame,
    days: int = 45,
    now: pd.Timestamp | None = None,
) -> pd.DataFrame:
    """Rows of the store within the last ``days`` days.

    Args:
        store: Reconciled store
        days: Length of the view
        now: Reference time (default: the latest timestamp in the store)

    Returns:
        Filtered copy of the store
    """
    if store.empty:
        return store.copy()
    if now is None:
        now = store["timestamp"].max()
    cutoff = now - pd.Timedelta(days=days)
    return store[store["timestamp"] >= cutoff].reset_index(drop=True)


def read_store(path: Path | str) -> pd.DataFrame | None:
    """Read a committed store, or None when none exists yet."""
    path = Path(path)
    if not path.exists():
        return None
    return pd.read_parquet(path)


def write_store(store: pd.DataFrame, output_path: Path | str) -> Path:
    """Validate and write a store to parquet.

    Raises:
        ValueError: If the store fails output validation
    """
    output_path = Path(output_path)
    validate_output(store)

    # Atomic write
    output_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = output_path.with_suffix(".parquet.tmp")
    store.to_parquet(tmp_path, index=False)
    tmp_path.rename(output_path)

    print(f"[merge] wrote {len(store)} rows to {output_path}")
    return output_path
