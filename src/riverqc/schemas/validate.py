"""Row-level checks for series, output records and threshold tables.

Every check raises ValueError naming the dataset, the rule that failed, how
many rows fail it and the first few failing indices.
"""

from __future__ import annotations

from typing import Any, Iterable

import pandas as pd

_UTC_NAMES = {"UTC", "TIMEZONE.UTC", "PYTZ.UTC", "ZONEINFO.ZONEINFO('UTC')"}


def _format_error(
    dataset: str | None,
    rule: str,
    detail: str,
    failing_indices: list[Any] | None = None,
    count: int | None = None,
) -> str:
    prefix = f"[{dataset}]" if dataset else ""
    message = f"{prefix}{rule}: {detail}"
    if count is not None:
        message += f" ({count} rows)"
    if failing_indices:
        message += f" | sample indices: {failing_indices[:5]}"
    return message


def _fail_rows(dataset: str | None, rule: str, detail: str, mask: pd.Series) -> None:
    """Raise for the rows where ``mask`` holds, if any."""
    count = int(mask.sum())
    if count:
        raise ValueError(
            _format_error(dataset, rule, detail, mask.index[mask].tolist(), count)
        )


def require_columns(
    df_columns: Iterable[str],
    required: Iterable[str],
    dataset: str | None = None,
) -> None:
    missing = set(required) - set(df_columns)
    if missing:
        raise ValueError(_format_error(dataset, "Missing columns", f"{sorted(missing)}"))


def require_no_nulls(
    df: pd.DataFrame,
    cols: Iterable[str],
    dataset: str | None = None,
) -> None:
    """Raise if any of ``cols`` holds a null. Absent columns are skipped."""
    for col in cols:
        if col in df.columns:
            _fail_rows(dataset, "Null values", f"column '{col}' has nulls", df[col].isna())


def require_unique(
    df: pd.DataFrame,
    key_cols: list[str],
    dataset: str | None = None,
) -> None:
    if df.empty or not set(key_cols) <= set(df.columns):
        return
    dup_mask = df.duplicated(subset=key_cols, keep=False)
    _fail_rows(dataset, "Duplicate keys", f"columns {key_cols} have duplicates", dup_mask)


def require_timezone_utc(
    df: pd.DataFrame,
    ts_col: str,
    dataset: str | None = None,
) -> None:
    """Raise unless ``ts_col`` is a tz-aware UTC datetime column."""
    if ts_col not in df.columns or df.empty:
        return

    tz = getattr(df[ts_col].dtype, "tz", None)
    if tz is None:
        detail = f"column '{ts_col}' must be tz-aware UTC, got {df[ts_col].dtype}"
        raise ValueError(_format_error(dataset, "Timezone required", detail))
    if str(tz).upper() not in _UTC_NAMES:
        detail = f"column '{ts_col}' must be UTC, got {tz}"
        raise ValueError(_format_error(dataset, "Wrong timezone", detail))


def require_nonnegative_int(
    df: pd.DataFrame,
    col: str,
    dataset: str | None = None,
) -> None:
    if col not in df.columns or df.empty:
        return
    values = df[col].dropna()
    _fail_rows(dataset, "Negative values", f"column '{col}' must be >= 0", values < 0)


def require_fixed_cadence(
    df: pd.DataFrame,
    ts_col: str,
    cadence: pd.Timedelta,
    dataset: str | None = None,
) -> None:
    """Raise ValueError unless timestamps are strictly increasing at ``cadence``.

    Each row must be exactly one cadence step after the previous one and
    aligned to the cadence grid. Gaps must be materialized as rows.

    Args:
        df: DataFrame holding a single series
        ts_col: Name of the timestamp column
        cadence: Expected spacing between consecutive rows
        dataset: Optional dataset name for error messages

    Raises:
        ValueError: If spacing or alignment is violated
    """
    if ts_col not in df.columns or df.empty:
        return

    ts = df[ts_col]
    _fail_rows(
        dataset,
        "Misaligned timestamps",
        f"column '{ts_col}' must align to {cadence}",
        ts != ts.dt.floor(cadence),
    )
    step = ts.diff().iloc[1:]
    _fail_rows(
        dataset,
        "Irregular spacing",
        f"column '{ts_col}' must step by exactly {cadence}",
        step != cadence,
    )
