"""Shared helpers for the flagging layers."""

from __future__ import annotations

from typing import Callable

import pandas as pd

from riverqc.errors import UnresolvableThreshold


def series_label(df: pd.DataFrame) -> str:
    if df.empty:
        return "<empty>"
    return f"{df['site'].iloc[0]}/{df['parameter'].iloc[0]}"


def no_flags(df: pd.DataFrame) -> pd.Series:
    return pd.Series(0, index=df.index, dtype="int64")


def bits_where(mask: pd.Series, flag: int) -> pd.Series:
    """Turn a boolean mask into a bitmask Series carrying ``flag`` where True."""
    return mask.fillna(False).astype(bool).astype("int64") * int(flag)


def run_isolated(
    layer: str,
    rule_name: str,
    label: str,
    func: Callable[..., pd.Series],
    fallback: pd.Series,
    *args,
    **kwargs,
) -> pd.Series:
    """Run one rule, containing its failure to that rule.

    A missing threshold skips the rule with a notice (expected for some
    parameters); any other error is reported and the rule contributes
    ``fallback`` instead of aborting the series.
    """
    try:
        return func(*args, **kwargs)
    except UnresolvableThreshold as e:
        print(f"[{layer}] Skipping {rule_name} for {label}: {e}")
    except Exception as e:  # noqa: BLE001
        print(f"[{layer}] Rule {rule_name} failed for {label}: {type(e).__name__}: {e}")
    return fallback


def spread_to_window(ends: pd.Series, window: int) -> pd.Series:
    """Mark every row covered by a window whose last row is True in ``ends``.

    ``ends`` marks trailing windows by their final row; a row is covered if
    any window ending within the next ``window`` rows (itself included)
    is marked.
    """
    as_float = ends.fillna(False).astype(bool).astype("float64")
    covered = as_float.iloc[::-1].rolling(window, min_periods=1).max().iloc[::-1]
    return covered > 0
