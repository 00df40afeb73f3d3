"""Run the full QC pipeline: normalize, annotate, flag in three layers, merge.

Stage order and barriers:
1. Per series, in parallel: normalize -> annotate -> layer 1
2. Barrier: every series of a site finished layer 1
3. Per site, in parallel: layer 2
4. Barrier: every site finished layer 2
5. Whole network: layer 3, then projection
6. Once, single writer: merge with the historical store

Results are collected by key, so worker completion order never changes the
output. Only an empty raw feed stops a run; a missing or empty series is
reported and left out.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Mapping

import pandas as pd

from riverqc.config import QCConfig
from riverqc.errors import EmptySeries, MissingInputSeries
from riverqc.features.context import annotate_series, notes_for_site
from riverqc.flag.network_rules import apply_network_rules, print_flag_stats, project_output
from riverqc.flag.parameter_rules import apply_parameter_rules
from riverqc.flag.site_rules import apply_site_rules
from riverqc.merge.historical import merge_historical, recent_view
from riverqc.normalize.normalize_series import normalize_series, split_raw_by_series
from riverqc.schemas.field_notes import coerce_field_notes, coerce_malfunctions
from riverqc.thresholds import ThresholdTables

SeriesKey = tuple[str, str]


@dataclass
class PipelineResult:
    """Outputs of one run.

    Attributes:
        flagged: Projected output of this run's batch (historical = False)
        store: Reconciled store after merging (historical = True)
        recent: Store rows within the last recent_days days
        skipped: Series left out of the run, with the reason
    """

    flagged: pd.DataFrame
    store: pd.DataFrame
    recent: pd.DataFrame
    skipped: list[str]


def run_parallel(
    func: Callable[..., Any],
    items: Mapping[Hashable, tuple],
    max_workers: int = 1,
) -> dict[Hashable, Any]:
    """Apply ``func(*args)`` to every item, keyed like ``items``.

    With max_workers == 1 the work runs inline. Exceptions from a worker
    propagate to the caller.
    """
    if max_workers <= 1 or len(items) <= 1:
        return {key: func(*args) for key, args in items.items()}

    results = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(func, *args): key for key, args in items.items()}
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    return {key: results[key] for key in items}


def require_values(series: pd.DataFrame) -> pd.DataFrame:
    """Return the series unchanged, or raise EmptySeries if it has no values."""
    if series.empty or series["mean"].notna().sum() == 0:
        site = series["site"].iloc[0] if not series.empty else "?"
        parameter = series["parameter"].iloc[0] if not series.empty else "?"
        raise EmptySeries(site, parameter)
    return series


def process_series(
    raw: pd.DataFrame,
    site_notes: pd.DataFrame,
    thresholds: ThresholdTables,
    config: QCConfig,
) -> pd.DataFrame:
    """Per-series stages: normalize, annotate, layer 1."""
    series = normalize_series(raw, config.cadence)
    annotated = annotate_series(series, site_notes, config)
    return apply_parameter_rules(annotated, thresholds, config)


def missing_required_series(
    keys: list[SeriesKey],
    required: list[str],
) -> list[MissingInputSeries]:
    """Required parameters without raw data, for every site that has any data."""
    present = set(keys)
    sites = sorted({site for site, _ in keys})
    return [
        MissingInputSeries(site, parameter)
        for site in sites
        for parameter in required
        if (site, parameter) not in present
    ]


def run_flagging(
    raw_df: pd.DataFrame,
    thresholds: ThresholdTables,
    field_notes: pd.DataFrame | None = None,
    malfunctions: pd.DataFrame | None = None,
    config: QCConfig | None = None,
    strict_order: bool = False,
    verbose: bool = True,
) -> tuple[pd.DataFrame, list[str]]:
    """Run layers 1-3 and project the batch.

    Returns:
        (flagged output, descriptions of skipped series)

    Raises:
        NoDataAcquired: If the raw feed has no usable readings
    """
    if config is None:
        config = QCConfig()

    notes = coerce_field_notes(field_notes, verbose=verbose)
    records = coerce_malfunctions(malfunctions, verbose=verbose)

    # Fatal before any flagging
    groups = split_raw_by_series(raw_df, strict_order=strict_order, verbose=verbose)

    skipped = [str(e) for e in missing_required_series(list(groups), config.required_parameters)]
    for message in skipped:
        print(f"[pipeline] Skipping: {message}")

    # Stage 1: per series
    if verbose:
        print(f"[pipeline] Layer 1 on {len(groups)} series")
    layer1 = run_parallel(
        process_series,
        {
            key: (raw, notes_for_site(notes, key[0]), thresholds, config)
            for key, raw in groups.items()
        },
        max_workers=config.max_workers,
    )

    active: dict[SeriesKey, pd.DataFrame] = {}
    for key, series in layer1.items():
        try:
            active[key] = require_values(series)
        except EmptySeries as e:
            skipped.append(str(e))
            print(f"[pipeline] Dropping: {e}")

    # Barrier 1: group complete sites
    by_site: dict[str, dict[str, pd.DataFrame]] = {}
    for (site, parameter), series in active.items():
        by_site.setdefault(site, {})[parameter] = series

    if verbose:
        print(f"[pipeline] Layer 2 on {len(by_site)} sites")
    layer2_sites = run_parallel(
        apply_site_rules,
        {
            site: (site_series, records[records["site"] == site], config)
            for site, site_series in sorted(by_site.items())
        },
        max_workers=config.max_workers,
    )

    # Barrier 2: the whole network
    layer2 = {
        (site, parameter): series
        for site, site_series in layer2_sites.items()
        for parameter, series in site_series.items()
    }
    if verbose:
        print(f"[pipeline] Layer 3 on {len(layer2)} series")
    final = apply_network_rules(layer2, config)

    flagged = project_output(final)
    if verbose:
        print_flag_stats(flagged)
    return flagged, skipped


def run_pipeline(
    raw_df: pd.DataFrame,
    thresholds: ThresholdTables,
    field_notes: pd.DataFrame | None = None,
    malfunctions: pd.DataFrame | None = None,
    history: pd.DataFrame | None = None,
    config: QCConfig | None = None,
    strict_order: bool = False,
    verbose: bool = True,
) -> PipelineResult:
    """Flag a raw batch and reconcile it with the historical store.

    Args:
        raw_df: Raw readings (site, timestamp, parameter, value, units)
        thresholds: Spec and seasonal threshold tables
        field_notes: Field note feed (None = no notes)
        malfunctions: Malfunction feed (None = no malfunction context)
        history: Committed store from previous runs (None on the first run)
        config: Run configuration (default QCConfig())
        strict_order: If True, unsorted raw readings raise OutOfOrderTimestamp
        verbose: If True, print progress

    Returns:
        PipelineResult with the batch, the merged store and the recent view

    Raises:
        NoDataAcquired: If the raw feed has no usable readings
    """
    if config is None:
        config = QCConfig()

    if verbose:
        print(f"\n{'=' * 60}")
        print("RIVER QC RUN")
        print(f"{'=' * 60}")

    flagged, skipped = run_flagging(
        raw_df,
        thresholds,
        field_notes=field_notes,
        malfunctions=malfunctions,
        config=config,
        strict_order=strict_order,
        verbose=verbose,
    )

    store = merge_historical(flagged, history, verbose=verbose)
    recent = recent_view(store, days=config.recent_days)
    return PipelineResult(flagged=flagged, store=store, recent=recent, skipped=skipped)
