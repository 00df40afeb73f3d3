"""Main script to run the QC pipeline.

Pipeline flow:
    raw readings + field notes -> layer 1 -> layer 2 -> layer 3 -> merge with history
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path

import pandas as pd

from riverqc.config import (
    QCConfig,
    flagged_output_dir,
    seasonal_thresholds_path,
    spec_thresholds_path,
)
from riverqc.errors import NoDataAcquired
from riverqc.merge.historical import read_store, write_store
from riverqc.notes import load_field_notes, load_malfunctions
from riverqc.pipeline import run_pipeline
from riverqc.thresholds import load_thresholds


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the river QC pipeline.")
    parser.add_argument("--raw", required=True, help="Raw readings (parquet or CSV)")
    parser.add_argument("--field-notes", default=None, help="Field note feed (parquet or CSV)")
    parser.add_argument("--malfunctions", default=None, help="Malfunction feed (parquet or CSV)")
    parser.add_argument(
        "--spec-thresholds",
        default=str(spec_thresholds_path()),
        help="Sensor spec threshold table (JSON or CSV)",
    )
    parser.add_argument(
        "--seasonal-thresholds",
        default=str(seasonal_thresholds_path()),
        help="Seasonal threshold table (CSV)",
    )
    parser.add_argument(
        "--out-dir",
        default=str(flagged_output_dir()),
        help="Directory for the reconciled store and recent view",
    )
    parser.add_argument("--config", default=None, help="QCConfig JSON file")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads")
    parser.add_argument(
        "--strict-order",
        action="store_true",
        help="Reject unsorted raw readings instead of re-sorting them",
    )
    return parser.parse_args()


def read_raw(path: Path) -> pd.DataFrame:
    if path.suffix == ".parquet":
        df = pd.read_parquet(path)
    else:
        df = pd.read_csv(path)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    return df


def main() -> None:
    args = parse_args()
    out_dir = Path(args.out_dir)

    config = QCConfig.load(args.config) if args.config else QCConfig()
    if args.workers is not None:
        config = replace(config, max_workers=args.workers)

    print(f"[pipeline] Reading raw readings from {args.raw}")
    raw_df = read_raw(Path(args.raw))
    notes = load_field_notes(args.field_notes)
    malfunctions = load_malfunctions(args.malfunctions)
    thresholds = load_thresholds(args.spec_thresholds, args.seasonal_thresholds)

    store_path = out_dir / "qc_store.parquet"
    history = read_store(store_path)

    try:
        result = run_pipeline(
            raw_df,
            thresholds,
            field_notes=notes,
            malfunctions=malfunctions,
            history=history,
            config=config,
            strict_order=args.strict_order,
        )
    except NoDataAcquired as e:
        print(f"[pipeline] FATAL: {e}")
        sys.exit(1)

    write_store(result.store, store_path)
    write_store(result.recent, out_dir / f"qc_recent_{config.recent_days}d.parquet")
    config.save(out_dir / "config.json")

    if result.skipped:
        print(f"\n[pipeline] {len(result.skipped)} series skipped")


if __name__ == "__main__":
    main()
