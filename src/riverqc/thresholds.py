"""Sensor specification and seasonal threshold tables.

Two tables drive the range rules:
- spec thresholds: parameter -> (min, max) manufacturer operating range
- seasonal thresholds: (site, parameter, season) -> (p1, p99, slope_bound)

A missing entry is never fatal. Lookups raise UnresolvableThreshold and the
rule that asked skips itself for that series.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd

from riverqc.errors import UnresolvableThreshold
from riverqc.schemas.validate import require_columns, require_unique

SEASONAL_FIELDS = ["site", "parameter", "season", "p1", "p99", "slope_bound"]
SPEC_FIELDS = ["parameter", "min", "max"]


@dataclass(frozen=True)
class SeasonalThreshold:
    p1: float
    p99: float
    slope_bound: float


@dataclass
class ThresholdTables:
    """In-memory threshold tables.

    Attributes:
        spec: parameter -> (min, max)
        seasonal: (site, parameter, season) -> SeasonalThreshold
    """

    spec: dict[str, tuple[float, float]] = field(default_factory=dict)
    seasonal: dict[tuple[str, str, str], SeasonalThreshold] = field(default_factory=dict)

    def spec_range(self, parameter: str) -> tuple[float, float]:
        """Return the (min, max) operating range for ``parameter``.

        Raises:
            UnresolvableThreshold: If the parameter has no entry
        """
        try:
            return self.spec[parameter]
        except KeyError:
            raise UnresolvableThreshold("spec", (parameter,)) from None

    def seasonal_for(self, site: str, parameter: str) -> dict[str, SeasonalThreshold]:
        """Return season -> SeasonalThreshold for one series.

        Raises:
            UnresolvableThreshold: If no season has an entry for the series
        """
        entries = {
            season: threshold
            for (s, p, season), threshold in self.seasonal.items()
            if s == site and p == parameter
        }
        if not entries:
            raise UnresolvableThreshold("seasonal", (site, parameter))
        return entries

    @classmethod
    def from_frames(
        cls,
        spec_df: pd.DataFrame | None = None,
        seasonal_df: pd.DataFrame | None = None,
    ) -> ThresholdTables:
        """Build tables from DataFrames with SPEC_FIELDS / SEASONAL_FIELDS.

        Raises:
            ValueError: If required columns are missing or keys repeat
        """
        spec: dict[str, tuple[float, float]] = {}
        if spec_df is not None and not spec_df.empty:
            require_columns(spec_df.columns, SPEC_FIELDS, dataset="spec_thresholds")
            require_unique(spec_df, ["parameter"], dataset="spec_thresholds")
            for row in spec_df.itertuples(index=False):
                spec[row.parameter] = (float(row.min), float(row.max))

        seasonal: dict[tuple[str, str, str], SeasonalThreshold] = {}
        if seasonal_df is not None and not seasonal_df.empty:
            require_columns(seasonal_df.columns, SEASONAL_FIELDS, dataset="seasonal_thresholds")
            require_unique(
                seasonal_df, ["site", "parameter", "season"], dataset="seasonal_thresholds"
            )
            for row in seasonal_df.itertuples(index=False):
                seasonal[(row.site, row.parameter, row.season)] = SeasonalThreshold(
                    p1=float(row.p1),
                    p99=float(row.p99),
                    slope_bound=float(row.slope_bound),
                )

        return cls(spec=spec, seasonal=seasonal)


def read_spec_thresholds(path: Path | str) -> pd.DataFrame:
    """Read the sensor specification table from JSON or CSV.

    JSON layout is ``{"pH": {"min": 0, "max": 14}, ...}``.
    """
    path = Path(path)
    if path.suffix == ".json":
        raw = json.loads(path.read_text())
        return pd.DataFrame(
            [{"parameter": name, "min": r["min"], "max": r["max"]} for name, r in raw.items()],
            columns=SPEC_FIELDS,
        )
    return pd.read_csv(path)


def load_thresholds(
    spec_path: Path | str | None = None,
    seasonal_path: Path | str | None = None,
    verbose: bool = True,
) -> ThresholdTables:
    """Load threshold tables from the config store.

    A missing file leaves that table empty; every check depending on it then
    degrades to a no-op.

    Args:
        spec_path: JSON or CSV spec threshold table
        seasonal_path: CSV seasonal threshold table
        verbose: If True, print what was loaded

    Returns:
        ThresholdTables
    """
    spec_df = None
    if spec_path is not None:
        if Path(spec_path).exists():
            spec_df = read_spec_thresholds(spec_path)
        else:
            print(f"[thresholds] Spec threshold table not found: {spec_path}")

    seasonal_df = None
    if seasonal_path is not None:
        if Path(seasonal_path).exists():
            seasonal_df = pd.read_csv(seasonal_path)
        else:
            print(f"[thresholds] Seasonal threshold table not found: {seasonal_path}")

    tables = ThresholdTables.from_frames(spec_df, seasonal_df)
    if verbose:
        print(
            f"[thresholds] Loaded {len(tables.spec)} spec and "
            f"{len(tables.seasonal)} seasonal thresholds"
        )
    return tables
