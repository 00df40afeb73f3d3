"""Configuration settings for the river QC pipeline.

QCConfig holds every tunable constant used by the flagging layers. All
configuration is frozen at run start and can be dumped next to the output
so a run can be reproduced.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd

from riverqc.schemas.qc_flags import QCFlag


def project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def data_root() -> Path:
    return project_root() / "data"


def thresholds_dir() -> Path:
    return project_root() / "thresholds"


def spec_thresholds_path() -> Path:
    return thresholds_dir() / "sensor_spec_thresholds.json"


def seasonal_thresholds_path() -> Path:
    return thresholds_dir() / "seasonal_thresholds.csv"


def flagged_output_dir() -> Path:
    return data_root() / "flagged"


@dataclass
class QCConfig:
    """Configuration for a QC run.

    Attributes:
        cadence_minutes: Interval width used by the normalizer
        rolling_points: Trailing window length for rolling statistics
        sv_window_before_minutes: Minutes before a site visit inside the sv window
        sv_window_after_minutes: Minutes after a site visit inside the sv window
        do_min_value: DO readings at or below this (mg/L) are interference
        do_noise_slope: |rolling_slope| (mg/L per minute) above this is noise
        do_noise_sd: rolling_sd (mg/L) above this is noise
        drift_window_hours: Window for the optical drift fit
        drift_r2: Minimum r^2 of the linear fit to call a trend monotonic
        drift_magnitude: Minimum total change over the window
        depth_shift_threshold: Minimum depth step (m) across a note
        depth_shift_cutoff: Notes on or after this date use step detection
        burial_hours: Continuous DO interference needed for possible burial
        network_fraction: Share of active sites that makes a tag an event
        network_min_sites: Fewer active sites than this skips the network check
        network_tags: Flag names the network check may clear
        suspect_window_hours: Sliding window for suspect data
        suspect_flagged_fraction: Flagged share of a window that makes it suspect
        suspect_missing_fraction: Missing share of a window that makes it suspect
        required_parameters: Parameters every site is expected to report
        recent_days: Length of the recent view
        max_workers: Worker threads for per-series and per-site stages
    """

    cadence_minutes: int = 15
    rolling_points: int = 7

    sv_window_before_minutes: int = 15
    sv_window_after_minutes: int = 60

    do_min_value: float = 5.0
    do_noise_slope: float = 0.05
    do_noise_sd: float = 0.5

    drift_window_hours: float = 48.0
    drift_r2: float = 0.9
    drift_magnitude: float = 5.0

    depth_shift_threshold: float = 0.05
    depth_shift_cutoff: str = "2024-01-01"

    burial_hours: float = 24.0

    network_fraction: float = 0.6
    network_min_sites: int = 2
    network_tags: list[str] = field(
        default_factory=lambda: ["SLOPE_VIOLATION", "OUTSIDE_SEASONAL_RANGE"]
    )

    suspect_window_hours: float = 2.0
    suspect_flagged_fraction: float = 0.5
    suspect_missing_fraction: float = 0.9

    required_parameters: list[str] = field(default_factory=list)

    recent_days: int = 45
    max_workers: int = 1

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate all configuration parameters."""
        errors = []

        if self.cadence_minutes <= 0:
            errors.append(f"cadence_minutes must be positive, got {self.cadence_minutes}")
        if self.rolling_points < 2:
            errors.append(f"rolling_points must be >= 2, got {self.rolling_points}")

        for name in ("network_fraction", "suspect_flagged_fraction", "suspect_missing_fraction"):
            value = getattr(self, name)
            if not 0 < value <= 1:
                errors.append(f"{name} must be in (0, 1], got {value}")

        if not 0 <= self.drift_r2 <= 1:
            errors.append(f"drift_r2 must be in [0, 1], got {self.drift_r2}")

        if self.network_min_sites < 1:
            errors.append(f"network_min_sites must be >= 1, got {self.network_min_sites}")

        unknown = [name for name in self.network_tags if name not in QCFlag.__members__]
        if unknown:
            errors.append(f"Unknown network_tags: {unknown}")

        for name in ("drift_window_hours", "burial_hours", "suspect_window_hours"):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive, got {getattr(self, name)}")
        if self.cadence_minutes > 0 and (
            self.suspect_window_intervals < 1 or self.drift_window_intervals < 2
        ):
            errors.append("window lengths must cover at least one cadence interval")

        if self.max_workers < 1:
            errors.append(f"max_workers must be >= 1, got {self.max_workers}")

        try:
            pd.Timestamp(self.depth_shift_cutoff)
        except ValueError:
            errors.append(f"depth_shift_cutoff is not a date: {self.depth_shift_cutoff!r}")

        if errors:
            raise ValueError("QCConfig validation failed:\n  - " + "\n  - ".join(errors))

    @property
    def cadence(self) -> pd.Timedelta:
        return pd.Timedelta(minutes=self.cadence_minutes)

    @property
    def suspect_window_intervals(self) -> int:
        return int(self.suspect_window_hours * 60 // self.cadence_minutes)

    @property
    def drift_window_intervals(self) -> int:
        return int(self.drift_window_hours * 60 // self.cadence_minutes)

    @property
    def burial_intervals(self) -> int:
        return int(self.burial_hours * 60 // self.cadence_minutes)

    @property
    def depth_shift_cutoff_ts(self) -> pd.Timestamp:
        return pd.Timestamp(self.depth_shift_cutoff, tz="UTC")

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for JSON serialization."""
        return asdict(self)

    def to_json(self, indent: int = 2) -> str:
        """Serialize config to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    def save(self, path: Path | str) -> Path:
        """Save config to JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json())
        return path

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> QCConfig:
        """Create config from dictionary."""
        return cls(**d)

    @classmethod
    def from_json(cls, json_str: str) -> QCConfig:
        """Create config from JSON string."""
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def load(cls, path: Path | str) -> QCConfig:
        """Load config from JSON file."""
        return cls.from_json(Path(path).read_text())
