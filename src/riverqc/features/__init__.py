"""Context annotation for flagging rules."""

from riverqc.features.context import CONTEXT_FIELDS, SEASONS, annotate_series
from riverqc.features.rolling_stats import compute_trailing_stats, rolling_linear_fit

__all__ = [
    "CONTEXT_FIELDS",
    "SEASONS",
    "annotate_series",
    "compute_trailing_stats",
    "rolling_linear_fit",
]
