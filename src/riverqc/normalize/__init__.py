"""Raw reading normalization."""

from riverqc.normalize.normalize_series import normalize_measurements, normalize_series

__all__ = ["normalize_measurements", "normalize_series"]
