"""River monitoring network quality control pipeline."""

__version__ = "0.1.0"
