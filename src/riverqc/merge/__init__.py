"""Historical store reconciliation."""

from riverqc.merge.historical import merge_historical, read_store, recent_view, write_store

__all__ = ["merge_historical", "recent_view", "read_store", "write_store"]
