"""Error kinds raised by the QC pipeline.

All errors subclass ValueError so callers that already guard schema
violations keep working. Only NoDataAcquired is fatal to a run; the others
are raised close to the check that failed and handled by the stage that
called it.
"""

from __future__ import annotations


class QCError(ValueError):
    """Base class for pipeline errors."""


class NoDataAcquired(QCError):
    """The run received no raw measurements at all."""


class MissingInputSeries(QCError):
    """A required (site, parameter) series has no raw data."""

    def __init__(self, site: str, parameter: str) -> None:
        self.site = site
        self.parameter = parameter
        super().__init__(f"No raw data for {site}/{parameter}")


class UnresolvableThreshold(QCError):
    """A threshold table has no entry for the requested key."""

    def __init__(self, table: str, key: tuple) -> None:
        self.table = table
        self.key = key
        super().__init__(f"No {table} threshold for {key}")


class OutOfOrderTimestamp(QCError):
    """Raw measurements arrived unsorted and strict ordering was requested."""


class EmptySeries(QCError):
    """A series has no usable values."""

    def __init__(self, site: str, parameter: str) -> None:
        self.site = site
        self.parameter = parameter
        super().__init__(f"Series {site}/{parameter} has no values")


class ReconciliationConflict(QCError):
    """The same key is present in both the new batch and history.

    The merger resolves these deterministically (new batch wins) and only
    reports them; this type exists so conflicts can be described uniformly.
    """
