"""Schema definitions for the river QC pipeline.

This package defines the contract layer - what "valid data" looks like.
Nothing here should do work, only define structure.

Schemas:
- qc_flags: Flag taxonomy and bitmask helpers
- interval: Raw reading, interval and output record structure
- field_notes: Field note and malfunction record structure
- validate: Validation helpers
"""

from riverqc.schemas.field_notes import (
    FIELD_NOTE_FIELDS,
    MALFUNCTION_FIELDS,
    NOTE_TYPES,
    FieldNote,
    MalfunctionRecord,
    coerce_field_notes,
    coerce_malfunctions,
)
from riverqc.schemas.interval import (
    INTERVAL_FIELDS,
    OUTPUT_FIELDS,
    RAW_FIELDS,
    Interval,
    RawMeasurement,
    validate_output,
    validate_raw_measurements,
    validate_series,
)
from riverqc.schemas.qc_flags import (
    FLAG_LABELS,
    MALFUNCTION_LABELS,
    MalfunctionFlag,
    QCFlag,
    flags_to_string,
    malfunction_to_string,
    string_to_flags,
)

__all__ = [
    # Flags
    "QCFlag",
    "MalfunctionFlag",
    "FLAG_LABELS",
    "MALFUNCTION_LABELS",
    "flags_to_string",
    "malfunction_to_string",
    "string_to_flags",
    # Intervals
    "RawMeasurement",
    "Interval",
    "RAW_FIELDS",
    "INTERVAL_FIELDS",
    "OUTPUT_FIELDS",
    "validate_raw_measurements",
    "validate_series",
    "validate_output",
    # Field notes
    "FieldNote",
    "MalfunctionRecord",
    "NOTE_TYPES",
    "FIELD_NOTE_FIELDS",
    "MALFUNCTION_FIELDS",
    "coerce_field_notes",
    "coerce_malfunctions",
]
