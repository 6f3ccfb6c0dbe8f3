"""Dataset I/O: label parsing, split layout, the entry repository and integrity checks."""

from .integrity import (
    IntegrityIssue,
    IntegrityIssueKind,
    IntegrityReport,
    analyze_integrity,
    remove_orphans,
)
from .labels import (
    Detection,
    LabelMetadata,
    ParsedLabel,
    ParseWarning,
    ParseWarningKind,
    parse_label_file,
    parse_label_text,
)
from .layout import Split, detect_splits, read_class_names
from .repository import DatasetEntry, DatasetRepository

__all__ = [
    "DatasetEntry",
    "DatasetRepository",
    "Detection",
    "IntegrityIssue",
    "IntegrityIssueKind",
    "IntegrityReport",
    "LabelMetadata",
    "ParseWarning",
    "ParseWarningKind",
    "ParsedLabel",
    "Split",
    "analyze_integrity",
    "detect_splits",
    "parse_label_file",
    "parse_label_text",
    "read_class_names",
    "remove_orphans",
]
