"""
Tolerant parser for YOLO detection label files.

Format:
    # Resolution: 2560x1440, Map: de_dust2, Time: 1764637338     (optional, line 1)
    <class_id> <x_center> <y_center> <width> <height>             (one per detection)

A malformed line never hides the valid lines around it: it is reported as a
ParseWarning and skipped.
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

COMMENT_MARKER = "#"


class ParseWarningKind(Enum):
    MALFORMED_METADATA = "MalformedMetadata"
    INVALID_DETECTION_LINE = "InvalidDetectionLine"
    MISSING_LABEL_FILE = "MissingLabelFile"
    UNREADABLE_LABEL_FILE = "UnreadableLabelFile"


@dataclass(frozen=True)
class Detection:
    class_id: int
    center_x: float
    center_y: float
    width: float
    height: float


@dataclass(frozen=True)
class LabelMetadata:
    resolution: Optional[Tuple[int, int]] = None
    map_name: Optional[str] = None
    timestamp: Optional[int] = None


@dataclass(frozen=True)
class ParseWarning:
    kind: ParseWarningKind
    line_number: int  # 1-based, 0 for file-level warnings
    raw: str
    message: str

    def __str__(self):
        if self.line_number:
            return f"{self.kind.value} (line {self.line_number}): {self.message}"
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True)
class ParsedLabel:
    metadata: Optional[LabelMetadata] = None
    detections: Tuple[Detection, ...] = field(default_factory=tuple)
    warnings: Tuple[ParseWarning, ...] = field(default_factory=tuple)

    @property
    def detection_count(self) -> int:
        return len(self.detections)

    @property
    def is_background(self) -> bool:
        return not self.detections

    def class_counts(self) -> Counter:
        return Counter(d.class_id for d in self.detections)


def _parse_resolution(value: str) -> Tuple[int, int]:
    width, sep, height = value.lower().partition("x")
    if not sep:
        raise ValueError(f"resolution must look like WxH, got {value!r}")
    w, h = int(width.strip()), int(height.strip())
    if w <= 0 or h <= 0:
        raise ValueError(f"resolution must be positive, got {value!r}")
    return w, h


def parse_metadata_line(line: str) -> LabelMetadata:
    """
    Parse a `# Key: value, Key: value` comment line.

    Recognized keys are Resolution, Map and Time (case-insensitive); other keys
    are ignored. Raises ValueError when no recognized key is present or a
    recognized value cannot be parsed.
    """
    body = line.strip()
    if body.startswith(COMMENT_MARKER):
        body = body[len(COMMENT_MARKER):]

    resolution = None
    map_name = None
    timestamp = None
    recognized = 0

    for part in body.split(","):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition(":")
        if not sep:
            raise ValueError(f"expected 'key: value', got {part!r}")
        key = key.strip().lower()
        value = value.strip()
        if key == "resolution":
            resolution = _parse_resolution(value)
        elif key == "map":
            if not value:
                raise ValueError("empty map name")
            map_name = value
        elif key == "time":
            timestamp = int(value)
        else:
            continue
        recognized += 1

    if recognized == 0:
        raise ValueError("no recognized metadata keys")
    return LabelMetadata(resolution=resolution, map_name=map_name, timestamp=timestamp)


def parse_detection_line(line: str) -> Detection:
    """Parse one `class cx cy w h` line. Raises ValueError if it is invalid."""
    parts = line.split()
    if len(parts) != 5:
        raise ValueError(f"expected 5 values, got {len(parts)}")

    class_id = int(parts[0])
    if class_id < 0:
        raise ValueError(f"negative class id: {class_id}")

    values = []
    for name, token in zip(("center_x", "center_y", "width", "height"), parts[1:]):
        v = float(token)
        if not math.isfinite(v) or not 0.0 <= v <= 1.0:
            raise ValueError(f"{name} out of range [0, 1]: {token}")
        values.append(v)

    return Detection(class_id, *values)


def parse_label_text(text: str) -> ParsedLabel:
    """Parse label text into a ParsedLabel. Never raises for malformed content."""
    metadata = None
    detections = []
    warnings = []

    lines = text.lstrip("\ufeff").splitlines()
    for line_number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line:
            continue

        if line_number == 1 and line.startswith(COMMENT_MARKER):
            try:
                metadata = parse_metadata_line(line)
            except ValueError as e:
                warnings.append(
                    ParseWarning(
                        ParseWarningKind.MALFORMED_METADATA, line_number, raw, str(e)
                    )
                )
            continue

        try:
            detections.append(parse_detection_line(line))
        except ValueError as e:
            warnings.append(
                ParseWarning(
                    ParseWarningKind.INVALID_DETECTION_LINE, line_number, raw, str(e)
                )
            )

    return ParsedLabel(
        metadata=metadata, detections=tuple(detections), warnings=tuple(warnings)
    )


def parse_label_file(label_path) -> ParsedLabel:
    """
    Read and parse a label file.

    A missing or unreadable file yields an empty ParsedLabel carrying a
    file-level warning, so the owning image is treated as background.
    """
    label_path = Path(label_path)
    if not label_path.exists():
        return ParsedLabel(
            warnings=(
                ParseWarning(
                    ParseWarningKind.MISSING_LABEL_FILE,
                    0,
                    "",
                    f"label file not found: {label_path.name}",
                ),
            )
        )

    try:
        text = label_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Cannot read label file {label_path}: {e}")
        return ParsedLabel(
            warnings=(
                ParseWarning(ParseWarningKind.UNREADABLE_LABEL_FILE, 0, "", str(e)),
            )
        )

    parsed = parse_label_text(text)
    if parsed.warnings:
        logger.debug("%s: %d parse warning(s)", label_path.name, len(parsed.warnings))
    return parsed
