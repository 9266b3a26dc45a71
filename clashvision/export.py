from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence, Tuple, Union

from .classes import class_name
from .types import BoundingBox, NormalizedBox


class ExportFormat(str, Enum):
    TEXT = "txt"
    JSON = "json"

    @property
    def extension(self) -> str:
        return self.value

    @classmethod
    def parse(cls, name: Union[str, "ExportFormat"]) -> "ExportFormat":
        if isinstance(name, ExportFormat):
            return name
        key = str(name).strip().lower()
        aliases = {"txt": cls.TEXT, "text": cls.TEXT, "yolo": cls.TEXT, "json": cls.JSON}
        if key not in aliases:
            raise ValueError(f"Unsupported export format: {name!r} (expected 'txt' or 'json')")
        return aliases[key]


@dataclass(frozen=True)
class ExportConfig:
    include_confidence: bool = False
    precision: int = 6

    def __post_init__(self) -> None:
        if self.precision < 0:
            raise ValueError("precision must be >= 0")


@dataclass(frozen=True)
class DetectionStats:
    total_detections: int
    classes_detected: List[int] = field(default_factory=list)
    average_confidence: float = 0.0
    confidence_range: Tuple[float, float] = (0.0, 0.0)

    @classmethod
    def from_boxes(cls, boxes: Sequence[BoundingBox]) -> "DetectionStats":
        if not boxes:
            return cls(total_detections=0)
        confidences = [b.confidence for b in boxes]
        return cls(
            total_detections=len(boxes),
            classes_detected=sorted({b.class_id for b in boxes}),
            average_confidence=sum(confidences) / len(confidences),
            confidence_range=(min(confidences), max(confidences)),
        )


def format_text_line(box: NormalizedBox, config: ExportConfig = ExportConfig()) -> str:
    prec = config.precision
    values = [box.x_center, box.y_center, box.width, box.height]
    if config.include_confidence:
        values.append(box.confidence)
    return " ".join([str(box.class_id)] + [f"{v:.{prec}f}" for v in values]) + "\n"


def to_text(
    boxes: Sequence[BoundingBox],
    image_dimensions: Tuple[int, int],
    config: ExportConfig = ExportConfig(),
) -> str:
    """
    One `class_id cx cy w h` line per box, spatial values relative to the image size.
    """

    width, height = image_dimensions
    return "".join(format_text_line(b.to_normalized(width, height), config) for b in boxes)


def parse_text(text: str) -> List[NormalizedBox]:
    """
    Read back lines written by `to_text`. A missing confidence column reads as 1.0.
    """

    out: List[NormalizedBox] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        parts = line.split()
        if len(parts) not in (5, 6):
            raise ValueError(f"Line {lineno}: expected 5 or 6 fields, got {len(parts)}")
        cx, cy, w, h = (float(v) for v in parts[1:5])
        conf = float(parts[5]) if len(parts) == 6 else 1.0
        out.append(NormalizedBox(int(parts[0]), cx, cy, w, h, conf))
    return out


def to_document(boxes: Sequence[BoundingBox], image_dimensions: Tuple[int, int]) -> Dict[str, Any]:
    width, height = image_dimensions
    detections = []
    for b in boxes:
        cx, cy = b.center()
        bw, bh = b.dimensions()
        detections.append(
            {
                "class_id": b.class_id,
                "class_name": class_name(b.class_id),
                "confidence": b.confidence,
                "bbox": [b.x1, b.y1, b.x2, b.y2],
                "normalized_bbox": [b.x1 / width, b.y1 / height, b.x2 / width, b.y2 / height],
                "center": [cx, cy],
                "size": [bw, bh],
            }
        )
    stats = DetectionStats.from_boxes(boxes)
    return {
        "image": {"width": width, "height": height},
        "detections": detections,
        "summary": asdict(stats),
    }


def export(
    boxes: Sequence[BoundingBox],
    image_dimensions: Tuple[int, int],
    fmt: Union[str, ExportFormat] = ExportFormat.TEXT,
    config: ExportConfig = ExportConfig(),
) -> bytes:
    """
    Serialize one image's detections.

    An empty detection set is valid: text export yields empty bytes.
    """

    width, height = image_dimensions
    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be positive, got {image_dimensions}")

    chosen = ExportFormat.parse(fmt)
    if chosen is ExportFormat.TEXT:
        return to_text(boxes, image_dimensions, config).encode("utf-8")
    return json.dumps(to_document(boxes, image_dimensions), indent=2, sort_keys=True).encode("utf-8")
