from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Tuple


@dataclass(frozen=True)
class NormalizedBox:
    """
    Box in image-relative center/size form, as written to label text files.
    """

    class_id: int
    x_center: float
    y_center: float
    width: float
    height: float
    confidence: float


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned box in xyxy form with the class and score it was detected with.

    Zero-extent boxes are accepted so that degenerate candidates can flow through
    suppression; `is_valid` reports whether the box has a strictly positive area.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    class_id: int = 0
    confidence: float = 1.0

    def __post_init__(self) -> None:
        for name in ("x1", "y1", "x2", "y2", "confidence"):
            object.__setattr__(self, name, float(getattr(self, name)))
        object.__setattr__(self, "class_id", int(self.class_id))

        coords = (self.x1, self.y1, self.x2, self.y2)
        if not all(math.isfinite(v) for v in coords):
            raise ValueError(f"Box coordinates must be finite, got {coords}")
        if self.x1 > self.x2 or self.y1 > self.y2:
            raise ValueError(f"Invalid box coordinates (x1 <= x2 and y1 <= y2 required): {coords}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        if self.class_id < 0:
            raise ValueError(f"class_id must be >= 0, got {self.class_id}")

    @classmethod
    def from_center(
        cls,
        cx: float,
        cy: float,
        width: float,
        height: float,
        class_id: int = 0,
        confidence: float = 1.0,
    ) -> "BoundingBox":
        half_w = width * 0.5
        half_h = height * 0.5
        return cls(cx - half_w, cy - half_h, cx + half_w, cy + half_h, class_id, confidence)

    @property
    def is_valid(self) -> bool:
        return self.x1 < self.x2 and self.y1 < self.y2

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2

    def area(self) -> float:
        return (self.x2 - self.x1) * (self.y2 - self.y1)

    def center(self) -> Tuple[float, float]:
        return (self.x1 + self.x2) * 0.5, (self.y1 + self.y2) * 0.5

    def dimensions(self) -> Tuple[float, float]:
        return self.x2 - self.x1, self.y2 - self.y1

    def intersection(self, other: "BoundingBox") -> float:
        w = max(0.0, min(self.x2, other.x2) - max(self.x1, other.x1))
        h = max(0.0, min(self.y2, other.y2) - max(self.y1, other.y1))
        return w * h

    def union(self, other: "BoundingBox") -> float:
        return self.area() + other.area() - self.intersection(other)

    def iou(self, other: "BoundingBox") -> float:
        inter = self.intersection(other)
        if inter <= 0.0:
            return 0.0
        return inter / self.union(other)

    def scaled(self, scale_x: float, scale_y: float) -> "BoundingBox":
        return replace(
            self,
            x1=self.x1 * scale_x,
            y1=self.y1 * scale_y,
            x2=self.x2 * scale_x,
            y2=self.y2 * scale_y,
        )

    def to_normalized(self, image_width: int, image_height: int) -> NormalizedBox:
        """
        Center/size form divided by the image dimensions (values in [0, 1] for in-bounds boxes).
        """

        if image_width <= 0 or image_height <= 0:
            raise ValueError(f"Image dimensions must be positive, got {(image_width, image_height)}")
        cx, cy = self.center()
        w, h = self.dimensions()
        return NormalizedBox(
            class_id=self.class_id,
            x_center=cx / image_width,
            y_center=cy / image_height,
            width=w / image_width,
            height=h / image_height,
            confidence=self.confidence,
        )
