"""
Decoders turning a raw detector output tensor into candidate boxes.

Supported layouts (single image, batch dimension of 1):
- dense anchor-free (YOLOv8-style): (1, 4 + C, N) with rows
  [cx, cy, w, h, class_scores...] and one column per candidate
- fixed top-k (YOLOv10-style): (1, N, 6) with rows
  [x1, y1, x2, y2, confidence, class_id], already ranked by the model

Coordinates stay in model input space; nothing here knows about letterboxing.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Union

import numpy as np

from .errors import ConfigError, ShapeError
from .types import BoundingBox

logger = logging.getLogger(__name__)


class DetectorVariant(str, Enum):
    YOLOV8 = "yolov8"
    YOLOV10 = "yolov10"

    @classmethod
    def parse(cls, name: Union[str, "DetectorVariant"]) -> "DetectorVariant":
        if isinstance(name, DetectorVariant):
            return name
        key = str(name).strip().lower()
        for variant in cls:
            if variant.value == key:
                return variant
        supported = ", ".join(v.value for v in cls)
        raise ConfigError(f"Unsupported model: {name}. Supported models: {supported}")


def _squeeze_batch(raw: np.ndarray) -> np.ndarray:
    p = np.asarray(raw, dtype=np.float32)
    if p.ndim != 3:
        raise ShapeError(f"Expected output of rank 3 (1, rows, cols), got shape {p.shape}")
    if p.shape[0] != 1:
        raise ShapeError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
    return p[0]


def _make_box(index, factory, *args) -> Optional[BoundingBox]:
    # A malformed candidate is dropped on its own; the rest of the image still decodes.
    try:
        return factory(*args)
    except (ValueError, OverflowError) as exc:
        logger.debug("Skipping candidate %d: %s", index, exc)
        return None


class OutputDecoder(ABC):
    variant: DetectorVariant

    @abstractmethod
    def decode(self, raw: np.ndarray, confidence_threshold: float) -> List[BoundingBox]:
        ...



class DenseAnchorFreeDecoder(OutputDecoder):
    """
    One candidate per column; the score is the best class score, no objectness.

    Candidates pass on `score > confidence_threshold` (strict).
    """

    variant = DetectorVariant.YOLOV8

    def decode(self, raw: np.ndarray, confidence_threshold: float) -> List[BoundingBox]:
        p = _squeeze_batch(raw)
        num_rows, num_candidates = p.shape
        if num_rows < 5:
            raise ShapeError(f"Expected 4 box rows plus at least one class row, got shape {(1,) + p.shape}")
        if num_candidates == 0:
            return []

        class_scores = p[4:, :]
        # argmax returns the first maximum, so ties resolve to the lowest class id.
        class_ids = np.argmax(class_scores, axis=0)
        scores = class_scores[class_ids, np.arange(num_candidates)]

        keep = np.nonzero(scores > confidence_threshold)[0]
        boxes: List[BoundingBox] = []
        for i in keep:
            cx, cy, w, h = (float(v) for v in p[0:4, i])
            if w < 0 or h < 0:
                logger.debug("Skipping candidate %d with negative extent (w=%s, h=%s)", i, w, h)
                continue
            box = _make_box(i, BoundingBox.from_center, cx, cy, w, h, int(class_ids[i]), float(scores[i]))
            if box is not None:
                boxes.append(box)
        return boxes


class TopKDecoder(OutputDecoder):
    """
    Rows are final detections; candidates pass on `confidence >= confidence_threshold` (inclusive).
    """

    variant = DetectorVariant.YOLOV10

    def decode(self, raw: np.ndarray, confidence_threshold: float) -> List[BoundingBox]:
        p = _squeeze_batch(raw)
        if p.shape[1] < 6:
            raise ShapeError(f"Expected rows of [x1, y1, x2, y2, conf, class_id], got shape {(1,) + p.shape}")
        if p.shape[0] == 0:
            return []

        keep = np.nonzero(p[:, 4] >= confidence_threshold)[0]
        boxes: List[BoundingBox] = []
        for i in keep:
            x1, y1, x2, y2, conf, cls_id = (float(v) for v in p[i, :6])
            if x2 < x1 or y2 < y1:
                logger.debug("Skipping candidate %d with inverted corners %s", i, (x1, y1, x2, y2))
                continue
            box = _make_box(i, BoundingBox, x1, y1, x2, y2, cls_id, conf)
            if box is not None:
                boxes.append(box)
        return boxes


_DECODERS = {
    DetectorVariant.YOLOV8: DenseAnchorFreeDecoder,
    DetectorVariant.YOLOV10: TopKDecoder,
}


def create_decoder(variant: Union[str, DetectorVariant]) -> OutputDecoder:
    return _DECODERS[DetectorVariant.parse(variant)]()
