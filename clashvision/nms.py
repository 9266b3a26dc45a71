from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from .types import BoundingBox


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    confidence_floor: float = 0.0
    # None keeps every surviving box.
    max_detections: Optional[int] = None
    # If True, boxes only suppress boxes of the same class.
    per_class: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be within [0, 1]")
        if self.max_detections is not None and self.max_detections < 0:
            raise ValueError("max_detections must be >= 0")


def nms_indices(
    boxes: np.ndarray,
    scores: np.ndarray,
    iou_threshold: float,
    max_detections: Optional[int] = None,
) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N, 4) in xyxy and scores shape (N,).
    Returns indices of kept boxes, highest score first.

    Equal scores keep their input order, and a box is only suppressed when its IoU
    with an already selected box is strictly greater than `iou_threshold`.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = boxes[:, 2]
    y2 = boxes[:, 3]
    areas = (x2 - x1) * (y2 - y1)

    order = np.argsort(-scores, kind="stable")
    keep: List[int] = []

    while order.size > 0:
        if max_detections is not None and len(keep) >= max_detections:
            break
        i = order[0]
        keep.append(int(i))

        rest = order[1:]
        xx1 = np.maximum(x1[i], x1[rest])
        yy1 = np.maximum(y1[i], y1[rest])
        xx2 = np.minimum(x2[i], x2[rest])
        yy2 = np.minimum(y2[i], y2[rest])

        w = np.maximum(0.0, xx2 - xx1)
        h = np.maximum(0.0, yy2 - yy1)
        inter = w * h
        union = areas[i] + areas[rest] - inter
        # Zero intersection means IoU 0 even when both boxes are degenerate.
        iou = np.where(inter > 0.0, inter / np.maximum(union, 1e-12), 0.0)

        order = rest[iou <= iou_threshold]

    return np.array(keep, dtype=np.int64)


def filter_by_confidence(boxes: Sequence[BoundingBox], threshold: float) -> List[BoundingBox]:
    return [b for b in boxes if b.confidence >= threshold]


def group_by_class(boxes: Sequence[BoundingBox]) -> Dict[int, List[BoundingBox]]:
    grouped: Dict[int, List[BoundingBox]] = {}
    for b in boxes:
        grouped.setdefault(b.class_id, []).append(b)
    return grouped


def _suppress_group(boxes: Sequence[BoundingBox], cfg: NMSConfig) -> List[int]:
    if not boxes:
        return []
    xyxy = np.array([b.as_xyxy() for b in boxes], dtype=np.float64)
    scores = np.array([b.confidence for b in boxes], dtype=np.float64)
    return nms_indices(xyxy, scores, cfg.iou_threshold, cfg.max_detections).tolist()


def suppress(boxes: Sequence[BoundingBox], cfg: NMSConfig = NMSConfig()) -> List[BoundingBox]:
    """
    Remove overlapping duplicates from one image's detections.

    Boxes under `cfg.confidence_floor` are dropped first. The result is ordered by
    confidence (descending, stable) and is always a subset of the input.
    """

    candidates = filter_by_confidence(boxes, cfg.confidence_floor)
    if not candidates:
        return []

    if not cfg.per_class:
        return [candidates[i] for i in _suppress_group(candidates, cfg)]

    members: Dict[int, List[int]] = {}
    for i, b in enumerate(candidates):
        members.setdefault(b.class_id, []).append(i)

    kept: List[int] = []
    for cls_id in sorted(members):
        idx = members[cls_id]
        kept.extend(idx[k] for k in _suppress_group([candidates[i] for i in idx], cfg))

    # Equal scores from different classes keep their input order.
    kept.sort(key=lambda i: (-candidates[i].confidence, i))
    if cfg.max_detections is not None:
        kept = kept[: cfg.max_detections]
    return [candidates[i] for i in kept]
