from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np

from .types import BoundingBox

PADDING_COLOR: Tuple[int, int, int] = (112, 112, 112)

RESIZE_FILTERS: Dict[str, str] = {
    "nearest": "INTER_NEAREST",
    "linear": "INTER_LINEAR",
    "cubic": "INTER_CUBIC",
    "area": "INTER_AREA",
    "lanczos": "INTER_LANCZOS4",
}


def _cv2():
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterboxing. Install with `pip install opencv-python`.") from e
    return cv2


@dataclass(frozen=True)
class LetterboxInfo:
    """
    Geometry of one letterbox operation.

    scale: uniform resize factor (new / old)
    pad: (left, top) padding in target pixels
    source_size / resized_size / target_size: (width, height)
    """

    scale: float
    pad: Tuple[int, int]
    source_size: Tuple[int, int]
    resized_size: Tuple[int, int]
    target_size: Tuple[int, int]

    def restore(self, box: BoundingBox) -> BoundingBox:
        """
        Map a box from letterboxed target space back to source image pixels.
        """

        left, top = self.pad
        src_w, src_h = self.source_size
        x1 = float(np.clip((box.x1 - left) / self.scale, 0, src_w))
        y1 = float(np.clip((box.y1 - top) / self.scale, 0, src_h))
        x2 = float(np.clip((box.x2 - left) / self.scale, 0, src_w))
        y2 = float(np.clip((box.y2 - top) / self.scale, 0, src_h))
        return BoundingBox(x1, y1, x2, y2, box.class_id, box.confidence)


def compute_letterbox(source_size: Tuple[int, int], target_size: Tuple[int, int]) -> LetterboxInfo:
    src_w, src_h = source_size
    target_w, target_h = target_size
    if src_w <= 0 or src_h <= 0:
        raise ValueError(f"Source size must be positive, got {source_size}")
    if target_w <= 0 or target_h <= 0:
        raise ValueError(f"Target size must be positive, got {target_size}")

    r = min(target_w / src_w, target_h / src_h)
    new_w = min(target_w, max(1, int(round(src_w * r))))
    new_h = min(target_h, max(1, int(round(src_h * r))))

    # Centered; any odd pixel goes to the right/bottom edge.
    left = (target_w - new_w) // 2
    top = (target_h - new_h) // 2
    return LetterboxInfo(
        scale=r,
        pad=(left, top),
        source_size=(src_w, src_h),
        resized_size=(new_w, new_h),
        target_size=(target_w, target_h),
    )


def letterbox(
    image: np.ndarray,
    new_shape: Tuple[int, int] = (640, 640),
    color: Tuple[int, int, int] = PADDING_COLOR,
    resize_filter: str = "lanczos",
) -> Tuple[np.ndarray, LetterboxInfo]:
    """
    Resize an (H, W, 3) image to fit `new_shape` (width, height) without distortion
    and pad the remainder with `color`, keeping the resized image centered.

    Returns:
        padded: (target_h, target_w, 3) uint8 image
        info: scale/padding needed to map coordinates back
    """

    cv2 = _cv2()
    if resize_filter not in RESIZE_FILTERS:
        raise ValueError(f"Unknown resize filter {resize_filter!r}; expected one of {sorted(RESIZE_FILTERS)}")
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {image.shape}")

    h, w = image.shape[:2]
    info = compute_letterbox((w, h), new_shape)
    new_w, new_h = info.resized_size

    if (w, h) != (new_w, new_h):
        interpolation = getattr(cv2, RESIZE_FILTERS[resize_filter])
        image = cv2.resize(image, (new_w, new_h), interpolation=interpolation)

    target_w, target_h = info.target_size
    padded = np.empty((target_h, target_w, 3), dtype=np.uint8)
    padded[:, :] = np.asarray(color, dtype=np.uint8)
    left, top = info.pad
    padded[top : top + new_h, left : left + new_w] = image
    return padded, info
