from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple

import numpy as np

from .classes import class_name, color_for_class
from .types import BoundingBox


@dataclass(frozen=True)
class DrawConfig:
    line_width: int = 4
    # Composite the stroke layer with its per-pixel alpha; otherwise paint strokes opaquely.
    alpha_blend: bool = True
    show_confidence: bool = False
    font_size: float = 12.0

    def __post_init__(self) -> None:
        if self.line_width < 1:
            raise ValueError("line_width must be >= 1")
        if self.font_size <= 0:
            raise ValueError("font_size must be > 0")


def _box_to_pixels(box: BoundingBox, scale_x: float, scale_y: float, w: int, h: int) -> Tuple[int, int, int, int]:
    x1 = int(np.clip(round(box.x1 * scale_x), 0, w - 1))
    y1 = int(np.clip(round(box.y1 * scale_y), 0, h - 1))
    x2 = int(np.clip(round(box.x2 * scale_x), 0, w - 1))
    y2 = int(np.clip(round(box.y2 * scale_y), 0, h - 1))
    return x1, y1, x2, y2


def render(
    image_rgb: np.ndarray,
    boxes: Iterable[BoundingBox],
    input_size: Tuple[int, int],
    config: DrawConfig = DrawConfig(),
) -> np.ndarray:
    """
    Draw boxes on an RGB image and return a new RGB image.

    Args:
        image_rgb: (H, W, 3) uint8 image the boxes are drawn on.
        boxes: boxes in model input coordinates.
        input_size: (width, height) of the model input; boxes are scaled by
            image_w / input_w and image_h / input_h. Letterbox padding is not
            removed here, restore boxes first when drawing on the source image.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for render(). Install with `pip install opencv-python`.") from e

    if image_rgb is None or not hasattr(image_rgb, "shape"):
        raise TypeError("image_rgb must be a NumPy array (RGB).")
    if image_rgb.ndim != 3 or image_rgb.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_rgb, 'shape', None)}")

    h, w = image_rgb.shape[:2]
    in_w, in_h = input_size
    scale_x = w / in_w
    scale_y = h / in_h

    boxes = list(boxes)
    result = np.ascontiguousarray(image_rgb, dtype=np.uint8).copy()
    if not boxes:
        return result

    font_scale = config.font_size / 24.0
    font_thickness = max(1, int(round(config.font_size / 12.0)))

    # RGBA stroke layer; untouched pixels keep alpha 0.
    overlay = np.zeros((h, w, 4), dtype=np.uint8)
    for box in boxes:
        x1, y1, x2, y2 = _box_to_pixels(box, scale_x, scale_y, w, h)
        color = tuple(int(c) for c in color_for_class(box.class_id))
        cv2.rectangle(overlay, (x1, y1), (x2, y2), color, thickness=config.line_width, lineType=cv2.LINE_8)

        if config.show_confidence:
            label = f"{class_name(box.class_id)} {box.confidence:.2f}"
            (tw, th), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, font_thickness)
            # Above the box if there is room, else inside it.
            y_text = y1 - baseline if y1 - th - baseline >= 0 else min(y1 + th, h - 1)
            cv2.putText(
                overlay,
                label,
                (x1, y_text),
                cv2.FONT_HERSHEY_SIMPLEX,
                font_scale,
                color,
                thickness=font_thickness,
                lineType=cv2.LINE_8,
            )

    alpha = overlay[:, :, 3]
    painted = alpha > 0
    if not config.alpha_blend:
        result[painted] = overlay[painted, :3]
        return result

    a = alpha[painted].astype(np.uint16)[:, None]
    fg = overlay[painted, :3].astype(np.uint16)
    bg = result[painted].astype(np.uint16)
    result[painted] = ((fg * a + bg * (255 - a)) // 255).astype(np.uint8)
    return result
