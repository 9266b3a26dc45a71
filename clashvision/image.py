from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Tuple, Union

import numpy as np

from .errors import ImageLoadError
from .letterbox import PADDING_COLOR, LetterboxInfo, letterbox

PathLike = Union[str, Path]
ImageSource = Union[str, Path, np.ndarray]

IMAGENET_MEAN: Tuple[float, float, float] = (0.485, 0.456, 0.406)
IMAGENET_STD: Tuple[float, float, float] = (0.229, 0.224, 0.225)
DEFAULT_MEAN: Tuple[float, float, float] = (0.0, 0.0, 0.0)
DEFAULT_STD: Tuple[float, float, float] = (1.0, 1.0, 1.0)


@dataclass(frozen=True)
class ImageSize:
    width: int
    height: int

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    def as_tuple(self) -> Tuple[int, int]:
        return self.width, self.height


@dataclass(frozen=True)
class NormalizationConfig:
    mean: Tuple[float, float, float] = DEFAULT_MEAN
    std: Tuple[float, float, float] = DEFAULT_STD

    def __post_init__(self) -> None:
        if len(self.mean) != 3 or len(self.std) != 3:
            raise ValueError("mean and std must have exactly 3 channels")
        if any(s == 0 for s in self.std):
            raise ValueError("std values must be non-zero")

    @classmethod
    def none(cls) -> "NormalizationConfig":
        return cls(DEFAULT_MEAN, DEFAULT_STD)

    @classmethod
    def imagenet(cls) -> "NormalizationConfig":
        return cls(IMAGENET_MEAN, IMAGENET_STD)


@dataclass(frozen=True)
class ImageBuffer:
    """
    Planar (C, H, W) image plus the letterbox geometry that produced it.

    `data` is uint8 straight out of `preprocess` and float32 after `normalize`.
    """

    data: np.ndarray
    size: ImageSize
    letterbox: LetterboxInfo

    @property
    def source_size(self) -> ImageSize:
        return ImageSize(*self.letterbox.source_size)

    def to_tensor(self) -> np.ndarray:
        """(1, 3, H, W) contiguous float32 tensor for the inference runtime."""
        return np.ascontiguousarray(self.data[None, ...], dtype=np.float32)

    def to_hwc(self) -> np.ndarray:
        return np.ascontiguousarray(np.transpose(self.data, (1, 2, 0)))


def load_image(path: PathLike) -> np.ndarray:
    """
    Read an image file as an RGB (H, W, 3) uint8 array.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for load_image(). Install with `pip install opencv-python`.") from e

    p = Path(path)
    if not p.is_file():
        raise ImageLoadError(f"Invalid image path: {p}")

    # imdecode instead of imread so non-ASCII paths work on every platform.
    try:
        raw = np.fromfile(str(p), dtype=np.uint8)
    except OSError as exc:
        raise ImageLoadError(f"Could not read image at path: {p}") from exc
    img = cv2.imdecode(raw, cv2.IMREAD_COLOR) if raw.size else None
    if img is None:
        raise ImageLoadError(f"Could not decode image at path: {p}")
    return cv2.cvtColor(img, cv2.COLOR_BGR2RGB)


def preprocess(
    source: ImageSource,
    target_size: Tuple[int, int] = (640, 640),
    pad_color: Tuple[int, int, int] = PADDING_COLOR,
    resize_filter: str = "lanczos",
) -> ImageBuffer:
    """
    Load (if needed), letterbox to `target_size` (width, height) and convert to CHW uint8.

    Args:
        source: image path or an RGB (H, W, 3) uint8 array
        pad_color: RGB fill for the letterbox border
    """

    if isinstance(source, np.ndarray):
        rgb = source
        if rgb.ndim != 3 or rgb.shape[2] != 3:
            raise ImageLoadError(f"Expected image shape (H, W, 3), got {rgb.shape}")
        if rgb.dtype != np.uint8:
            raise ImageLoadError(f"Expected uint8 image, got {rgb.dtype}")
    else:
        rgb = load_image(source)

    padded, info = letterbox(rgb, new_shape=target_size, color=pad_color, resize_filter=resize_filter)
    chw = np.ascontiguousarray(np.transpose(padded, (2, 0, 1)))
    return ImageBuffer(data=chw, size=ImageSize(*info.target_size), letterbox=info)


def normalize(
    image: ImageBuffer,
    mean: Tuple[float, float, float] = DEFAULT_MEAN,
    std: Tuple[float, float, float] = DEFAULT_STD,
) -> ImageBuffer:
    """
    out = (in / 255 - mean[c]) / std[c], as in * scale[c] + offset[c].
    """

    norm = NormalizationConfig(tuple(mean), tuple(std))
    std_arr = np.asarray(norm.std, dtype=np.float32)
    mean_arr = np.asarray(norm.mean, dtype=np.float32)
    scale = (1.0 / (255.0 * std_arr)).reshape(3, 1, 1)
    offset = (-mean_arr / std_arr).reshape(3, 1, 1)

    # astype always copies, so the uint8 buffer is never aliased.
    out = image.data.astype(np.float32) * scale + offset
    return replace(image, data=out.astype(np.float32, copy=False))
