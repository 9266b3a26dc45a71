"""
Pre/post-processing pipeline around a single-stage object detector.

Letterbox an image, run it through an inference runtime, decode the raw head
output, suppress duplicates, then draw and export the detections. Only NumPy
and OpenCV are needed for the pipeline itself; ONNX Runtime is imported when a
session is built from a model file.
"""

from .classes import ClashClass, class_name, color_for_class
from .config import ModelInfo, SessionConfig, load_session_config
from .decode import DenseAnchorFreeDecoder, DetectorVariant, TopKDecoder, create_decoder
from .errors import (
    ClashVisionError,
    ConfigError,
    ImageLoadError,
    InferenceError,
    ModelLoadError,
    OutputWriteError,
    ShapeError,
)
from .export import DetectionStats, ExportConfig, ExportFormat, export, parse_text
from .image import ImageBuffer, ImageSize, NormalizationConfig, load_image, normalize, preprocess
from .letterbox import LetterboxInfo, letterbox
from .nms import NMSConfig, nms_indices, suppress
from .session import BatchItem, DetectionSession, ImageResult, SessionState, load_session
from .types import BoundingBox, NormalizedBox
from .visualize import DrawConfig, render

__version__ = "0.2.0"

__all__ = [
    "BatchItem",
    "BoundingBox",
    "ClashClass",
    "ClashVisionError",
    "ConfigError",
    "DenseAnchorFreeDecoder",
    "DetectionSession",
    "DetectionStats",
    "DetectorVariant",
    "DrawConfig",
    "ExportConfig",
    "ExportFormat",
    "ImageBuffer",
    "ImageLoadError",
    "ImageResult",
    "ImageSize",
    "InferenceError",
    "LetterboxInfo",
    "ModelInfo",
    "ModelLoadError",
    "NMSConfig",
    "NormalizationConfig",
    "NormalizedBox",
    "OutputWriteError",
    "SessionConfig",
    "SessionState",
    "ShapeError",
    "TopKDecoder",
    "class_name",
    "color_for_class",
    "create_decoder",
    "export",
    "letterbox",
    "load_image",
    "load_session",
    "load_session_config",
    "nms_indices",
    "normalize",
    "parse_text",
    "preprocess",
    "render",
    "suppress",
]
