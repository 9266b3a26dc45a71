from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .decode import DetectorVariant
from .errors import ConfigError
from .export import ExportConfig, ExportFormat
from .image import NormalizationConfig
from .letterbox import PADDING_COLOR, RESIZE_FILTERS
from .nms import NMSConfig
from .visualize import DrawConfig


@dataclass(frozen=True)
class SessionConfig:
    """
    Per-run settings for a `DetectionSession`. Swap the whole object to change them.
    """

    input_size: Tuple[int, int] = (640, 640)
    confidence_threshold: float = 0.25
    iou_threshold: float = 0.45
    use_nms: bool = True
    per_class_nms: bool = False
    max_detections: Optional[int] = None
    padding_color: Tuple[int, int, int] = PADDING_COLOR
    resize_filter: str = "lanczos"
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig.none)
    draw: DrawConfig = field(default_factory=DrawConfig)
    export_format: ExportFormat = ExportFormat.TEXT
    include_confidence: bool = False
    # Draw/export in source image pixels instead of on the letterboxed model input.
    restore_original: bool = False

    def __post_init__(self) -> None:
        w, h = self.input_size
        if w < 1 or h < 1:
            raise ConfigError("input_size must be positive")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigError("confidence_threshold must be within [0, 1]")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ConfigError("iou_threshold must be within [0, 1]")
        if self.max_detections is not None and self.max_detections < 1:
            raise ConfigError("max_detections must be >= 1 when set")
        if len(self.padding_color) != 3 or any(not 0 <= c <= 255 for c in self.padding_color):
            raise ConfigError("padding_color must be three values within [0, 255]")
        if self.resize_filter not in RESIZE_FILTERS:
            raise ConfigError(f"resize_filter must be one of {sorted(RESIZE_FILTERS)}")
        if not isinstance(self.export_format, ExportFormat):
            raise ConfigError("export_format must be an ExportFormat")

    @property
    def nms(self) -> NMSConfig:
        return NMSConfig(
            iou_threshold=self.iou_threshold,
            confidence_floor=self.confidence_threshold,
            max_detections=self.max_detections,
            per_class=self.per_class_nms,
        )

    @property
    def export(self) -> ExportConfig:
        return ExportConfig(include_confidence=self.include_confidence)


@dataclass(frozen=True)
class ModelInfo:
    model_name: str
    variant: DetectorVariant
    input_size: Tuple[int, int]
    confidence_threshold: float
    iou_threshold: float
    use_nms: bool
    per_class_nms: bool
    max_detections: Optional[int]


def _require_bool(payload: Dict[str, Any], key: str) -> bool:
    value = payload[key]
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _require_number(payload: Dict[str, Any], key: str) -> float:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number")
    return float(value)


def _require_int_list(payload: Dict[str, Any], key: str, length: int) -> Tuple[int, ...]:
    value = payload[key]
    if (
        not isinstance(value, list)
        or len(value) != length
        or any(isinstance(v, bool) or not isinstance(v, int) for v in value)
    ):
        raise ConfigError(f"{key} must be a list of {length} integers")
    return tuple(value)


_DRAW_KEYS = {"line_width", "alpha_blend", "show_confidence", "font_size"}
_NORM_KEYS = {"mean", "std"}
_ALLOWED_KEYS = {
    "variant",
    "input_size",
    "confidence_threshold",
    "iou_threshold",
    "use_nms",
    "per_class_nms",
    "max_detections",
    "padding_color",
    "resize_filter",
    "normalization",
    "draw",
    "export_format",
    "include_confidence",
    "restore_original",
}


def session_config_from_dict(payload: Dict[str, Any]) -> Tuple[SessionConfig, Optional[DetectorVariant]]:
    """
    Build a `SessionConfig` from a JSON-style mapping.

    Returns the config and the detector variant if the payload names one.
    """

    unknown = sorted(set(payload.keys()) - _ALLOWED_KEYS)
    if unknown:
        raise ConfigError(f"Unknown session config keys: {unknown}")

    kwargs: Dict[str, Any] = {}
    variant = DetectorVariant.parse(payload["variant"]) if "variant" in payload else None

    if "input_size" in payload:
        kwargs["input_size"] = _require_int_list(payload, "input_size", 2)
    if "padding_color" in payload:
        kwargs["padding_color"] = _require_int_list(payload, "padding_color", 3)
    for key in ("confidence_threshold", "iou_threshold"):
        if key in payload:
            kwargs[key] = _require_number(payload, key)
    for key in ("use_nms", "per_class_nms", "include_confidence", "restore_original"):
        if key in payload:
            kwargs[key] = _require_bool(payload, key)
    if payload.get("max_detections") is not None:
        value = payload["max_detections"]
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError("max_detections must be an integer or null")
        kwargs["max_detections"] = value
    if "resize_filter" in payload:
        if not isinstance(payload["resize_filter"], str):
            raise ConfigError("resize_filter must be a string")
        kwargs["resize_filter"] = payload["resize_filter"]
    if "export_format" in payload:
        try:
            kwargs["export_format"] = ExportFormat.parse(payload["export_format"])
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

    norm = payload.get("normalization")
    if norm is not None:
        if norm == "imagenet":
            kwargs["normalization"] = NormalizationConfig.imagenet()
        elif norm == "none":
            kwargs["normalization"] = NormalizationConfig.none()
        elif isinstance(norm, dict) and set(norm.keys()) <= _NORM_KEYS:
            try:
                kwargs["normalization"] = NormalizationConfig(
                    mean=tuple(float(v) for v in norm.get("mean", (0.0, 0.0, 0.0))),
                    std=tuple(float(v) for v in norm.get("std", (1.0, 1.0, 1.0))),
                )
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"Invalid normalization: {exc}") from exc
        else:
            raise ConfigError("normalization must be 'none', 'imagenet' or an object with mean/std")

    draw = payload.get("draw")
    if draw is not None:
        if not isinstance(draw, dict):
            raise ConfigError("draw must be an object")
        draw_unknown = sorted(set(draw.keys()) - _DRAW_KEYS)
        if draw_unknown:
            raise ConfigError(f"Unknown draw keys: {draw_unknown}")
        try:
            kwargs["draw"] = DrawConfig(**draw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid draw config: {exc}") from exc

    return SessionConfig(**kwargs), variant


def load_session_config(path: Path) -> Tuple[SessionConfig, Optional[DetectorVariant]]:
    if not path.exists():
        raise ConfigError(f"Session config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid session config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("Session config must be a JSON object")
    return session_config_from_dict(payload)
