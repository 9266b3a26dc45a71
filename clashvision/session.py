from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from importlib import resources
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .config import ModelInfo, SessionConfig
from .decode import DetectorVariant, create_decoder
from .errors import ClashVisionError, InferenceError, ModelLoadError, OutputWriteError
from .export import DetectionStats, export
from .image import ImageBuffer, load_image, normalize, preprocess
from .nms import suppress
from .types import BoundingBox
from .visualize import render

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
InferFn = Callable[[np.ndarray], Mapping[str, np.ndarray]]

OUTPUT_NAME = "output0"
DEFAULT_OUTPUT_DIR = "output"
EMBEDDED_MODEL = "models/best.onnx"


class SessionState(str, Enum):
    CREATED = "created"
    IMAGE_LOADED = "image_loaded"
    INFERRED = "inferred"
    SUPPRESSED = "suppressed"
    RENDERED = "rendered"
    SAVED = "saved"


_ORDER = list(SessionState)


@dataclass(frozen=True)
class ImageResult:
    image_path: Path
    detections: List[BoundingBox]
    image_size: Tuple[int, int]
    annotated_path: Path
    detections_path: Path

    @property
    def num_detections(self) -> int:
        return len(self.detections)


@dataclass(frozen=True)
class BatchItem:
    """
    Outcome of one image in `process_images`: exactly one of result / error is set.
    """

    image_path: Path
    result: Optional[ImageResult] = None
    error: Optional[ClashVisionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _model_root(root: Optional[PathLike]) -> Path:
    # "auto": the closest directory holding a pyproject.toml, walking up from cwd.
    if root is not None and root != "auto":
        return Path(root).resolve()
    cwd = Path.cwd().resolve()
    return next((d for d in (cwd, *cwd.parents) if (d / "pyproject.toml").is_file()), cwd)


def load_embedded_model_bytes() -> bytes:
    """
    Model bytes shipped as package data under `clashvision/models/`.
    """

    try:
        return resources.files("clashvision").joinpath(EMBEDDED_MODEL).read_bytes()
    except (FileNotFoundError, OSError) as exc:
        raise ModelLoadError(f"No embedded model found at clashvision/{EMBEDDED_MODEL}") from exc


class DetectionSession:
    """
    Runs one image at a time through letterbox -> inference -> decode -> NMS -> render -> save.

    The session owns the inference handle and its `SessionConfig`. It is not safe to
    call concurrently; give each worker its own session.
    """

    def __init__(
        self,
        infer_fn: InferFn,
        *,
        variant: Union[str, DetectorVariant] = DetectorVariant.YOLOV8,
        config: SessionConfig = SessionConfig(),
        model_name: Optional[str] = None,
        backend: Optional[Any] = None,
    ):
        self.variant = DetectorVariant.parse(variant)
        self.decoder = create_decoder(self.variant)
        self.config = config
        self.model_name = model_name or self.variant.value
        self.backend = backend
        self._infer_fn = infer_fn
        self.state = SessionState.CREATED

    @classmethod
    def from_path(
        cls,
        model_path: PathLike,
        *,
        variant: Union[str, DetectorVariant] = DetectorVariant.YOLOV8,
        config: SessionConfig = SessionConfig(),
        providers: Optional[Sequence[str]] = None,
    ) -> "DetectionSession":
        return cls._from_model(Path(model_path), Path(model_path).stem, variant, config, providers)

    @classmethod
    def from_bytes(
        cls,
        model_bytes: bytes,
        *,
        variant: Union[str, DetectorVariant] = DetectorVariant.YOLOV8,
        config: SessionConfig = SessionConfig(),
        providers: Optional[Sequence[str]] = None,
        model_name: str = "embedded",
    ) -> "DetectionSession":
        return cls._from_model(model_bytes, model_name, variant, config, providers)

    @classmethod
    def from_embedded(
        cls,
        *,
        variant: Union[str, DetectorVariant] = DetectorVariant.YOLOV8,
        config: SessionConfig = SessionConfig(),
        providers: Optional[Sequence[str]] = None,
    ) -> "DetectionSession":
        return cls.from_bytes(load_embedded_model_bytes(), variant=variant, config=config, providers=providers)

    @classmethod
    def _from_model(cls, model, model_name, variant, config, providers) -> "DetectionSession":
        # Validate the variant before paying for model construction.
        parsed = DetectorVariant.parse(variant)
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        backend = OnnxRuntimeBackend(model, OnnxRuntimeBackendConfig(providers=providers))
        return cls(backend.infer, variant=parsed, config=config, model_name=model_name, backend=backend)

    def __enter__(self) -> "DetectionSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self.backend is not None and hasattr(self.backend, "close"):
            self.backend.close()
        self.backend = None

    def update_config(self, config: SessionConfig) -> None:
        self.config = config

    def model_info(self) -> ModelInfo:
        cfg = self.config
        return ModelInfo(
            model_name=self.model_name,
            variant=self.variant,
            input_size=cfg.input_size,
            confidence_threshold=cfg.confidence_threshold,
            iou_threshold=cfg.iou_threshold,
            use_nms=cfg.use_nms,
            per_class_nms=cfg.per_class_nms,
            max_detections=cfg.max_detections,
        )

    # ------------------------------------------------------------------ #
    # Pipeline stages
    # ------------------------------------------------------------------ #
    def _advance(self, target: SessionState) -> None:
        current = _ORDER.index(self.state)
        if _ORDER.index(target) != current + 1:
            raise RuntimeError(f"Invalid session transition {self.state.value} -> {target.value}")
        self.state = target

    def _load(self, source: Union[PathLike, np.ndarray]) -> Tuple[np.ndarray, ImageBuffer]:
        cfg = self.config
        rgb = source if isinstance(source, np.ndarray) else load_image(source)
        buf = preprocess(rgb, cfg.input_size, cfg.padding_color, cfg.resize_filter)
        self._advance(SessionState.IMAGE_LOADED)
        return rgb, buf

    def _infer(self, buf: ImageBuffer) -> List[BoundingBox]:
        norm = self.config.normalization
        tensor = normalize(buf, norm.mean, norm.std).to_tensor()
        try:
            outputs = self._infer_fn(tensor)
        except ClashVisionError:
            raise
        except Exception as exc:
            raise InferenceError(f"Inference failed: {exc}") from exc

        if not isinstance(outputs, Mapping) or OUTPUT_NAME not in outputs:
            available = sorted(outputs.keys()) if isinstance(outputs, Mapping) else type(outputs).__name__
            raise InferenceError(f"Model output {OUTPUT_NAME!r} not found (got {available})")

        boxes = self.decoder.decode(np.asarray(outputs[OUTPUT_NAME]), self.config.confidence_threshold)
        self._advance(SessionState.INFERRED)
        logger.debug("Decoded %d candidate(s)", len(boxes))
        return boxes

    def _suppress(self, boxes: List[BoundingBox]) -> List[BoundingBox]:
        if self.config.use_nms:
            boxes = suppress(boxes, self.config.nms)
        self._advance(SessionState.SUPPRESSED)
        return boxes

    def _render(
        self, rgb: np.ndarray, buf: ImageBuffer, boxes: List[BoundingBox]
    ) -> Tuple[np.ndarray, List[BoundingBox]]:
        cfg = self.config
        if cfg.restore_original:
            boxes = [buf.letterbox.restore(b) for b in boxes]
            canvas = rgb
            input_size = buf.letterbox.source_size
        else:
            canvas = buf.to_hwc()
            input_size = cfg.input_size
        annotated = render(canvas, boxes, input_size, cfg.draw)
        self._advance(SessionState.RENDERED)
        return annotated, boxes

    def _save(
        self, annotated: np.ndarray, boxes: List[BoundingBox], image_path: Path, output_dir: Path
    ) -> Tuple[Path, Path]:
        try:
            import cv2  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("OpenCV is required to save outputs. Install with `pip install opencv-python`.") from e

        cfg = self.config
        h, w = annotated.shape[:2]
        stem = image_path.stem
        image_out = output_dir / f"{stem}.jpg"
        record_out = output_dir / f"{stem}.{cfg.export_format.extension}"

        # Encode everything before touching the filesystem.
        ok, encoded = cv2.imencode(".jpg", cv2.cvtColor(annotated, cv2.COLOR_RGB2BGR))
        if not ok:
            raise OutputWriteError(f"Failed to encode annotated image for {image_path}")
        record = export(boxes, (w, h), cfg.export_format, cfg.export)

        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(f"Could not create output directory {output_dir}: {exc}") from exc

        try:
            image_out.write_bytes(encoded.tobytes())
        except OSError as exc:
            raise OutputWriteError(f"Failed to write {image_out}: {exc}") from exc
        try:
            record_out.write_bytes(record)
        except OSError as exc:
            image_out.unlink(missing_ok=True)
            raise OutputWriteError(f"Failed to write {record_out}: {exc}") from exc

        self._advance(SessionState.SAVED)
        return image_out, record_out

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def detect(self, source: Union[PathLike, np.ndarray]) -> List[BoundingBox]:
        """
        Detections in model input coordinates, without rendering or writing files.

        `source` is an image path or an RGB (H, W, 3) uint8 array.
        """

        self.state = SessionState.CREATED
        _, buf = self._load(source)
        return self._suppress(self._infer(buf))

    def process_image(self, image_path: PathLike, output_dir: Optional[PathLike] = None) -> ImageResult:
        """
        Detect objects in one image and write `<output_dir>/<stem>.jpg` plus the detection record.

        Any failure raises before anything is written for this image.
        """

        path = Path(image_path)
        out_dir = Path(output_dir) if output_dir is not None else Path(DEFAULT_OUTPUT_DIR)
        self.state = SessionState.CREATED

        rgb, buf = self._load(path)
        boxes = self._suppress(self._infer(buf))
        annotated, boxes = self._render(rgb, buf, boxes)
        image_out, record_out = self._save(annotated, boxes, path, out_dir)

        stats = DetectionStats.from_boxes(boxes)
        logger.info(
            "%s: %d detection(s), classes=%s -> %s",
            path.name,
            stats.total_detections,
            stats.classes_detected,
            image_out,
        )
        h, w = annotated.shape[:2]
        return ImageResult(
            image_path=path,
            detections=boxes,
            image_size=(w, h),
            annotated_path=image_out,
            detections_path=record_out,
        )

    def process_images(self, image_paths: Sequence[PathLike], output_dir: Optional[PathLike] = None) -> List[BatchItem]:
        """
        Process images independently; a failing image is recorded and the batch continues.
        """

        items: List[BatchItem] = []
        for p in image_paths:
            path = Path(p)
            try:
                result = self.process_image(path, output_dir)
            except ClashVisionError as exc:
                logger.warning("Failed to process %s at stage %s: %s", path, self.state.value, exc)
                items.append(BatchItem(image_path=path, error=exc))
                continue
            items.append(BatchItem(image_path=path, result=result))

        failed = sum(1 for item in items if not item.ok)
        logger.info("Batch done: %d image(s), %d failed", len(items), failed)
        return items


def load_session(
    model_path: PathLike,
    *,
    variant: Union[str, DetectorVariant] = DetectorVariant.YOLOV8,
    config: SessionConfig = SessionConfig(),
    root: Optional[PathLike] = "auto",
    providers: Optional[Sequence[str]] = None,
) -> DetectionSession:
    """
    Create a session for a model on disk.

    Absolute paths are used as given. A relative path is joined to `root`; with
    the default `root="auto"` that is the nearest directory at or above the
    working directory containing a pyproject.toml, or the working directory
    itself when there is none:
        session = load_session("models/best.onnx")
    """

    resolved = Path(model_path)
    if not resolved.is_absolute():
        resolved = (_model_root(root) / resolved).resolve()
    if resolved.suffix.lower() != ".onnx":
        raise ModelLoadError(f"Expected an .onnx model, got {resolved.name!r}")
    return DetectionSession.from_path(resolved, variant=variant, config=config, providers=providers)

