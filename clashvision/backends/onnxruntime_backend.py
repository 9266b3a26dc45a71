from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np

from ..errors import InferenceError, ModelLoadError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
ModelSource = Union[str, Path, bytes, bytearray, memoryview]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CPUExecutionProvider"])
    - input_name: override the auto-selected input name
    - intra_op_num_threads: 0 lets ORT decide
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    intra_op_num_threads: int = 0


class OnnxRuntimeBackend:
    """
    Owns one ONNX Runtime session built from a model file or in-memory model bytes.

    `infer` takes an NCHW float32 blob shaped (1, 3, H, W) and returns every model
    output keyed by name.
    """

    def __init__(self, model: ModelSource, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime`."
            ) from e

        self._ort = ort
        if isinstance(model, (bytes, bytearray, memoryview)):
            source: Any = bytes(model)
            self.model_path: Optional[Path] = None
            if not source:
                raise ModelLoadError("Model bytes are empty")
        else:
            self.model_path = Path(model)
            if not self.model_path.is_file():
                raise ModelLoadError(f"Model file not found: {self.model_path}")
            source = str(self.model_path)

        sess_opts = ort.SessionOptions()
        if cfg.intra_op_num_threads:
            sess_opts.intra_op_num_threads = int(cfg.intra_op_num_threads)
        providers = list(cfg.providers) if cfg.providers is not None else None
        try:
            self.session = ort.InferenceSession(source, sess_options=sess_opts, providers=providers)
        except Exception as exc:
            origin = self.model_path if self.model_path is not None else "<embedded bytes>"
            raise ModelLoadError(f"Model loading failed ({origin}): {exc}") from exc

        self.input_name = cfg.input_name or self.session.get_inputs()[0].name
        self.output_names = [o.name for o in self.session.get_outputs()]
        logger.info(
            "ONNX Runtime session ready (input=%s, outputs=%s, providers=%s)",
            self.input_name,
            self.output_names,
            self.providers_in_use,
        )

    @property
    def providers_in_use(self) -> Sequence[str]:
        if self.session is None:
            return ()
        return tuple(self.session.get_providers())

    def infer(self, blob: np.ndarray) -> Dict[str, np.ndarray]:
        if self.session is None:
            raise InferenceError("Inference session has been closed")
        try:
            outputs = self.session.run(self.output_names, {self.input_name: blob})
        except Exception as exc:
            raise InferenceError(f"Inference failed: {exc}") from exc
        return dict(zip(self.output_names, outputs))

    def close(self) -> None:
        # ORT has no explicit release; dropping the last reference frees the session.
        self.session = None

    def __call__(self, blob: np.ndarray) -> Dict[str, np.ndarray]:
        return self.infer(blob)
