"""
Error kinds raised by the detection pipeline.

Everything derives from `ClashVisionError` so batch callers can catch a single
type per item; each kind also subclasses the builtin it refines.
"""

from __future__ import annotations


class ClashVisionError(Exception):
    pass


class ImageLoadError(ClashVisionError):
    """Input path is missing or the file cannot be decoded as an image."""


class InferenceError(ClashVisionError, RuntimeError):
    """The inference runtime failed or did not return the expected output tensor."""


class ShapeError(ClashVisionError, ValueError):
    """A raw output tensor does not match the layout the decoder expects."""


class OutputWriteError(ClashVisionError, OSError):
    """Creating the output directory or writing a result file failed."""


class ConfigError(ClashVisionError, ValueError):
    """Unsupported detector variant or invalid session configuration."""


class ModelLoadError(ClashVisionError, RuntimeError):
    """The inference handle could not be constructed; the session is unusable."""
