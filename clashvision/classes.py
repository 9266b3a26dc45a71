from __future__ import annotations

from enum import IntEnum
from typing import Tuple

RGBA = Tuple[int, int, int, int]

UNKNOWN_CLASS_NAME = "Unknown"
FALLBACK_COLOR: RGBA = (0x80, 0x10, 0x40, 0xFF)


class ClashClass(IntEnum):
    """
    Classes emitted by the bundled detector, in model output order.
    """

    ELIXIR_STORAGE = 0
    GOLD_STORAGE = 1

    @property
    def display_name(self) -> str:
        return _NAMES[self]

    @property
    def color(self) -> RGBA:
        return _COLORS[self]

    @classmethod
    def num_classes(cls) -> int:
        return len(cls)


_NAMES = {
    ClashClass.ELIXIR_STORAGE: "Elixir Storage",
    ClashClass.GOLD_STORAGE: "Gold Storage",
}

_COLORS = {
    ClashClass.ELIXIR_STORAGE: (255, 0, 255, 255),  # magenta
    ClashClass.GOLD_STORAGE: (212, 175, 55, 255),  # gold
}

# Indexed by class id; RGB(A) order, not OpenCV's BGR.
PALETTE: Tuple[RGBA, ...] = tuple(c.color for c in ClashClass)


def class_name(class_id: int) -> str:
    try:
        return ClashClass(class_id).display_name
    except ValueError:
        return UNKNOWN_CLASS_NAME


def color_for_class(class_id: int) -> RGBA:
    if 0 <= class_id < len(PALETTE):
        return PALETTE[class_id]
    return FALLBACK_COLOR
