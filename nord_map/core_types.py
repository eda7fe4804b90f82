# nord_map/core_types.py
from __future__ import annotations

"""
Core type aliases, small value objects, and lightweight helpers.
"""

from dataclasses import dataclass
from typing import Dict, NamedTuple, Tuple, Union

import numpy as np
from numpy.typing import NDArray

# Basic aliases

RGBTuple = Tuple[int, int, int]
HexStr = str

U8Image = NDArray[np.uint8]  # (H, W, 3) or (H, W, 4)
U8Mask = NDArray[np.uint8]  # (H, W)
Lab = NDArray[np.float32]  # (..., 3) CIE Lab
Lch = NDArray[np.float32]  # (..., 3) CIE LCh
LabelMap = NDArray[np.int16]  # (H, W) class index or UNKNOWN_LABEL
IndexMap = NDArray[np.int16]  # (H, W) palette identifier

PaletteRef = Union[int, str]  # palette identifier or name ("nord8")
NameOf = Dict[HexStr, str]  # "#rrggbb" -> palette name

UNKNOWN_LABEL = -1

# Value objects


@dataclass(frozen=True)
class PaletteItem:
    """Palette entry with its identifier and precomputed Lab and LCh rows."""

    index: int
    name: str
    group: str
    rgb: RGBTuple
    lab: Lab  # shape (3,)
    lch: Lch  # shape (3,)

    @property
    def hex(self) -> HexStr:
        return rgb_to_hex(self.rgb)


class Match(NamedTuple):
    """Chosen palette identifier and its distance to the query colour."""

    index: int
    distance: float


# Small helpers


def rgb_to_hex(rgb: RGBTuple) -> HexStr:
    """RGB tuple to lowercase hex string '#rrggbb'."""
    return f"#{rgb[0]:02x}{rgb[1]:02x}{rgb[2]:02x}"


def hex_to_rgb(hex_str: str) -> RGBTuple:
    """Parse '#rgb' or '#rrggbb' (case-insensitive, '#' optional) into an RGB tuple."""
    s = hex_str.strip().lower()
    if not s.startswith("#"):
        s = f"#{s}"
    if len(s) == 4:
        r, g, b = s[1], s[2], s[3]
        s = f"#{r}{r}{g}{g}{b}{b}"
    if len(s) != 7:
        raise ValueError(f"hex must be '#rrggbb' or '#rgb', got {hex_str!r}")
    try:
        return (int(s[1:3], 16), int(s[3:5], 16), int(s[5:7], 16))
    except ValueError:
        raise ValueError(f"invalid hex colour {hex_str!r}") from None


def read_only(arr: np.ndarray) -> np.ndarray:
    """Mark an array as read-only and return it."""
    arr.setflags(write=False)
    return arr


__all__ = [
    # aliases / types
    "RGBTuple",
    "HexStr",
    "U8Image",
    "U8Mask",
    "Lab",
    "Lch",
    "LabelMap",
    "IndexMap",
    "PaletteRef",
    "NameOf",
    "UNKNOWN_LABEL",
    # value objects
    "PaletteItem",
    "Match",
    # helpers
    "rgb_to_hex",
    "hex_to_rgb",
    "read_only",
]
