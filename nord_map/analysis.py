# nord_map/analysis.py
from __future__ import annotations

"""
Source image analysis.

Exports:
  ImageInformation
  unique_visible_rgb(rgb, alpha) -> (uniques [U,3], counts [U])
  image_information(rgb, alpha=None) -> ImageInformation
  is_flat_artwork(info, ...) -> bool
  auto_adjust(config, info) -> MappingConfig

Notes:
  - Brightness is mean CIE L* / 100 over visible pixels; brightness_scale maps
    it onto 1..9 for reporting.
  - auto_adjust switches dithering off for flat artwork (few unique colours
    or a handful of colours covering most pixels), where diffusion would only
    add noise, and on for photographic content.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .colour_convert import rgb_to_lab
from .config import MappingConfig
from .constants import AUTO_MAX_UNIQUES, AUTO_SHARE_THRESH, AUTO_TOPK
from .core_types import U8Image, U8Mask


@dataclass(frozen=True)
class ImageInformation:
    width: int
    height: int
    visible_pixels: int
    brightness_mean: float  # 0..1
    brightness_min: float
    brightness_max: float
    unique_colours: int
    top_share: float  # share of visible pixels covered by the AUTO_TOPK commonest colours

    @property
    def brightness_scale(self) -> float:
        """Mean brightness on a 1..9 scale."""
        return self.brightness_mean * 8.0 + 1.0


def unique_visible_rgb(
    rgb: U8Image, alpha: Optional[U8Mask] = None
) -> Tuple[U8Image, np.ndarray]:
    """Return (unique RGB rows among alpha>0, counts)."""
    if alpha is None:
        flat_rgb = rgb[..., :3].reshape(-1, 3)
    else:
        visible_mask = alpha > 0
        if not np.any(visible_mask):
            return np.zeros((0, 3), dtype=np.uint8), np.zeros((0,), dtype=np.int64)
        flat_rgb = rgb[..., :3][visible_mask].reshape(-1, 3)
    uniques, counts = np.unique(flat_rgb, axis=0, return_counts=True)
    return uniques.astype(np.uint8, copy=False), counts.astype(np.int64, copy=False)


def image_information(rgb: U8Image, alpha: Optional[U8Mask] = None) -> ImageInformation:
    height, width = int(rgb.shape[0]), int(rgb.shape[1])
    uniques, counts = unique_visible_rgb(rgb, alpha)
    total = int(counts.sum())
    if total == 0:
        return ImageInformation(width, height, 0, 0.0, 0.0, 0.0, 0, 1.0)

    # Lightness per unique colour, weighted by its pixel count
    lightness = rgb_to_lab(uniques)[:, 0].astype(np.float64) / 100.0
    lightness = np.clip(lightness, 0.0, 1.0)
    mean = float(np.average(lightness, weights=counts))

    k = min(AUTO_TOPK, counts.size)
    top_share = float(np.sort(counts)[-k:].sum() / total)

    return ImageInformation(
        width=width,
        height=height,
        visible_pixels=total,
        brightness_mean=mean,
        brightness_min=float(lightness.min()),
        brightness_max=float(lightness.max()),
        unique_colours=int(uniques.shape[0]),
        top_share=top_share,
    )


def is_flat_artwork(
    info: ImageInformation,
    *,
    max_uniques: int = AUTO_MAX_UNIQUES,
    share_thresh: float = AUTO_SHARE_THRESH,
) -> bool:
    """
    Heuristic:
      - visible unique colours <= max_uniques, or
      - the top AUTO_TOPK colours cover >= share_thresh of visible pixels.
    """
    if info.visible_pixels == 0:
        return True
    return info.unique_colours <= max_uniques or info.top_share >= share_thresh


def auto_adjust(config: MappingConfig, info: ImageInformation) -> MappingConfig:
    """Derive per-image options from the image information."""
    if is_flat_artwork(info):
        return config.with_options(dither_strength=0.0)
    strength = config.dither_strength if config.dither_strength > 0.0 else 1.0
    return config.with_options(dither_strength=strength)


__all__ = [
    "ImageInformation",
    "unique_visible_rgb",
    "image_information",
    "is_flat_artwork",
    "auto_adjust",
]
