# nord_map/image_io.py
from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import UnsupportedFormatError

"""
Image I/O helpers. Decoding and encoding live here so the mapping engine
only ever sees uint8 arrays.

Images with transparency load as (H, W, 4) RGBA, everything else as
(H, W, 3) RGB. EXIF orientation is applied on load. Output is always PNG.
"""


def _has_alpha(im: Image.Image) -> bool:
    return "A" in im.getbands() or "transparency" in im.info


def load_image(path: Path) -> np.ndarray:
    """Decode an image file to a uint8 RGB or RGBA array."""
    path = Path(path)
    try:
        with Image.open(path) as im0:
            im = ImageOps.exif_transpose(im0)
            im = im.convert("RGBA" if _has_alpha(im) else "RGB")
            arr = np.array(im, dtype=np.uint8)
    except FileNotFoundError:
        raise UnsupportedFormatError(f"not found: {path}", stage="load") from None
    except (UnidentifiedImageError, OSError) as exc:
        raise UnsupportedFormatError(
            f"cannot decode {path.name}: {exc}", stage="load"
        ) from None
    return arr


def save_image(path: Path, image: np.ndarray) -> Path:
    """Write a uint8 RGB or RGBA array as PNG. Returns the path written."""
    path = Path(path)
    if path.suffix.lower() != ".png":
        path = path.with_suffix(".png")
    arr = np.asarray(image)
    if arr.dtype != np.uint8 or arr.ndim != 3 or arr.shape[-1] not in (3, 4):
        raise UnsupportedFormatError(
            f"cannot encode array of shape {arr.shape} and dtype {arr.dtype}",
            stage="save",
        )
    Image.fromarray(np.ascontiguousarray(arr)).save(path)
    return path


def default_output_path(src: Path) -> Path:
    """<stem>_nord.png next to the input."""
    return src.with_name(f"{src.stem}_nord.png")


__all__ = [
    "load_image",
    "save_image",
    "default_output_path",
]
