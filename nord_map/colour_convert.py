# nord_map/colour_convert.py
from __future__ import annotations

"""
Colour conversions and metrics (sRGB, D65).

Exports:
  split_channels(image)          -> (rgb, alpha|None), validates the buffer
  rgb_to_linear(srgb) / linear_to_rgb(linear)
  rgb_to_lab(rgb)                 sRGB -> CIE Lab
  lab_to_rgb(lab)                 CIE Lab -> sRGB uint8 (gamut clipped)
  lab_to_lch(lab)
  delta_e2000_pair(lab1, lab2)
  delta_e2000_vec(src_lab, cand_lab)
  delta_e2000_matrix(src_lab, cand_lab)
  rgb_to_lab_threaded(rgb, workers)
"""

import math
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from .constants import THREADED_MIN_ROWS
from .core_types import Lab, Lch, U8Image, U8Mask
from .errors import UnsupportedFormatError

# sRGB (D65) <-> XYZ
_RGB_TO_XYZ = np.array(
    [
        [0.4124564, 0.3575761, 0.1804375],
        [0.2126729, 0.7151522, 0.0721750],
        [0.0193339, 0.1191920, 0.9503041],
    ],
    dtype=np.float32,
)
_XYZ_TO_RGB = np.array(
    [
        [3.2404542, -1.5371385, -0.4985314],
        [-0.9692660, 1.8760108, 0.0415560],
        [0.0556434, -0.2040259, 1.0572252],
    ],
    dtype=np.float32,
)
_WHITE_D65 = (0.95047, 1.00000, 1.08883)
_EPS = 216.0 / 24389.0
_KAPPA = 24389.0 / 27.0


# Buffer validation


def split_channels(image: np.ndarray) -> Tuple[U8Image, Optional[U8Mask]]:
    """
    Validate an 8-bit (H,W,3|4) buffer and split it into (rgb, alpha).
    alpha is None for 3-channel input. Views, no copies.
    """
    if not isinstance(image, np.ndarray):
        raise UnsupportedFormatError(
            f"expected a numpy array, got {type(image).__name__}"
        )
    if image.dtype != np.uint8:
        raise UnsupportedFormatError(
            f"unsupported sample type {image.dtype}; only 8-bit samples are supported"
        )
    if image.ndim != 3:
        raise UnsupportedFormatError(
            f"expected (H, W, C) buffer, got shape {tuple(image.shape)}"
        )
    channels = int(image.shape[2])
    if channels not in (3, 4):
        raise UnsupportedFormatError(
            f"unsupported channel count {channels}; expected 3 or 4"
        )
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise UnsupportedFormatError("image has no pixels")
    rgb = image[..., :3]
    alpha = image[..., 3] if channels == 4 else None
    return rgb, alpha


# sRGB <-> linear


def _apply_matrix(
    m: np.ndarray, v: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """3x3 matrix times the last axis, written out so results do not depend on shape."""
    c0, c1, c2 = v[..., 0], v[..., 1], v[..., 2]
    return (
        m[0, 0] * c0 + m[0, 1] * c1 + m[0, 2] * c2,
        m[1, 0] * c0 + m[1, 1] * c1 + m[1, 2] * c2,
        m[2, 0] * c0 + m[2, 1] * c1 + m[2, 2] * c2,
    )


def rgb_to_linear(srgb: np.ndarray) -> np.ndarray:
    """
    Convert sRGB (non-linear 0..1) to linear RGB (0..1). Vectorised.
    Returns float32 with shape preserved.
    """
    srgb_f = srgb.astype(np.float32, copy=False)
    linear = np.where(
        srgb_f <= 0.04045, srgb_f / 12.92, ((srgb_f + 0.055) / 1.055) ** 2.4
    )
    return linear.astype(np.float32, copy=False)


def linear_to_rgb(linear: np.ndarray) -> np.ndarray:
    """Linear RGB (0..1) to sRGB (0..1). Input is clipped to [0, 1] first."""
    lin = np.clip(linear.astype(np.float32, copy=False), 0.0, 1.0)
    srgb = np.where(
        lin <= 0.0031308, lin * 12.92, 1.055 * np.power(lin, 1.0 / 2.4) - 0.055
    )
    return srgb.astype(np.float32, copy=False)


# sRGB <-> Lab (D65)


def rgb_to_lab(rgb: np.ndarray) -> Lab:
    """
    sRGB to CIE Lab (D65).
    Integer input is read as 0..255, float input as 0..1. Preserves shape (...,3).
    Returns float32.
    """
    rgb_f = rgb.astype(np.float32, copy=False)
    if np.issubdtype(rgb.dtype, np.integer):
        rgb_f = rgb_f / np.float32(255.0)

    lin = rgb_to_linear(rgb_f)
    X, Y, Z = _apply_matrix(_RGB_TO_XYZ, lin)

    x = X / _WHITE_D65[0]
    y = Y / _WHITE_D65[1]
    z = Z / _WHITE_D65[2]

    def f(t: np.ndarray) -> np.ndarray:
        return np.where(t > _EPS, np.cbrt(t), (_KAPPA * t + 16.0) / 116.0).astype(
            np.float32, copy=False
        )

    fx, fy, fz = f(x), f(y), f(z)

    out = np.empty(rgb_f.shape, dtype=np.float32)
    out[..., 0] = 116.0 * fy - 16.0
    out[..., 1] = 500.0 * (fx - fy)
    out[..., 2] = 200.0 * (fy - fz)
    return out


def lab_to_rgb(lab: np.ndarray) -> U8Image:
    """
    CIE Lab (D65) to 8-bit sRGB. Out-of-gamut values are clipped.
    Preserves shape (...,3).
    """
    lab_f = lab.astype(np.float32, copy=False)
    fy = (lab_f[..., 0] + 16.0) / 116.0
    fx = fy + lab_f[..., 1] / 500.0
    fz = fy - lab_f[..., 2] / 200.0

    def finv(t: np.ndarray) -> np.ndarray:
        t3 = t * t * t
        return np.where(t3 > _EPS, t3, (116.0 * t - 16.0) / _KAPPA).astype(
            np.float32, copy=False
        )

    xyz = np.empty(lab_f.shape, dtype=np.float32)
    xyz[..., 0] = finv(fx) * _WHITE_D65[0]
    xyz[..., 1] = finv(fy) * _WHITE_D65[1]
    xyz[..., 2] = finv(fz) * _WHITE_D65[2]

    lin = np.empty(lab_f.shape, dtype=np.float32)
    lin[..., 0], lin[..., 1], lin[..., 2] = _apply_matrix(_XYZ_TO_RGB, xyz)
    srgb = linear_to_rgb(lin)
    return np.clip(np.rint(srgb * 255.0), 0, 255).astype(np.uint8)


# Lab to LCh


def lab_to_lch(lab: Lab) -> Lch:
    """
    Lab[...,3] to LCh[...,3] (degrees in [0,360)).
    Returns float32 with shape preserved.
    """
    orig_shape = lab.shape
    flat = lab.reshape(-1, 3).astype(np.float32, copy=False)
    C = np.hypot(flat[:, 1], flat[:, 2])
    h = (np.degrees(np.arctan2(flat[:, 2], flat[:, 1])) + 360.0) % 360.0
    lch = np.stack([flat[:, 0], C, h], axis=1).astype(np.float32, copy=False)
    return lch.reshape(orig_shape)


# CIEDE2000


def delta_e2000_pair(
    lab1: Sequence[float] | NDArray[np.floating],
    lab2: Sequence[float] | NDArray[np.floating],
) -> float:
    """
    CIEDE2000 distance between two Lab colours.
    Scalar reference implementation.
    """
    L1, a1, b1 = float(lab1[0]), float(lab1[1]), float(lab1[2])
    L2, a2, b2 = float(lab2[0]), float(lab2[1]), float(lab2[2])

    C1 = math.hypot(a1, b1)
    C2 = math.hypot(a2, b2)
    C_bar = 0.5 * (C1 + C2)
    G = 0.5 * (1.0 - math.sqrt((C_bar**7) / (C_bar**7 + 25.0**7)))

    a1p = (1.0 + G) * a1
    a2p = (1.0 + G) * a2
    C1p = math.hypot(a1p, b1)
    C2p = math.hypot(a2p, b2)

    def _hue(a_val: float, b_val: float) -> float:
        if a_val == 0.0 and b_val == 0.0:
            return 0.0
        ang = math.degrees(math.atan2(b_val, a_val))
        return ang + 360.0 if ang < 0.0 else ang

    h1p = _hue(a1p, b1)
    h2p = _hue(a2p, b2)

    dLp = L2 - L1
    dCp = C2p - C1p

    dhp = h2p - h1p
    if C1p * C2p == 0.0:
        dhp = 0.0
    elif dhp > 180.0:
        dhp -= 360.0
    elif dhp < -180.0:
        dhp += 360.0

    dHp = 2.0 * math.sqrt(C1p * C2p) * math.sin(math.radians(dhp / 2.0))

    L_bar = 0.5 * (L1 + L2)
    C_bar_p = 0.5 * (C1p + C2p)

    if C1p * C2p == 0.0:
        h_bar_p = h1p + h2p
    else:
        h_sum = h1p + h2p
        if abs(h1p - h2p) <= 180.0:
            h_bar_p = 0.5 * h_sum
        elif h_sum < 360.0:
            h_bar_p = 0.5 * (h_sum + 360.0)
        else:
            h_bar_p = 0.5 * (h_sum - 360.0)

    T = (
        1.0
        - 0.17 * math.cos(math.radians(h_bar_p - 30.0))
        + 0.24 * math.cos(math.radians(2.0 * h_bar_p))
        + 0.32 * math.cos(math.radians(3.0 * h_bar_p + 6.0))
        - 0.20 * math.cos(math.radians(4.0 * h_bar_p - 63.0))
    )

    d_theta = 30.0 * math.exp(-(((h_bar_p - 275.0) / 25.0) ** 2.0))
    R_c = 2.0 * math.sqrt((C_bar_p**7) / (C_bar_p**7 + 25.0**7))

    S_l = 1.0 + (0.015 * ((L_bar - 50.0) ** 2.0)) / math.sqrt(
        20.0 + ((L_bar - 50.0) ** 2.0)
    )
    S_c = 1.0 + 0.045 * C_bar_p
    S_h = 1.0 + 0.015 * C_bar_p * T
    R_t = -math.sin(math.radians(2.0 * d_theta)) * R_c

    dE2 = (
        (dLp / S_l) ** 2
        + (dCp / S_c) ** 2
        + (dHp / S_h) ** 2
        + R_t * (dCp / S_c) * (dHp / S_h)
    )
    return float(math.sqrt(max(dE2, 0.0)))


def _hue_deg(a_val: np.ndarray, b_val: np.ndarray) -> np.ndarray:
    ang = np.degrees(np.arctan2(b_val, a_val))
    ang = np.where(ang < 0.0, ang + 360.0, ang)
    return np.where((a_val == 0.0) & (b_val == 0.0), 0.0, ang)


def delta_e2000_matrix(src_lab: Lab, cand_lab: Lab) -> NDArray[np.float64]:
    """
    CIEDE2000 of every source row against every candidate, float64 [N,K].
    Same formula as delta_e2000_pair, broadcast over both axes.
    """
    src = np.asarray(src_lab, dtype=np.float64).reshape(-1, 3)
    cands = np.asarray(cand_lab, dtype=np.float64).reshape(-1, 3)
    L1, a1, b1 = src[:, 0:1], src[:, 1:2], src[:, 2:3]
    L2, a2, b2 = cands[None, :, 0], cands[None, :, 1], cands[None, :, 2]

    C1 = np.hypot(a1, b1)
    C2 = np.hypot(a2, b2)
    C_bar7 = (0.5 * (C1 + C2)) ** 7
    G = 0.5 * (1.0 - np.sqrt(C_bar7 / (C_bar7 + 25.0**7)))

    a1p = (1.0 + G) * a1
    a2p = (1.0 + G) * a2
    C1p = np.hypot(a1p, b1)
    C2p = np.hypot(a2p, b2)
    h1p = _hue_deg(a1p, np.broadcast_to(b1, a1p.shape))
    h2p = _hue_deg(a2p, np.broadcast_to(b2, a2p.shape))
    achromatic = (C1p * C2p) == 0.0

    dLp = L2 - L1
    dCp = C2p - C1p
    dhp = h2p - h1p
    dhp = np.where(dhp > 180.0, dhp - 360.0, np.where(dhp < -180.0, dhp + 360.0, dhp))
    dhp = np.where(achromatic, 0.0, dhp)
    dHp = 2.0 * np.sqrt(C1p * C2p) * np.sin(np.radians(dhp / 2.0))

    L_bar = 0.5 * (L1 + L2)
    C_bar_p = 0.5 * (C1p + C2p)
    h_sum = h1p + h2p
    h_bar_p = np.where(
        np.abs(h1p - h2p) <= 180.0,
        0.5 * h_sum,
        np.where(h_sum < 360.0, 0.5 * (h_sum + 360.0), 0.5 * (h_sum - 360.0)),
    )
    h_bar_p = np.where(achromatic, h_sum, h_bar_p)

    T = (
        1.0
        - 0.17 * np.cos(np.radians(h_bar_p - 30.0))
        + 0.24 * np.cos(np.radians(2.0 * h_bar_p))
        + 0.32 * np.cos(np.radians(3.0 * h_bar_p + 6.0))
        - 0.20 * np.cos(np.radians(4.0 * h_bar_p - 63.0))
    )
    d_theta = 30.0 * np.exp(-(((h_bar_p - 275.0) / 25.0) ** 2.0))
    C_bar_p7 = C_bar_p**7
    R_c = 2.0 * np.sqrt(C_bar_p7 / (C_bar_p7 + 25.0**7))

    L_off = (L_bar - 50.0) ** 2.0
    S_l = 1.0 + (0.015 * L_off) / np.sqrt(20.0 + L_off)
    S_c = 1.0 + 0.045 * C_bar_p
    S_h = 1.0 + 0.015 * C_bar_p * T
    R_t = -np.sin(np.radians(2.0 * d_theta)) * R_c

    term_c = dCp / S_c
    term_h = dHp / S_h
    dE2 = (dLp / S_l) ** 2 + term_c**2 + term_h**2 + R_t * term_c * term_h
    return np.sqrt(np.maximum(dE2, 0.0))


def delta_e2000_vec(src_lab: Lab, cand_lab: Lab) -> NDArray[np.float64]:
    """CIEDE2000 of one source Lab [3] against candidates [N,3] -> float64 [N]."""
    return delta_e2000_matrix(np.asarray(src_lab).reshape(1, 3), cand_lab)[0]


# Threaded helpers


def _split_rows(height: int, parts: int) -> list[tuple[int, int]]:
    """Partition height into ~parts contiguous [start, end) row spans."""
    parts = max(1, int(parts))
    step = (height + parts - 1) // parts
    return [(i, min(i + step, height)) for i in range(0, height, step)]


def rgb_to_lab_threaded(rgb: np.ndarray, workers: int) -> Lab:
    """
    Threaded RGB->Lab conversion by splitting rows. Same result as rgb_to_lab.

    Args:
      rgb: uint8 array [H,W,3]
      workers: number of threads; if <=1 or H is small, runs single-threaded
    Returns:
      Lab float32 array [H,W,3]
    """
    height = int(rgb.shape[0])
    if workers <= 1 or height < THREADED_MIN_ROWS:
        return rgb_to_lab(rgb)

    chunks = _split_rows(height, workers)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(rgb_to_lab, rgb[s:e]) for s, e in chunks]
        parts = [f.result() for f in futures]
    return np.vstack(parts).astype(np.float32, copy=False)


__all__ = [
    "split_channels",
    "rgb_to_linear",
    "linear_to_rgb",
    "rgb_to_lab",
    "lab_to_rgb",
    "lab_to_lch",
    "delta_e2000_pair",
    "delta_e2000_vec",
    "delta_e2000_matrix",
    "rgb_to_lab_threaded",
]
