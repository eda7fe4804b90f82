# nord_map/dither.py
from __future__ import annotations

"""
Error diffusion in Lab.

The diffuser owns a float32 [H,W,3] error buffer. For each pixel in scan order
the caller takes the accumulated error (clearing it), resolves the adjusted
colour, then pushes the new quantization error forward to neighbours that
have not been visited yet.

Invariants:
  - distributed + dropped == strength * error for every push
  - fractions that would fall outside the image are dropped, never wrapped
  - adjusted colours are clamped to the representable Lab range
"""

from typing import Tuple

import numpy as np

from .constants import DEFAULT_KERNEL, KERNELS, LAB_MAX, LAB_MIN
from .core_types import Lab
from .errors import ConfigurationError

Kernel = Tuple[Tuple[int, int, float], ...]

_LAB_LO = np.asarray(LAB_MIN, dtype=np.float32)
_LAB_HI = np.asarray(LAB_MAX, dtype=np.float32)
_L_LO, _AB_LO = float(LAB_MIN[0]), float(LAB_MIN[1])
_L_HI, _AB_HI = float(LAB_MAX[0]), float(LAB_MAX[1])


def get_kernel(name: str) -> Kernel:
    try:
        return KERNELS[name]
    except KeyError:
        raise ConfigurationError(
            f"unknown dithering kernel {name!r}; expected one of {', '.join(sorted(KERNELS))}"
        ) from None


def mirror_kernel(kernel: Kernel) -> Kernel:
    """Kernel for a right-to-left row (serpentine scan)."""
    return tuple((-dx, dy, w) for dx, dy, w in kernel)


def clamp_lab(lab: np.ndarray) -> Lab:
    """Clamp Lab values to L in [0,100], a/b in [-128,127]."""
    return np.clip(lab, _LAB_LO, _LAB_HI).astype(np.float32, copy=False)


class ErrorDiffuser:
    def __init__(
        self,
        height: int,
        width: int,
        kernel: str = DEFAULT_KERNEL,
        strength: float = 1.0,
    ) -> None:
        if not 0.0 <= float(strength) <= 1.0:
            raise ConfigurationError(
                f"dither strength must be within [0, 1], got {strength}"
            )
        self.height = int(height)
        self.width = int(width)
        self.kernel_name = kernel
        self.kernel = get_kernel(kernel)
        self.kernel_reversed = mirror_kernel(self.kernel)
        self.strength = float(strength)
        self.error = np.zeros((self.height, self.width, 3), dtype=np.float32)

    @property
    def enabled(self) -> bool:
        return self.strength > 0.0

    def take(self, y: int, x: int) -> Lab:
        """Return the accumulated error at (y, x) and clear it."""
        err = self.error[y, x].copy()
        self.error[y, x] = 0.0
        return err

    def adjusted_values(
        self, L: float, a: float, b: float, y: int, x: int
    ) -> Tuple[float, float, float]:
        """Plain-float adjusted(): source plus accumulated error, clamped."""
        cell = self.error[y, x]
        eL, ea, eb = cell.tolist()
        cell.fill(0.0)
        return (
            min(max(L + eL, _L_LO), _L_HI),
            min(max(a + ea, _AB_LO), _AB_HI),
            min(max(b + eb, _AB_LO), _AB_HI),
        )

    def adjusted(self, lab: np.ndarray, y: int, x: int) -> Lab:
        """Source Lab plus accumulated error, clamped. Clears the cell."""
        L, a, b = np.asarray(lab, dtype=np.float32).reshape(3).tolist()
        return np.asarray(self.adjusted_values(L, a, b, y, x), dtype=np.float32)

    def push_values(
        self, y: int, x: int, eL: float, ea: float, eb: float, reverse: bool = False
    ) -> Tuple[float, float, float]:
        """
        Spread strength * error to forward neighbours of (y, x).
        Returns the dropped part; the rest went into the buffer.
        """
        if not self.enabled:
            return 0.0, 0.0, 0.0
        s = self.strength
        err = np.array((eL * s, ea * s, eb * s), dtype=np.float64)
        dL = da = db = 0.0
        for dx, dy, w in self.kernel_reversed if reverse else self.kernel:
            nx, ny = x + dx, y + dy
            if 0 <= ny < self.height and 0 <= nx < self.width:
                self.error[ny, nx] += err * w
            else:
                dL += eL * s * w
                da += ea * s * w
                db += eb * s * w
        return dL, da, db

    def push(
        self, y: int, x: int, error: np.ndarray, reverse: bool = False
    ) -> Tuple[Lab, Lab]:
        """
        Array form of push_values().
        Returns (distributed, dropped) sums, float32 [3] each.
        """
        err = np.asarray(error, dtype=np.float64).reshape(3)
        dropped = np.asarray(
            self.push_values(y, x, *err.tolist(), reverse=reverse), dtype=np.float64
        )
        distributed = err * self.strength - dropped
        return distributed.astype(np.float32), dropped.astype(np.float32)

    def pending(self) -> float:
        """Total absolute error still waiting in the buffer."""
        return float(np.abs(self.error).sum())


__all__ = ["ErrorDiffuser", "get_kernel", "mirror_kernel", "clamp_lab"]
