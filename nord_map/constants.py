# nord_map/constants.py
"""
Global palette and tunables used across the project.

- NORD_PALETTE (index, name, group, hex)
- Resolver and Lab range constants
- Error diffusion kernels
- Segmentation model defaults and class -> palette preferences
"""
from __future__ import annotations

from typing import Dict, List, Tuple

# =========================
# Nord palette (canonical)
# =========================
NORD_PALETTE: List[Tuple[int, str, str, str]] = [
    (0, "nord0", "Polar Night", "#2e3440"),
    (1, "nord1", "Polar Night", "#3b4252"),
    (2, "nord2", "Polar Night", "#434c5e"),
    (3, "nord3", "Polar Night", "#4c566a"),
    (4, "nord4", "Snow Storm", "#d8dee9"),
    (5, "nord5", "Snow Storm", "#e5e9f0"),
    (6, "nord6", "Snow Storm", "#eceff4"),
    (7, "nord7", "Frost", "#8fbcbb"),
    (8, "nord8", "Frost", "#88c0d0"),
    (9, "nord9", "Frost", "#81a1c1"),
    (10, "nord10", "Frost", "#5e81ac"),
    (11, "nord11", "Aurora", "#bf616a"),
    (12, "nord12", "Aurora", "#d08770"),
    (13, "nord13", "Aurora", "#ebcb8b"),
    (14, "nord14", "Aurora", "#a3be8c"),
    (15, "nord15", "Aurora", "#b48ead"),
]

NORD_SIZE = 16

# =========================
# Resolver
# =========================

# Distances closer than this to the minimum count as a tie (lowest id wins).
TIE_EPSILON = 1e-6

METRICS = ("cie76", "ciede2000")
DEFAULT_METRIC = "cie76"

# Batched resolution works on this many colours at a time to bound the size
# of the [rows, candidates] distance temporaries.
RESOLVE_CHUNK_ROWS = 16_384

# Per-pixel match cache guard. Cleared when exceeded.
MATCH_CACHE_MAX_ENTRIES = 300_000

# Representable Lab range. Dither-adjusted values are clamped to it.
LAB_MIN = (0.0, -128.0, -128.0)
LAB_MAX = (100.0, 127.0, 127.0)

# =========================
# Error diffusion kernels: (dx, dy, weight), weights sum to 1.
# Only forward neighbours in raster order.
# =========================
KERNELS: Dict[str, Tuple[Tuple[int, int, float], ...]] = {
    "floyd-steinberg": (
        (1, 0, 7 / 16),
        (-1, 1, 3 / 16),
        (0, 1, 5 / 16),
        (1, 1, 1 / 16),
    ),
    "sierra-lite": (
        (1, 0, 2 / 4),
        (-1, 1, 1 / 4),
        (0, 1, 1 / 4),
    ),
    "jarvis": (
        (1, 0, 7 / 48),
        (2, 0, 5 / 48),
        (-2, 1, 3 / 48),
        (-1, 1, 5 / 48),
        (0, 1, 7 / 48),
        (1, 1, 5 / 48),
        (2, 1, 3 / 48),
        (-2, 2, 1 / 48),
        (-1, 2, 3 / 48),
        (0, 2, 5 / 48),
        (1, 2, 3 / 48),
        (2, 2, 1 / 48),
    ),
    "stucki": (
        (1, 0, 8 / 42),
        (2, 0, 4 / 42),
        (-2, 1, 2 / 42),
        (-1, 1, 4 / 42),
        (0, 1, 8 / 42),
        (1, 1, 4 / 42),
        (2, 1, 2 / 42),
        (-2, 2, 1 / 42),
        (-1, 2, 2 / 42),
        (0, 2, 4 / 42),
        (1, 2, 2 / 42),
        (2, 2, 1 / 42),
    ),
}
DEFAULT_KERNEL = "floyd-steinberg"

# =========================
# Segmentation model defaults
# =========================

# Square input side expected by the default model.
MODEL_INPUT_SIZE = 256

# ImageNet statistics; most pretrained segmentation backbones expect these.
MODEL_MEAN = (0.485, 0.456, 0.406)
MODEL_STD = (0.229, 0.224, 0.225)

# Softmax probability below which a cell is left "unknown".
MODEL_MIN_CONFIDENCE = 0.35

# Seconds before a model call is abandoned and segmentation falls back.
MODEL_TIMEOUT = 30.0

DEFAULT_LABELS: Tuple[str, ...] = (
    "background",
    "sky",
    "foliage",
    "water",
    "skin",
    "building",
    "ground",
)

# Preferred palette subsets per semantic class, by palette name.
DEFAULT_CLASS_PREFERENCES: Dict[str, Tuple[str, ...]] = {
    # Frost blues plus Snow Storm for clouds
    "sky": ("nord4", "nord5", "nord6", "nord7", "nord8", "nord9", "nord10"),
    # Frost and Polar Night for depth
    "water": ("nord0", "nord1", "nord2", "nord3", "nord7", "nord8", "nord9", "nord10"),
    # Greens, teal, yellow highlights and dark shadows
    "foliage": ("nord0", "nord1", "nord2", "nord3", "nord7", "nord13", "nord14"),
    # Warm Aurora tones with Snow Storm highlights
    "skin": ("nord3", "nord4", "nord5", "nord6", "nord11", "nord12", "nord13", "nord15"),
}

# =========================
# Orchestration
# =========================

# Refuse images above this many pixels instead of allocating their buffers.
MAX_PIXELS = 64_000_000

# Row threshold under which threaded conversion is not worth it.
THREADED_MIN_ROWS = 256

# =========================
# Auto-adjust heuristics
# =========================
AUTO_MAX_UNIQUES = 512
AUTO_TOPK = 16
AUTO_SHARE_THRESH = 0.80
