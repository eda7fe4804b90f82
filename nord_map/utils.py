# nord_map/utils.py
from __future__ import annotations

"""
Shared utilities for nord_map.

Includes progress and duration formatting, palette usage reporting, and the
tidy print-based logging used by every stage.
"""

import sys
from typing import Any, Iterable, List, Optional, Tuple

import numpy as np

from .core_types import NameOf, U8Image, U8Mask, rgb_to_hex


# Durations


def format_seconds_compact(seconds: float) -> str:
    """12.3ms under a second, 4.567s under a minute, else 2m 5.0s."""
    if seconds < 1.0:
        return f"{seconds * 1000.0:.1f}ms"
    if seconds < 60.0:
        return f"{seconds:.3f}s"
    minutes = int(seconds // 60)
    return f"{minutes}m {seconds - 60 * minutes:.1f}s"


# Palette usage


def colour_usage_report(
    mapped_rgb: U8Image, alpha_mask: Optional[U8Mask], name_of: NameOf
) -> List[Tuple[str, str, int]]:
    """
    Colour usage for visible pixels, as (hex, name, count) sorted by count descending.
    """
    if alpha_mask is None:
        flat = mapped_rgb.reshape(-1, 3)
    else:
        visible_mask = alpha_mask > 0
        if not np.any(visible_mask):
            return []
        flat = mapped_rgb[visible_mask].reshape(-1, 3)
    uniques, counts = np.unique(flat, axis=0, return_counts=True)
    report: List[Tuple[str, str, int]] = []
    for rgb_row, count in sorted(zip(uniques, counts), key=lambda x: -int(x[1])):
        hex_str = rgb_to_hex((int(rgb_row[0]), int(rgb_row[1]), int(rgb_row[2])))
        report.append((hex_str, name_of.get(hex_str, "?"), int(count)))
    return report


# Console output


def print_progress_line(message: str, final: bool = False) -> None:
    """Rewrite the current terminal line. final=True ends it with a newline."""
    sys.stdout.write("\r\033[K" + message)
    sys.stdout.flush()
    if final:
        sys.stdout.write("\n")
        sys.stdout.flush()


def format_bool_on_off(value: Any) -> str:
    if isinstance(value, bool):
        return "on" if value else "off"
    return str(value)


def format_number_compact(value: Any) -> str:
    """Ints get thousands separators, floats drop trailing zeros."""
    if isinstance(value, bool):
        return format_bool_on_off(value)
    if isinstance(value, int):
        return f"{value:,}"
    if isinstance(value, float):
        return f"{value:.3f}".rstrip("0").rstrip(".")
    return str(value)


def key_value_pairs_to_string(
    pairs: Iterable[Tuple[str, Any]], sep: str = "  ", eq: str = ": "
) -> str:
    """[("Dither", 1.0), ("Serpentine", False)] -> "Dither: 1  Serpentine: off"."""
    return sep.join(f"{name}{eq}{format_number_compact(value)}" for name, value in pairs)


def print_config_line(
    section: str, pairs: Iterable[Tuple[str, Any]], debug: bool
) -> None:
    # e.g. [map] Segmentation: off  Dither: 1  Kernel: floyd-steinberg
    line = f"[{section}] {key_value_pairs_to_string(pairs)}"
    (debug_log if debug else log)(line)


def print_banner(title: str) -> None:
    print(f"\n=== {title} ===", flush=True)


def log(message: str) -> None:
    print(message, flush=True)


def debug_log(message: str) -> None:
    print(f"[debug] {message}", flush=True)


def warn(message: str) -> None:
    print(f"[warn] {message}", flush=True)


def error(message: str) -> None:
    print(f"[error] {message}", file=sys.stderr, flush=True)


__all__ = [
    "format_seconds_compact",
    "colour_usage_report",
    "print_progress_line",
    "format_bool_on_off",
    "format_number_compact",
    "key_value_pairs_to_string",
    "print_config_line",
    "print_banner",
    "log",
    "debug_log",
    "warn",
    "error",
]
