# nord_map/palette_data.py
from __future__ import annotations

"""
Palette definitions and builders.

Exports:
  NORD_PALETTE: list[(index, name, group, hex)]
  Palette: immutable palette with rgb/lab/lch matrix views
  build_palette(table=NORD_PALETTE, expected_size=16) -> Palette
  nord_palette() -> shared Palette built once per process
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .colour_convert import lab_to_lch, lab_to_rgb, rgb_to_lab
from .constants import NORD_PALETTE, NORD_SIZE
from .core_types import (
    Lab,
    Lch,
    NameOf,
    PaletteItem,
    PaletteRef,
    RGBTuple,
    U8Image,
    hex_to_rgb,
    read_only,
)
from .errors import ConfigurationError


@dataclass(frozen=True)
class Palette:
    """
    Ordered, immutable palette. Item i has identifier i.

    rgb: uint8 [P,3], lab: float32 [P,3], lch: float32 [P,3]; all read-only.
    """

    items: Tuple[PaletteItem, ...]
    rgb: U8Image = field(repr=False, compare=False)
    lab: Lab = field(repr=False, compare=False)
    lch: Lch = field(repr=False, compare=False)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def __getitem__(self, index: int) -> PaletteItem:
        return self.items[index]

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.items)

    @property
    def all_indices(self) -> np.ndarray:
        return np.arange(len(self.items), dtype=np.int16)

    def name_of_hex(self) -> NameOf:
        """'#rrggbb' -> palette name."""
        return {p.hex: p.name for p in self.items}

    def index_of(self, ref: PaletteRef) -> int:
        """Resolve a palette name ('nord8'), hex ('#88c0d0') or identifier."""
        if isinstance(ref, (bool, np.bool_)):
            raise ConfigurationError(f"invalid palette reference {ref!r}")
        if isinstance(ref, (int, np.integer)):
            idx = int(ref)
            if 0 <= idx < len(self.items):
                return idx
            raise ConfigurationError(
                f"palette identifier {idx} out of range 0..{len(self.items) - 1}"
            )
        key = str(ref).strip().lower()
        for p in self.items:
            if p.name == key or p.hex == key:
                return p.index
        if key.isdigit():
            return self.index_of(int(key))
        raise ConfigurationError(f"unknown palette entry {ref!r}")

    def resolve_names(self, refs: Iterable[PaletteRef]) -> np.ndarray:
        """Resolve references into a sorted, de-duplicated int16 identifier array."""
        ids = sorted({self.index_of(r) for r in refs})
        if not ids:
            raise ConfigurationError("palette subset is empty")
        return np.asarray(ids, dtype=np.int16)

    def contains_rgb(self, rgb: RGBTuple) -> bool:
        return any(p.rgb == tuple(rgb) for p in self.items)


def _validate_table(
    table: Sequence[Tuple[int, str, str, str]], expected_size: Optional[int]
) -> List[Tuple[int, str, str, RGBTuple]]:
    if expected_size is not None and len(table) != expected_size:
        raise ConfigurationError(
            f"palette must have exactly {expected_size} entries, got {len(table)}"
        )
    if not table:
        raise ConfigurationError("palette is empty")

    rows: List[Tuple[int, str, str, RGBTuple]] = []
    for pos, entry in enumerate(table):
        try:
            idx, name, group, hx = entry
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"palette entry {pos} is malformed: {entry!r}"
            ) from None
        try:
            ident = int(idx)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"palette entry {pos} has a non-integer identifier {idx!r}"
            ) from None
        if ident != pos:
            raise ConfigurationError(
                f"palette entry {pos} has identifier {idx}; identifiers must be 0..N-1 in order"
            )
        try:
            rgb = hex_to_rgb(hx)
        except ValueError as exc:
            raise ConfigurationError(f"palette entry {name!r}: {exc}") from None
        rows.append((pos, str(name).lower(), str(group), rgb))

    names = [r[1] for r in rows]
    if len(set(names)) != len(names):
        raise ConfigurationError("palette has duplicate names")
    colours = [r[3] for r in rows]
    if len(set(colours)) != len(colours):
        raise ConfigurationError("palette has duplicate colours")
    return rows


def build_palette(
    table: Sequence[Tuple[int, str, str, str]] = NORD_PALETTE,
    expected_size: Optional[int] = NORD_SIZE,
) -> Palette:
    """
    Convert (index, name, group, hex) rows into a Palette with Lab and LCh
    precomputed once. Raises ConfigurationError for a malformed table.
    """
    rows = _validate_table(table, expected_size)

    rgbs_u8 = np.array([r[3] for r in rows], dtype=np.uint8)
    pal_lab: Lab = rgb_to_lab(rgbs_u8).reshape(-1, 3)
    pal_lch: Lch = lab_to_lch(pal_lab).reshape(-1, 3)

    # Native values must survive the Lab round trip
    drift = np.abs(lab_to_rgb(pal_lab).astype(np.int16) - rgbs_u8.astype(np.int16))
    if int(drift.max()) > 1:
        raise ConfigurationError("palette does not round-trip through Lab")

    items = tuple(
        PaletteItem(
            index=idx,
            name=name,
            group=group,
            rgb=rgb,
            lab=read_only(pal_lab[idx].copy()),
            lch=read_only(pal_lch[idx].copy()),
        )
        for idx, name, group, rgb in rows
    )
    return Palette(
        items=items,
        rgb=read_only(rgbs_u8),
        lab=read_only(pal_lab),
        lch=read_only(pal_lch),
    )


@lru_cache(maxsize=1)
def nord_palette() -> Palette:
    """The Nord palette, built once and shared read-only."""
    return build_palette(NORD_PALETTE)


def palette_summary(palette: Palette) -> Dict[str, List[str]]:
    """Group name -> palette names, in palette order."""
    out: Dict[str, List[str]] = {}
    for p in palette:
        out.setdefault(p.group, []).append(p.name)
    return out


__all__ = ["NORD_PALETTE", "Palette", "build_palette", "nord_palette", "palette_summary"]
