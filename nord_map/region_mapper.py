# nord_map/region_mapper.py
from __future__ import annotations

"""
Region-aware palette mapping.

Each semantic label may carry a preferred palette subset (for example "sky"
keeps to Frost and Snow Storm). Pixels whose label has a preference are
resolved against that subset, all others against the full palette. Pixels are
resolved independently; smoothing across region boundaries is left to the
error diffusion.

Single colours go through match_values(), which works on plain floats and
keeps a bounded cache of exact (label, L, a, b) queries. The cache is shared
by every run on the same mapper and only ever holds answers the resolver
would give, so a hit and a miss produce the same Match.

Exports:
  RegionAwareMapper(palette, labels, preferences=None, overrides=None, metric="cie76")
    .candidates_for(label) -> int16 identifiers
    .match_values(L, a, b, label) -> Match
    .resolve(lab, label) -> (Match, error Lab[3])
    .match_rows(lab_rows, labels) -> (ids [N], distances [N])
    .resolve_rows(lab_rows, labels) -> (ids [N], distances [N], errors [N,3])
"""

import math
from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .colour_convert import delta_e2000_matrix
from .constants import (
    DEFAULT_CLASS_PREFERENCES,
    DEFAULT_LABELS,
    DEFAULT_METRIC,
    MATCH_CACHE_MAX_ENTRIES,
)
from .core_types import UNKNOWN_LABEL, Lab, Match, PaletteRef
from .errors import ConfigurationError
from .palette_data import Palette
from .resolver import check_metric, nearest_rows, pick_first_within

MatchKey = Tuple[int, float, float, float]


class CandidateSet(NamedTuple):
    ids: np.ndarray  # int16 [K], ascending
    lab: np.ndarray  # float64 [K,3]
    id_list: Tuple[int, ...]
    lab_list: Tuple[Tuple[float, float, float], ...]


def _candidate_set(ids: np.ndarray, lab: np.ndarray) -> CandidateSet:
    return CandidateSet(
        ids=ids,
        lab=lab,
        id_list=tuple(int(j) for j in ids.tolist()),
        lab_list=tuple((float(L), float(a), float(b)) for L, a, b in lab.tolist()),
    )


class RegionAwareMapper:
    def __init__(
        self,
        palette: Palette,
        labels: Sequence[str] = DEFAULT_LABELS,
        preferences: Optional[Mapping[str, Sequence[PaletteRef]]] = None,
        overrides: Optional[Mapping[str, Sequence[PaletteRef]]] = None,
        metric: str = DEFAULT_METRIC,
    ) -> None:
        self.palette = palette
        self.labels: Tuple[str, ...] = tuple(labels)
        self.metric = check_metric(metric)

        label_ids = {name: i for i, name in enumerate(self.labels)}
        for name in overrides or {}:
            if name not in label_ids:
                raise ConfigurationError(
                    f"class override for {name!r}, which is not a known class "
                    f"({', '.join(self.labels)})",
                    stage="config",
                )

        merged: Dict[str, Sequence[PaletteRef]] = dict(
            DEFAULT_CLASS_PREFERENCES if preferences is None else preferences
        )
        merged.update(overrides or {})

        full_lab = palette.lab.astype(np.float64)
        self._full = _candidate_set(palette.all_indices, full_lab)
        self._subsets: Dict[int, CandidateSet] = {}
        for name, refs in merged.items():
            if name not in label_ids:
                continue
            try:
                ids = palette.resolve_names(refs)
            except ConfigurationError as exc:
                raise ConfigurationError(
                    f"palette preference for {name!r}: {exc.message}", stage="config"
                ) from None
            self._subsets[label_ids[name]] = _candidate_set(ids, full_lab[ids])
        self._cache: Dict[MatchKey, Match] = {}

    def _lookup(self, label: int) -> CandidateSet:
        return self._subsets.get(int(label), self._full)

    def candidates_for(self, label: int) -> np.ndarray:
        return self._lookup(label).ids

    def describe(self) -> Dict[str, List[str]]:
        """Class name -> preferred palette names, for labels with a preference."""
        return {
            self.labels[label]: [self.palette[j].name for j in cands.id_list]
            for label, cands in sorted(self._subsets.items())
        }

    def cache_size(self) -> int:
        return len(self._cache)

    def match_values(self, L: float, a: float, b: float, label: int = UNKNOWN_LABEL) -> Match:
        """Closest candidate for one Lab colour given as plain floats."""
        key: MatchKey = (label, L, a, b)
        hit = self._cache.get(key)
        if hit is not None:
            return hit

        cands = self._lookup(label)
        if self.metric == "ciede2000":
            dists = delta_e2000_matrix((L, a, b), cands.lab)[0].tolist()
        else:
            dists = [
                math.sqrt((L - cl) * (L - cl) + (a - ca) * (a - ca) + (b - cb) * (b - cb))
                for cl, ca, cb in cands.lab_list
            ]
        match = pick_first_within(dists, cands.id_list)

        if len(self._cache) >= MATCH_CACHE_MAX_ENTRIES:
            self._cache.clear()
        self._cache[key] = match
        return match

    def resolve(self, lab: np.ndarray, label: int = UNKNOWN_LABEL) -> Tuple[Match, Lab]:
        """
        Resolve one perceptual colour. Returns the match and the quantization
        error (lab minus the chosen palette Lab), float32 [3].
        """
        L, a, b = np.asarray(lab, dtype=np.float64).reshape(3).tolist()
        match = self.match_values(L, a, b, int(label))
        error = np.asarray(lab, dtype=np.float32).reshape(3) - self.palette.lab[match.index]
        return match, error.astype(np.float32, copy=False)

    def match_rows(self, lab_rows: Lab, labels: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Batched match_values, grouped by label and resolved in bounded chunks.
        """
        rows = np.asarray(lab_rows).reshape(-1, 3)
        lbl = np.asarray(labels).reshape(-1)
        if lbl.shape[0] != rows.shape[0]:
            raise ValueError("labels and colours differ in length")

        present = np.unique(lbl).tolist()
        if len(present) == 1:
            cands = self._lookup(present[0])
            return nearest_rows(rows, cands.lab, cands.ids, self.metric)

        out_ids = np.zeros((rows.shape[0],), dtype=np.int16)
        out_dist = np.zeros((rows.shape[0],), dtype=np.float64)
        for label in present:
            sel = lbl == label
            cands = self._lookup(label)
            idx, best = nearest_rows(rows[sel], cands.lab, cands.ids, self.metric)
            out_ids[sel] = idx
            out_dist[sel] = best
        return out_ids, out_dist

    def resolve_rows(
        self, lab_rows: Lab, labels: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray, Lab]:
        """
        Batched resolve, grouped by label. Same choices as calling resolve()
        per row.
        """
        rows = np.asarray(lab_rows).reshape(-1, 3)
        out_ids, out_dist = self.match_rows(rows, labels)
        errors = rows.astype(np.float32, copy=False) - self.palette.lab[out_ids]
        return out_ids, out_dist, errors.astype(np.float32, copy=False)


__all__ = ["RegionAwareMapper", "CandidateSet"]
