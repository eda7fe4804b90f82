# nord_map/resolver.py
from __future__ import annotations

"""
Nearest-palette resolution.

Exports:
  distances(lab_rows, cand_lab, metric) -> float64 [N,K]
  pick_with_ties(dist, cand_ids) -> (ids [N], best [N])
  pick_first_within(dists, cand_ids) -> Match
  nearest_rows(lab_rows, cand_lab, cand_ids, metric) -> (ids [N], best [N])
  nearest(lab, palette, candidates=None, metric="cie76") -> Match
  nearest_indices(lab_rows, palette, candidates=None, metric="cie76") -> (ids, dist)

Rules:
  - Euclidean Lab distance ("cie76") by default, CIEDE2000 on request.
  - Entries within TIE_EPSILON of the minimum tie; the lowest identifier wins.
  - Empty or missing candidate sets mean the full palette.
  - nearest() and nearest_indices() share one kernel and agree exactly.
  - Batches are resolved RESOLVE_CHUNK_ROWS rows at a time, so memory does
    not grow with the image.
"""

from typing import Optional, Sequence, Tuple, Union

import numpy as np

from .colour_convert import delta_e2000_matrix
from .constants import DEFAULT_METRIC, METRICS, RESOLVE_CHUNK_ROWS, TIE_EPSILON
from .core_types import Lab, Match
from .errors import ConfigurationError
from .palette_data import Palette

Candidates = Optional[Union[Sequence[int], np.ndarray]]


def check_metric(metric: str) -> str:
    if metric not in METRICS:
        raise ConfigurationError(
            f"unknown distance metric {metric!r}; expected one of {', '.join(METRICS)}"
        )
    return metric


def candidate_ids(palette: Palette, candidates: Candidates) -> np.ndarray:
    """Sorted, de-duplicated, range-checked identifiers; full palette if empty."""
    if candidates is None:
        return palette.all_indices
    ids = np.unique(np.asarray(candidates, dtype=np.int64).reshape(-1))
    if ids.size == 0:
        return palette.all_indices
    if ids[0] < 0 or ids[-1] >= len(palette):
        raise ConfigurationError(
            f"candidate identifiers must be in 0..{len(palette) - 1}"
        )
    return ids.astype(np.int16)


def distances(lab_rows: np.ndarray, cand_lab: np.ndarray, metric: str) -> np.ndarray:
    """Distance of every row to every candidate, float64 [N,K]."""
    src = np.asarray(lab_rows, dtype=np.float64).reshape(-1, 3)
    cands = np.asarray(cand_lab, dtype=np.float64).reshape(-1, 3)
    if metric == "ciede2000":
        return delta_e2000_matrix(src, cands)
    diff = src[:, None, :] - cands[None, :, :]
    return np.sqrt(np.sum(diff * diff, axis=2))


def pick_with_ties(dist: np.ndarray, cand_ids: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Per row, the lowest identifier among entries within TIE_EPSILON of the minimum.
    cand_ids must be sorted ascending so the first hit is the lowest identifier.
    """
    best = dist.min(axis=1)
    within = dist <= (best[:, None] + TIE_EPSILON)
    first = np.argmax(within, axis=1)
    return cand_ids[first].astype(np.int16, copy=False), best


def pick_first_within(dists: Sequence[float], cand_ids: Sequence[int]) -> Match:
    """Single-colour pick_with_ties on plain floats."""
    best = min(dists)
    limit = best + TIE_EPSILON
    for ident, d in zip(cand_ids, dists):
        if d <= limit:
            return Match(int(ident), float(best))
    raise ValueError("no candidates")


def nearest_rows(
    lab_rows: np.ndarray, cand_lab: np.ndarray, cand_ids: np.ndarray, metric: str
) -> Tuple[np.ndarray, np.ndarray]:
    """pick_with_ties(distances(...)) over RESOLVE_CHUNK_ROWS rows at a time."""
    rows = np.asarray(lab_rows).reshape(-1, 3)
    n = rows.shape[0]
    out_ids = np.empty((n,), dtype=np.int16)
    out_best = np.empty((n,), dtype=np.float64)
    step = max(1, int(RESOLVE_CHUNK_ROWS))
    for start in range(0, n, step):
        stop = min(start + step, n)
        ids, best = pick_with_ties(distances(rows[start:stop], cand_lab, metric), cand_ids)
        out_ids[start:stop] = ids
        out_best[start:stop] = best
    return out_ids, out_best


def nearest_indices(
    lab_rows: Lab,
    palette: Palette,
    candidates: Candidates = None,
    metric: str = DEFAULT_METRIC,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Batched resolution. Returns (palette identifiers int16 [N], distances float64 [N]).
    """
    ids = candidate_ids(palette, candidates)
    return nearest_rows(lab_rows, palette.lab[ids], ids, check_metric(metric))


def nearest(
    lab: np.ndarray,
    palette: Palette,
    candidates: Candidates = None,
    metric: str = DEFAULT_METRIC,
) -> Match:
    """Closest palette entry to a single Lab colour."""
    idx, dist = nearest_indices(
        np.asarray(lab).reshape(1, 3), palette, candidates, metric
    )
    return Match(int(idx[0]), float(dist[0]))


__all__ = [
    "check_metric",
    "candidate_ids",
    "distances",
    "pick_with_ties",
    "pick_first_within",
    "nearest_rows",
    "nearest",
    "nearest_indices",
]
