# nord_map/orchestrator.py
from __future__ import annotations

"""
Mapping orchestrator.

Sequences one image through the engine:
  validate -> allocate -> flatten alpha -> RGB->Lab -> segmentation (once)
  -> region-aware resolution with error diffusion (raster order)
  -> palette native values

Transparent pixels (alpha 0, no background) are mapped but left out of error
diffusion, so colours hidden under them never reach visible pixels.

The run is atomic: callers get a complete MappingResult or a NordMapError
carrying the image id and the stage that failed. Segmentation failures are
absorbed by the adapter and never end a run.

Exports:
  MappingStats, MappingResult, ImageOutcome
  Orchestrator(palette=None, config=None, adapter=None)
    .run(image, image_id="image") -> MappingResult
  map_image(image, palette=None, config=None, adapter=None, image_id="image")
  map_many(images, orchestrator, jobs=1, cancel=None) -> list[ImageOutcome]
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from .colour_convert import rgb_to_lab_threaded, split_channels
from .config import MappingConfig
from .core_types import IndexMap, LabelMap, U8Image, U8Mask
from .dither import ErrorDiffuser
from .errors import (
    MappingCancelled,
    NordMapError,
    ResourceExhaustionError,
)
from .palette_data import Palette, nord_palette
from .region_mapper import RegionAwareMapper
from .segmentation import Segmentation, SegmentationAdapter, unknown_label_map
from .utils import (
    debug_log,
    format_seconds_compact,
    key_value_pairs_to_string,
    print_config_line,
    print_progress_line,
)


@dataclass(frozen=True)
class MappingStats:
    pixels: int
    palette_usage: Dict[str, int]
    mean_distance: float
    max_distance: float
    dithering: bool
    dropped_error: float  # total |error| dropped at image edges
    segmentation_used: bool
    segmentation_reason: Optional[str]
    seconds: float


@dataclass(frozen=True)
class MappingResult:
    image_id: str
    rgb: U8Image  # same shape as the input, palette colours only
    indices: IndexMap  # (H, W) palette identifiers
    label_map: LabelMap  # (H, W) class per pixel, UNKNOWN_LABEL if none
    stats: MappingStats


@dataclass(frozen=True)
class ImageOutcome:
    image_id: str
    result: Optional[MappingResult] = None
    error: Optional[NordMapError] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


def flatten_alpha(rgb: U8Image, alpha: U8Mask, background: Tuple[int, int, int]) -> U8Image:
    """Composite RGB over a solid background using alpha."""
    a = alpha.astype(np.float32)[..., None] / np.float32(255.0)
    bg = np.asarray(background, dtype=np.float32)
    out = rgb.astype(np.float32) * a + bg * (np.float32(1.0) - a)
    return np.clip(np.rint(out), 0, 255).astype(np.uint8)


class Orchestrator:
    """
    Palette, configuration and segmentation adapter, built once and shared
    read-only by every run. Each run owns its own buffers.
    """

    def __init__(
        self,
        palette: Optional[Palette] = None,
        config: Optional[MappingConfig] = None,
        adapter: Optional[SegmentationAdapter] = None,
    ) -> None:
        self.palette = palette if palette is not None else nord_palette()
        self.config = (config if config is not None else MappingConfig()).validate(
            self.palette
        )
        adapter = adapter if adapter is not None else SegmentationAdapter.disabled()
        if adapter.enabled:
            adapter = replace(
                adapter, timeout=float(self.config.segmentation_timeout)
            )
        self.adapter = adapter
        self.mapper = RegionAwareMapper(
            self.palette,
            labels=self.adapter.spec.labels,
            overrides=self.config.class_overrides,
            metric=self.config.metric,
        )
        if self.config.debug:
            print_config_line(
                "map",
                [
                    ("Segmentation", self.config.segmentation and self.adapter.enabled),
                    ("Dither", float(self.config.dither_strength)),
                    ("Kernel", self.config.kernel),
                    ("Serpentine", self.config.serpentine),
                    ("Metric", self.config.metric),
                    ("Workers", int(self.config.workers)),
                ],
                debug=True,
            )
            for label, names in self.mapper.describe().items():
                debug_log(f"{label}: {', '.join(names)}")

    # Stages

    def _segment(self, rgb: U8Image, image_id: str) -> Segmentation:
        height, width = int(rgb.shape[0]), int(rgb.shape[1])
        if not self.config.segmentation:
            return Segmentation(unknown_label_map(height, width), used=False, reason="disabled")
        return self.adapter.segment(rgb, image_id, debug=self.config.debug)

    def _resolve_direct(
        self, lab: np.ndarray, labels: LabelMap, indices: IndexMap, dist: np.ndarray
    ) -> float:
        """No dithering: every pixel is independent, resolve in bounded batches."""
        ids, best = self.mapper.match_rows(lab.reshape(-1, 3), labels.reshape(-1))
        indices[...] = ids.reshape(indices.shape)
        dist[...] = best.reshape(dist.shape)
        return 0.0

    def _resolve_dithered(
        self,
        lab: np.ndarray,
        labels: LabelMap,
        indices: IndexMap,
        dist: np.ndarray,
        image_id: str,
        hidden: Optional[np.ndarray] = None,
    ) -> float:
        """
        Raster-order resolution with error diffusion. Returns dropped |error|.
        Pixels flagged in `hidden` are resolved from their own colour and
        neither take nor pass on error.
        """
        height, width = indices.shape
        diffuser = ErrorDiffuser(
            height, width, self.config.kernel, float(self.config.dither_strength)
        )
        match_values = self.mapper.match_values
        palette_lab = self.palette.lab.astype(np.float64).tolist()
        dropped_total = 0.0
        last_pct = -1
        for y in range(height):
            reverse = self.config.serpentine and (y % 2 == 1)
            xs = range(width - 1, -1, -1) if reverse else range(width)
            lab_row = lab[y].tolist()
            label_row = labels[y].tolist()
            hidden_row = hidden[y].tolist() if hidden is not None else None
            ids_row = [0] * width
            dist_row = [0.0] * width
            for x in xs:
                L, a, b = lab_row[x]
                if hidden_row is not None and hidden_row[x]:
                    match = match_values(L, a, b, label_row[x])
                else:
                    L, a, b = diffuser.adjusted_values(L, a, b, y, x)
                    match = match_values(L, a, b, label_row[x])
                    pL, pa, pb = palette_lab[match.index]
                    dL, da, db = diffuser.push_values(
                        y, x, L - pL, a - pa, b - pb, reverse=reverse
                    )
                    dropped_total += abs(dL) + abs(da) + abs(db)
                ids_row[x] = match.index
                dist_row[x] = match.distance
            indices[y] = ids_row
            dist[y] = dist_row
            if self.config.progress:
                pct = int(100 * (y + 1) / height)
                if pct > last_pct:
                    print_progress_line(
                        f"[map] {image_id} {pct:3d}%", final=(y + 1 == height)
                    )
                    last_pct = pct
        return dropped_total

    def run(self, image: np.ndarray, image_id: str = "image") -> MappingResult:
        """Map one decoded image onto the palette."""
        stage = "validate"
        t0 = time.perf_counter()
        try:
            rgb, alpha = split_channels(image)
            height, width = int(rgb.shape[0]), int(rgb.shape[1])
            pixels = height * width
            if pixels > int(self.config.max_pixels):
                raise ResourceExhaustionError(
                    f"{width}x{height} exceeds the limit of {int(self.config.max_pixels):,} pixels"
                )

            stage = "allocate"
            out = np.empty(image.shape, dtype=np.uint8)
            indices = np.empty((height, width), dtype=np.int16)
            dist = np.empty((height, width), dtype=np.float64)

            stage = "prepare"
            background = self.config.background_rgb
            src_rgb = rgb
            out_alpha = alpha
            if alpha is not None and background is not None:
                src_rgb = flatten_alpha(rgb, alpha, background)
                out_alpha = np.full((height, width), 255, dtype=np.uint8)

            stage = "convert"
            lab = rgb_to_lab_threaded(src_rgb, int(self.config.workers))

            stage = "segmentation"
            seg = self._segment(src_rgb, image_id)

            stage = "map"
            if self.config.dithering:
                hidden = None
                if alpha is not None and background is None:
                    hidden = alpha == 0
                dropped = self._resolve_dithered(
                    lab, seg.label_map, indices, dist, image_id, hidden
                )
            else:
                dropped = self._resolve_direct(lab, seg.label_map, indices, dist)

            stage = "output"
            out[..., :3] = self.palette.rgb[indices]
            if out_alpha is not None:
                out[..., 3] = out_alpha
        except NordMapError as exc:
            raise exc.with_context(image_id=image_id, stage=stage)
        except MemoryError:
            raise ResourceExhaustionError(
                "out of memory", image_id=image_id, stage=stage
            ) from None

        usage_counts = np.bincount(indices.reshape(-1), minlength=len(self.palette))
        usage = {
            self.palette[j].name: int(c) for j, c in enumerate(usage_counts.tolist()) if c
        }
        stats = MappingStats(
            pixels=pixels,
            palette_usage=usage,
            mean_distance=float(dist.mean()),
            max_distance=float(dist.max()),
            dithering=self.config.dithering,
            dropped_error=dropped,
            segmentation_used=seg.used,
            segmentation_reason=seg.reason,
            seconds=time.perf_counter() - t0,
        )
        if self.config.debug:
            debug_log(
                key_value_pairs_to_string(
                    [
                        ("Image", image_id),
                        ("Size", f"{width}x{height}"),
                        ("Colours used", len(usage)),
                        ("dE mean", stats.mean_distance),
                        ("dE max", stats.max_distance),
                        ("Segmentation", seg.used),
                        ("Time", format_seconds_compact(stats.seconds)),
                    ]
                )
            )
        return MappingResult(
            image_id=image_id,
            rgb=out,
            indices=indices,
            label_map=seg.label_map,
            stats=stats,
        )


def map_image(
    image: np.ndarray,
    palette: Optional[Palette] = None,
    config: Optional[MappingConfig] = None,
    adapter: Optional[SegmentationAdapter] = None,
    image_id: str = "image",
) -> MappingResult:
    """One-shot convenience wrapper around Orchestrator(...).run(...)."""
    return Orchestrator(palette, config, adapter).run(image, image_id)


def map_many(
    images: Iterable[Tuple[str, np.ndarray]],
    orchestrator: Orchestrator,
    jobs: int = 1,
    cancel: Optional[threading.Event] = None,
) -> List[ImageOutcome]:
    """
    Map independent images, `jobs` at a time. `cancel` is checked before each
    image starts; images not yet started are reported as MappingCancelled.
    One image failing does not affect the others. Outcomes keep input order.
    """

    def run_one(item: Tuple[str, np.ndarray]) -> ImageOutcome:
        image_id, image = item
        if cancel is not None and cancel.is_set():
            return ImageOutcome(
                image_id,
                error=MappingCancelled(
                    "run cancelled before this image started",
                    image_id=image_id,
                    stage="queue",
                ),
            )
        try:
            return ImageOutcome(image_id, result=orchestrator.run(image, image_id))
        except NordMapError as exc:
            return ImageOutcome(image_id, error=exc)

    items = list(images)
    if int(jobs) <= 1:
        return [run_one(item) for item in items]
    with ThreadPoolExecutor(max_workers=int(jobs)) as ex:
        return list(ex.map(run_one, items))


__all__ = [
    "MappingStats",
    "MappingResult",
    "ImageOutcome",
    "Orchestrator",
    "flatten_alpha",
    "map_image",
    "map_many",
]
